"""
Crate Kernel - reusable crate inventory ledger and shortage settlement.

An append-only, row-locked stock ledger with:
- A single authoritative running balance
- Immutable movement audit trail with balance snapshots
- Incremental settlement of shortages by crate returns and payments
- Atomic ledger + settlement transactions
- Optional idempotency keys on every mutating call
"""

__version__ = "0.1.0"
