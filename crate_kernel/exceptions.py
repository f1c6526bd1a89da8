"""
Typed Exception Hierarchy for the Crate Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The HTTP layer that embeds the kernel renders every failure as a user-facing
message. It must be able to tell "stock not initialized" from "payment too
large" without parsing message strings, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        coordinator.register_payment(conflict_id, amount, mode, actor_id)
    except ExceedsRemainingError as e:
        api_response(code=e.code, remaining=str(e.remaining))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CrateKernelError (base)
    |
    +-- LedgerError
    |   +-- NotInitializedError
    |   +-- AlreadyInitializedError
    |   +-- LedgerInconsistencyError
    |
    +-- NotFoundError
    |   +-- ConflictNotFoundError
    |
    +-- SettlementError
    |   +-- AlreadyResolvedError
    |   +-- ExceedsRemainingError
    |
    +-- InvalidQuantityError
    +-- ValidationError
    |
    +-- IdempotencyError
    |   +-- IdempotencyKeyReuseError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|------------------------------------------
Ledger       | NOT_INITIALIZED          | Mutation before the stock is initialized
             | ALREADY_INITIALIZED      | initialize() on an initialized account
             | LEDGER_INCONSISTENT      | Movement chain does not add up
-------------|--------------------------|------------------------------------------
Lookup       | NOT_FOUND                | Unknown conflict
-------------|--------------------------|------------------------------------------
Settlement   | ALREADY_RESOLVED         | Conflict is in a terminal state
             | EXCEEDS_REMAINING        | Return/payment above outstanding balance
-------------|--------------------------|------------------------------------------
Input        | INVALID_QUANTITY         | Non-positive or malformed numeric input
             | VALIDATION_ERROR         | Missing required reason/note
-------------|--------------------------|------------------------------------------
Idempotency  | IDEMPOTENCY_KEY_REUSED   | Same key, different request
-------------|--------------------------|------------------------------------------
Immutability | IMMUTABILITY_VIOLATION   | UPDATE/DELETE of an append-only record

All errors are raised before the first write of the enclosing transaction,
so the caller's rollback leaves no partial state behind.
"""

from decimal import Decimal


class CrateKernelError(Exception):
    """
    Base exception for all crate kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "CRATE_KERNEL_ERROR"


# Ledger exceptions


class LedgerError(CrateKernelError):
    """Base exception for stock ledger errors."""

    code: str = "LEDGER_ERROR"


class NotInitializedError(LedgerError):
    """The stock account has not been initialized yet."""

    code: str = "NOT_INITIALIZED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Stock not initialized: cannot {operation}")


class AlreadyInitializedError(LedgerError):
    """initialize() called on an account that is already initialized."""

    code: str = "ALREADY_INITIALIZED"

    def __init__(self, stock_current: int):
        self.stock_current = stock_current
        super().__init__(
            f"Stock already initialized (current balance {stock_current}); "
            f"use reinitialize() with a reason to reset it"
        )


class LedgerInconsistencyError(LedgerError):
    """
    The movement chain does not reproduce the account balance.

    Raised by the ledger auditor. This is an integrity failure, not a
    user error: investigate before accepting further movements.
    """

    code: str = "LEDGER_INCONSISTENT"

    def __init__(self, seq: int | None, expected: int, actual: int, reason: str):
        self.seq = seq
        self.expected = expected
        self.actual = actual
        self.reason = reason
        super().__init__(
            f"Ledger inconsistent at seq {seq}: {reason} "
            f"(expected {expected}, found {actual})"
        )


# Lookup exceptions


class NotFoundError(CrateKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class ConflictNotFoundError(NotFoundError):
    """Conflict with given ID was not found."""

    code: str = "NOT_FOUND"

    def __init__(self, conflict_id: str):
        self.conflict_id = conflict_id
        super().__init__(f"Conflict not found: {conflict_id}")


# Settlement exceptions


class SettlementError(CrateKernelError):
    """Base exception for conflict settlement errors."""

    code: str = "SETTLEMENT_ERROR"


class AlreadyResolvedError(SettlementError):
    """Settlement attempted on a conflict in a terminal state."""

    code: str = "ALREADY_RESOLVED"

    def __init__(self, conflict_id: str, status: str):
        self.conflict_id = conflict_id
        self.status = status
        super().__init__(
            f"Conflict {conflict_id} is already closed (status: {status})"
        )


class ExceedsRemainingError(SettlementError):
    """Return or payment larger than the outstanding balance."""

    code: str = "EXCEEDS_REMAINING"

    def __init__(
        self,
        conflict_id: str,
        requested: int | Decimal,
        remaining: int | Decimal,
        unit: str,
    ):
        self.conflict_id = conflict_id
        self.requested = requested
        self.remaining = remaining
        self.unit = unit
        super().__init__(
            f"Conflict {conflict_id}: at most {remaining} {unit} can be settled "
            f"(requested {requested})"
        )


# Input exceptions


class InvalidQuantityError(CrateKernelError):
    """Non-positive or malformed numeric input."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, field: str, value: object, reason: str = "must be positive"):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}")


class ValidationError(CrateKernelError):
    """A required free-text field (reason, note) is missing."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


# Idempotency exceptions


class IdempotencyError(CrateKernelError):
    """Base exception for idempotency key errors."""

    code: str = "IDEMPOTENCY_ERROR"


class IdempotencyKeyReuseError(IdempotencyError):
    """
    Idempotency key already used for a different request.

    A retried request must carry exactly the same arguments as the original.
    Reusing a key for a new request would silently return the old result.
    """

    code: str = "IDEMPOTENCY_KEY_REUSED"

    def __init__(self, idempotency_key: str, expected_hash: str, received_hash: str):
        self.idempotency_key = idempotency_key
        self.expected_hash = expected_hash
        self.received_hash = received_hash
        super().__init__(
            f"Idempotency key {idempotency_key} was used for a different request: "
            f"expected {expected_hash}, received {received_hash}"
        )


# Immutability exceptions


class ImmutabilityError(CrateKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify {entity_type} {entity_id}: {reason}"
        )
