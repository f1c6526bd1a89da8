#!/usr/bin/env python3
"""
Operator CLI for the crate ledger.

Every command goes through the TransactionCoordinator, so each one is a
single transaction with the same validation the HTTP layer gets.  The
database URL and the ledger policy come from crate_config (override the
URL with --db-url).

Usage:
  python3 scripts/crate_admin.py init-db
  python3 scripts/crate_admin.py initialize 1000 --actor <uuid>
  python3 scripts/crate_admin.py adjust -20 --reason "inventory count" --actor <uuid>
  python3 scripts/crate_admin.py purchase 200 --actor <uuid>
  python3 scripts/crate_admin.py reset-alert
  python3 scripts/crate_admin.py set-threshold 15
  python3 scripts/crate_admin.py state
  python3 scripts/crate_admin.py movements [--type depart] [--limit 20]
  python3 scripts/crate_admin.py verify

Exit codes:
  0 success, 1 rejected by the ledger (message on stderr), 2 usage error.
"""

import argparse
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from uuid import UUID

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

# Actor recorded for commands run without --actor
SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


def _decimal(text: str) -> Decimal:
    try:
        return Decimal(text)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {text!r}") from None


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Crate ledger administration")
    p.add_argument("--config", default=None, help="Settings YAML (default: CRATE_CONFIG_PATH or packaged defaults)")
    p.add_argument("--db-url", default=None, help="Database URL (overrides settings)")
    p.add_argument("--actor", type=UUID, default=SYSTEM_ACTOR_ID, help="Acting user id")
    p.add_argument("--idempotency-key", default=None, help="Client key making the command safe to repeat")

    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create the ledger tables")

    init = sub.add_parser("initialize", help="First-time stock setup")
    init.add_argument("quantity", type=int)

    adjust = sub.add_parser("adjust", help="Manual correction of the balance")
    adjust.add_argument("delta", type=int)
    adjust.add_argument("--reason", required=True)

    purchase = sub.add_parser("purchase", help="Register newly bought crates")
    purchase.add_argument("quantity", type=int)
    purchase.add_argument("--notes", default=None)

    sub.add_parser("reset-alert", help="Acknowledge the stock alert")

    threshold = sub.add_parser("set-threshold", help="Change the alert drawdown percentage")
    threshold.add_argument("pct", type=_decimal)

    sub.add_parser("state", help="Show the aggregated stock state")

    movements = sub.add_parser("movements", help="List recent movements")
    movements.add_argument("--type", dest="movement_type", default=None)
    movements.add_argument("--limit", type=int, default=50)

    sub.add_parser("verify", help="Check the movement log against the balance")

    return p.parse_args(argv)


def _print_state(state) -> None:
    if not state.initialized:
        print("  Stock not initialized.")
        return
    print(f"  On hand:      {state.stock_current}")
    print(f"  In transit:   {state.stock_in_transit}")
    print(f"  Lost to date: {state.stock_lost_to_date}")
    print(f"  Fleet size:   {state.stock_initial}")
    print(f"  Drawdown:     {state.drawdown_pct:.1f}% (threshold {state.alert_threshold_pct}%)")
    if state.alert_active:
        print(f"  ALERT: {state.alert_message}")


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from crate_config import get_active_settings
    from crate_config.bridges import build_ledger_policy
    from crate_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
    from crate_kernel.db.immutability import register_immutability_listeners
    from crate_kernel.exceptions import CrateKernelError
    from crate_kernel.services.transaction_coordinator import TransactionCoordinator

    try:
        settings = get_active_settings(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 2

    init_engine_from_url(args.db_url or settings.database_url)
    register_immutability_listeners()

    if args.command == "init-db":
        create_tables()
        print("  Tables created.")
        return 0

    coordinator = TransactionCoordinator(get_session_factory(), build_ledger_policy(settings))
    key = args.idempotency_key

    try:
        if args.command == "initialize":
            snapshot = coordinator.initialize(args.quantity, args.actor, idempotency_key=key)
            print(f"  Stock initialized at {snapshot.stock_current} crates.")
        elif args.command == "adjust":
            snapshot = coordinator.adjust(args.delta, args.actor, args.reason, idempotency_key=key)
            print(f"  Adjusted by {args.delta:+d}; balance {snapshot.stock_current}.")
        elif args.command == "purchase":
            snapshot = coordinator.purchase(args.quantity, args.actor, args.notes, idempotency_key=key)
            print(f"  Purchased {args.quantity}; balance {snapshot.stock_current}.")
        elif args.command == "reset-alert":
            snapshot = coordinator.reset_alert_reference(args.actor)
            print(f"  Alert reference reset to {snapshot.last_alert_reference}.")
        elif args.command == "set-threshold":
            snapshot = coordinator.set_alert_threshold(args.pct, args.actor, idempotency_key=key)
            print(f"  Alert threshold set to {snapshot.alert_threshold_pct}%.")
        elif args.command == "state":
            _print_state(coordinator.get_stock_state())
        elif args.command == "movements":
            for m in coordinator.list_movements(args.movement_type, args.limit):
                print(
                    f"  #{m.seq:<6} {m.recorded_at:%Y-%m-%d %H:%M} {m.movement_type:<24} "
                    f"{m.quantity:+6d} -> {m.balance_after:<6} {m.notes or ''}"
                )
        elif args.command == "verify":
            report = coordinator.verify_ledger()
            print(
                f"  Ledger consistent: {report.movement_count} movements, "
                f"sum {report.movement_sum}, balance {report.stock_current}."
            )
    except CrateKernelError as exc:
        print(f"  {exc.code}: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        # Unknown --type value
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 2

    return 0


if __name__ == "__main__":
    sys.exit(main())
