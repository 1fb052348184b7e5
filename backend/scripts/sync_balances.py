#!/usr/bin/env python
"""Recompute derived daily balances from the command line.

Modes:
  (default):         Sync every account (or one with --account)
  --diagnose:        Print per-account balance contiguity analysis
  --backfill-prices: Fetch closing prices for held securities first

Usage:
    python -m scripts.sync_balances                          # sync all accounts
    python -m scripts.sync_balances --account <id>           # sync one account
    python -m scripts.sync_balances --strategy reverse       # force reverse replay
    python -m scripts.sync_balances --backfill-prices 2024-01-01
    python -m scripts.sync_balances --diagnose               # contiguity check
"""

import argparse
import sys
from datetime import date

from database import get_session_local, init_db
from logging_config import setup_logging
from models import Account
from services.balance_store import BalanceStore
from services.balance_syncer import BalanceSyncer, SyncStatus, SyncStrategy
from services.market_data_service import MarketDataService


def diagnose() -> int:
    """Print per-account balance gap analysis. Returns the number of accounts with gaps."""
    SessionLocal = get_session_local()
    db = SessionLocal()

    try:
        gaps = BalanceStore.diagnose_gaps(db)
        if not gaps:
            print("No accounts with stored balances found.")
            return 0

        with_gaps = 0
        for gap in gaps:
            status = "GAPS" if gap["missing_days"] else "OK"
            print(
                f"[{status}] {gap['account_name']}: "
                f"{gap['actual_days']}/{gap['expected_days']} days "
                f"({gap['first_date']} to {gap['last_date']}), "
                f"{gap['degraded_days']} degraded"
            )
            if gap["missing_days"]:
                with_gaps += 1
                dates_str = ", ".join(d.isoformat() for d in gap["missing_dates"][:20])
                suffix = (
                    f" ... and {gap['missing_days'] - 20} more"
                    if gap["missing_days"] > 20
                    else ""
                )
                print(f"       Missing {gap['missing_days']} days: {dates_str}{suffix}")

        print(f"\nAccounts with gaps: {with_gaps}")
        return with_gaps
    finally:
        db.close()


def backfill_prices(start_date: date) -> None:
    """Fetch and store closing prices for every held security since start_date."""
    SessionLocal = get_session_local()
    db = SessionLocal()

    try:
        written = MarketDataService().backfill_prices(db, start_date, date.today())
        db.commit()
        print(f"Stored {written} prices from {start_date}.")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        raise
    finally:
        db.close()


def sync(account_id: str | None, strategy: SyncStrategy) -> int:
    """Sync one or all accounts. Returns the number of failed runs."""
    SessionLocal = get_session_local()
    db = SessionLocal()
    syncer = BalanceSyncer()

    try:
        if account_id:
            account_ids = [account_id]
        else:
            account_ids = [a.id for a in db.query(Account).order_by(Account.name).all()]

        failures = 0
        for aid in account_ids:
            result = syncer.sync(db, aid, strategy)
            window = (
                f"{result.window.start} to {result.window.end}" if result.window else "-"
            )
            print(
                f"[{result.status.value.upper()}] {aid}: {window} "
                f"+{result.inserted} ~{result.updated} -{result.deleted}"
                f"{f', {result.degraded_days} degraded' if result.degraded_days else ''}"
            )
            if result.status is SyncStatus.failed:
                failures += 1
                print(f"       {result.error.value}: {result.error_message}")

        return failures
    finally:
        db.close()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Recompute derived daily balances")
    parser.add_argument("--account", help="Only sync this account ID")
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in SyncStrategy],
        default=SyncStrategy.AUTO.value,
        help="Replay strategy (default: auto)",
    )
    parser.add_argument(
        "--backfill-prices",
        metavar="START_DATE",
        type=date.fromisoformat,
        help="Fetch closing prices from START_DATE before syncing",
    )
    parser.add_argument(
        "--diagnose",
        action="store_true",
        help="Print per-account balance gap analysis instead of syncing",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log at DEBUG level regardless of LOG_LEVEL",
    )

    args = parser.parse_args(argv)
    setup_logging("DEBUG" if args.verbose else None)
    init_db()

    if args.diagnose:
        return 1 if diagnose() else 0

    if args.backfill_prices:
        backfill_prices(args.backfill_prices)

    failures = sync(args.account, SyncStrategy(args.strategy))
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
