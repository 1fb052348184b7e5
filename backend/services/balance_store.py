"""Balance store - persisted daily balances and the diff/upsert that writes them."""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models import Account, Balance
from services.balance_calculator import iter_days
from services.exceptions import InvalidRangeError, ReconciliationAbortedError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")

MAX_MISSING_DATES = 100


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-day range."""

    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise InvalidRangeError(self.start, self.end)

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def chunks(self, size: int) -> list["DateRange"]:
        """Split into consecutive sub-ranges of at most ``size`` days."""
        if size <= 0:
            return [self]
        result = []
        current = self.start
        while current <= self.end:
            chunk_end = min(current + timedelta(days=size - 1), self.end)
            result.append(DateRange(current, chunk_end))
            current = chunk_end + timedelta(days=1)
        return result


@dataclass(frozen=True)
class BalancePoint:
    """One computed day, ready to be reconciled into the store."""

    balance_date: date
    balance: Decimal
    cash_balance: Decimal
    holdings_value: Decimal = ZERO
    degraded: bool = False


@dataclass
class ReconcileCounts:
    inserted: int = 0
    updated: int = 0
    deleted: int = 0

    def __add__(self, other: "ReconcileCounts") -> "ReconcileCounts":
        return ReconcileCounts(
            inserted=self.inserted + other.inserted,
            updated=self.updated + other.updated,
            deleted=self.deleted + other.deleted,
        )


def _cents(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class BalanceStore:
    """Reads and writes the ``balances`` table.

    Only the balance syncer calls ``reconcile``. Everything else here is a
    read accessor.
    """

    @staticmethod
    def reconcile(
        db: Session,
        account: Account,
        date_range: DateRange,
        series: Iterable[BalancePoint],
    ) -> ReconcileCounts:
        """Make the stored rows in ``date_range`` match ``series`` exactly.

        Rows in the range that the series lacks are deleted, rows whose
        values differ are updated and new days are inserted. Rows outside
        the range are never touched. The whole diff runs in a savepoint, so
        a storage failure leaves the range as it was.

        Raises:
            ReconciliationAbortedError: If the database rejects the write.
        """
        wanted = {p.balance_date: p for p in series if p.balance_date in date_range}
        counts = ReconcileCounts()

        try:
            with db.begin_nested():
                existing = (
                    db.query(Balance)
                    .filter(
                        Balance.account_id == account.id,
                        Balance.balance_date >= date_range.start,
                        Balance.balance_date <= date_range.end,
                    )
                    .all()
                )
                seen = set()
                for row in existing:
                    point = wanted.get(row.balance_date)
                    if point is None or row.balance_date in seen:
                        db.delete(row)
                        counts.deleted += 1
                        continue
                    seen.add(row.balance_date)
                    if BalanceStore._apply(row, point, account.currency):
                        counts.updated += 1

                for day, point in sorted(wanted.items()):
                    if day in seen:
                        continue
                    db.add(
                        Balance(
                            account_id=account.id,
                            balance_date=day,
                            balance=_cents(point.balance),
                            cash_balance=_cents(point.cash_balance),
                            holdings_value=_cents(point.holdings_value),
                            currency=account.currency,
                            degraded=point.degraded,
                        )
                    )
                    counts.inserted += 1
                db.flush()
        except SQLAlchemyError as e:
            raise ReconciliationAbortedError(
                f"Reconciling balances for {account.id} "
                f"({date_range.start} to {date_range.end}) failed: {e}"
            ) from e

        logger.debug(
            "Reconciled %s %s..%s: +%d ~%d -%d",
            account.id, date_range.start, date_range.end,
            counts.inserted, counts.updated, counts.deleted,
        )
        return counts

    @staticmethod
    def _apply(row: Balance, point: BalancePoint, currency: str) -> bool:
        """Copy point values onto row. Returns True if anything changed."""
        values = {
            "balance": _cents(point.balance),
            "cash_balance": _cents(point.cash_balance),
            "holdings_value": _cents(point.holdings_value),
        }
        changed = False
        for field, value in values.items():
            current = getattr(row, field)
            if current is None or _cents(current) != value:
                setattr(row, field, value)
                changed = True
        if row.currency != currency:
            row.currency = currency
            changed = True
        if bool(row.degraded) != point.degraded:
            row.degraded = point.degraded
            changed = True
        return changed

    @staticmethod
    def balance_series(
        db: Session,
        account_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[Balance]:
        """Stored balances for an account, ascending by date."""
        query = db.query(Balance).filter(Balance.account_id == account_id)
        if start_date is not None:
            query = query.filter(Balance.balance_date >= start_date)
        if end_date is not None:
            query = query.filter(Balance.balance_date <= end_date)
        return query.order_by(Balance.balance_date.asc()).all()

    @staticmethod
    def bounds(db: Session, account_id: str) -> Optional[DateRange]:
        """First and last stored balance dates, or None if there are none."""
        first, last = (
            db.query(func.min(Balance.balance_date), func.max(Balance.balance_date))
            .filter(Balance.account_id == account_id)
            .one()
        )
        if first is None:
            return None
        return DateRange(first, last)

    @staticmethod
    def balance_on(db: Session, account_id: str, on_date: date) -> Optional[Balance]:
        return (
            db.query(Balance)
            .filter(Balance.account_id == account_id, Balance.balance_date == on_date)
            .first()
        )

    @staticmethod
    def earliest_degraded_date(db: Session, account_id: str) -> Optional[date]:
        return (
            db.query(func.min(Balance.balance_date))
            .filter(Balance.account_id == account_id, Balance.degraded.is_(True))
            .scalar()
        )

    @staticmethod
    def diagnose_gaps(db: Session) -> list[dict]:
        """Check that each account's stored balance dates are contiguous.

        Returns a list of per-account diagnostics with:
        - account_id, account_name
        - first_date, last_date
        - expected_days, actual_days, missing_days
        - missing_dates (list, capped at 100)
        - degraded_days
        """
        results = []
        for account in db.query(Account).order_by(Account.name).all():
            span = BalanceStore.bounds(db, account.id)
            if span is None:
                continue

            actual_dates = set(
                row[0]
                for row in db.query(Balance.balance_date)
                .filter(Balance.account_id == account.id)
                .distinct()
                .all()
            )
            missing = [d for d in iter_days(span.start, span.end) if d not in actual_dates]
            degraded_days = (
                db.query(func.count(Balance.id))
                .filter(Balance.account_id == account.id, Balance.degraded.is_(True))
                .scalar()
            )

            results.append({
                "account_id": account.id,
                "account_name": account.name,
                "first_date": span.start,
                "last_date": span.end,
                "expected_days": span.days,
                "actual_days": len(actual_dates),
                "missing_days": len(missing),
                "missing_dates": missing[:MAX_MISSING_DATES],
                "degraded_days": degraded_days or 0,
            })

        return results
