"""Forward and reverse balance calculators.

Both calculators replay the same per-day entry deltas; they differ only in
which end of the range is anchored and in which direction the deltas are
accumulated. Neither touches the database.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Iterable, Iterator, Optional, Protocol

from models.entry import EntryKind
from services.exceptions import (
    CurrencyMismatchError,
    InsufficientAnchorError,
    InvalidRangeError,
)

ZERO = Decimal("0")

# Kinds whose amount moves cash (and therefore the total as well)
CASH_KINDS = frozenset({EntryKind.cash.value, EntryKind.transfer.value, EntryKind.trade.value})


class LedgerEntry(Protocol):
    """The fields a calculator reads from an entry."""

    entry_date: date
    amount: Decimal
    currency: str
    kind: str


@dataclass(frozen=True)
class DailyBalance:
    """End-of-day balances for one calendar day."""

    balance_date: date
    cash_balance: Decimal
    total_balance: Decimal

    @property
    def non_cash_balance(self) -> Decimal:
        return self.total_balance - self.cash_balance


@dataclass(frozen=True)
class DayDelta:
    """Net effect of one day's entries."""

    cash: Decimal = ZERO
    total: Decimal = ZERO


NO_CHANGE = DayDelta()


class Direction(Enum):
    """Replay direction; the value is the sign applied to each day's delta."""

    FORWARD = 1
    BACKWARD = -1


def iter_days(start_date: date, end_date: date) -> Iterator[date]:
    """Yield every calendar day from start_date through end_date inclusive."""
    current = start_date
    while current <= end_date:
        yield current
        current += timedelta(days=1)


def day_deltas(
    entries: Iterable[LedgerEntry],
    currency: str,
    after: date,
    through: date,
    valuations_as_cash: bool = False,
) -> dict[date, DayDelta]:
    """Sum entries dated in (after, through] into one delta per day.

    Every entry is currency-checked, including ones outside the range, so a
    bad entry anywhere in the ledger is reported rather than skipped.
    """
    cash_sums: dict[date, Decimal] = defaultdict(lambda: ZERO)
    total_sums: dict[date, Decimal] = defaultdict(lambda: ZERO)

    for entry in entries:
        if entry.currency != currency:
            raise CurrencyMismatchError(entry.currency, currency, entry.entry_date)
        if entry.entry_date <= after or entry.entry_date > through:
            continue

        amount = Decimal(entry.amount)
        total_sums[entry.entry_date] += amount
        if entry.kind in CASH_KINDS or valuations_as_cash:
            cash_sums[entry.entry_date] += amount

    return {
        day: DayDelta(cash=cash_sums.get(day, ZERO), total=total)
        for day, total in total_sums.items()
    }


def replay(
    anchor_date: date,
    anchor_cash: Decimal,
    anchor_total: Decimal,
    deltas: dict[date, DayDelta],
    stop_date: date,
    direction: Direction,
) -> list[DailyBalance]:
    """Walk from the anchor to stop_date, one row per day, ascending output.

    Forward: each step applies the delta of the day being entered.
    Backward: each step removes the delta of the day being left.
    """
    step = timedelta(days=direction.value)
    sign = direction.value
    cash, total = Decimal(anchor_cash), Decimal(anchor_total)

    rows = [DailyBalance(anchor_date, cash, total)]
    current = anchor_date
    while current != stop_date:
        effect_day = current + step if direction is Direction.FORWARD else current
        delta = deltas.get(effect_day, NO_CHANGE)
        cash += sign * delta.cash
        total += sign * delta.total
        current += step
        rows.append(DailyBalance(current, cash, total))

    if direction is Direction.BACKWARD:
        rows.reverse()
    return rows


class ForwardCalculator:
    """Replays entries forward from a known starting balance.

    Args:
        valuations_as_cash: Treat valuation entries as re-basing cash too.
            Used for accounts without holdings so balance equals cash.
    """

    def __init__(self, valuations_as_cash: bool = False):
        self.valuations_as_cash = valuations_as_cash

    def compute(
        self,
        start_date: date,
        start_cash_balance: Decimal,
        start_total_balance: Decimal,
        entries: Iterable[LedgerEntry],
        end_date: date,
        currency: str,
    ) -> list[DailyBalance]:
        """One balance per day in [start_date, end_date].

        The start values are the balances at the end of start_date, so only
        entries dated after start_date are applied.
        """
        if end_date < start_date:
            raise InvalidRangeError(start_date, end_date)

        deltas = day_deltas(
            entries, currency, after=start_date, through=end_date,
            valuations_as_cash=self.valuations_as_cash,
        )
        return replay(
            start_date, start_cash_balance, start_total_balance,
            deltas, end_date, Direction.FORWARD,
        )


class ReverseCalculator:
    """Reconstructs history backward from a known ending balance."""

    def __init__(self, valuations_as_cash: bool = False):
        self.valuations_as_cash = valuations_as_cash

    def compute(
        self,
        end_date: date,
        end_cash_balance: Optional[Decimal],
        end_total_balance: Optional[Decimal],
        entries: Iterable[LedgerEntry],
        start_date: date,
        currency: str,
    ) -> list[DailyBalance]:
        """One balance per day in [start_date, end_date], ascending.

        The end values are the balances at the end of end_date. Entries dated
        on start_date are part of the start day's balance and are not removed.
        """
        if end_cash_balance is None or end_total_balance is None:
            raise InsufficientAnchorError(
                f"Reverse replay to {start_date} needs an ending balance on {end_date}"
            )
        if end_date < start_date:
            raise InvalidRangeError(start_date, end_date)

        deltas = day_deltas(
            entries, currency, after=start_date, through=end_date,
            valuations_as_cash=self.valuations_as_cash,
        )
        return replay(
            end_date, end_cash_balance, end_total_balance,
            deltas, start_date, Direction.BACKWARD,
        )
