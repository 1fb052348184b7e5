"""Unit tests for the forward and reverse balance calculators."""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

import pytest

from services.balance_calculator import (
    Direction,
    ForwardCalculator,
    ReverseCalculator,
    day_deltas,
    iter_days,
    replay,
)
from services.exceptions import (
    CurrencyMismatchError,
    InsufficientAnchorError,
    InvalidRangeError,
)

D0 = date(2024, 3, 1)


@dataclass
class E:
    entry_date: date
    amount: Decimal
    currency: str = "USD"
    kind: str = "cash"


def d(n: int) -> date:
    return D0 + timedelta(days=n)


def totals(rows):
    return [r.total_balance for r in rows]


# ---------------------------------------------------------------------------
# Forward
# ---------------------------------------------------------------------------


class TestForwardCalculator:
    def test_sparse_entries_produce_one_row_per_day(self):
        entries = [E(d(1), Decimal("-200")), E(d(3), Decimal("50"))]

        rows = ForwardCalculator().compute(
            D0, Decimal("1000"), Decimal("1000"), entries, d(3), "USD"
        )

        assert [r.balance_date for r in rows] == [d(0), d(1), d(2), d(3)]
        assert totals(rows) == [Decimal("1000"), Decimal("800"), Decimal("800"), Decimal("850")]
        assert all(r.cash_balance == r.total_balance for r in rows)

    def test_entries_on_start_date_are_already_in_start_balance(self):
        entries = [E(d(0), Decimal("999")), E(d(1), Decimal("1"))]

        rows = ForwardCalculator().compute(D0, Decimal("10"), Decimal("10"), entries, d(1), "USD")

        assert totals(rows) == [Decimal("10"), Decimal("11")]

    def test_same_day_entries_summed_regardless_of_order(self):
        entries = [E(d(1), Decimal("5")), E(d(1), Decimal("-3")), E(d(1), Decimal("10"))]

        rows = ForwardCalculator().compute(
            D0, Decimal("0"), Decimal("0"), list(reversed(entries)), d(1), "USD"
        )

        assert rows[-1].total_balance == Decimal("12")

    def test_valuation_moves_total_only_and_persists(self):
        entries = [E(d(1), Decimal("100"), kind="valuation"), E(d(3), Decimal("-20"))]

        rows = ForwardCalculator().compute(
            D0, Decimal("500"), Decimal("500"), entries, d(4), "USD"
        )

        assert [r.cash_balance for r in rows] == [
            Decimal("500"), Decimal("500"), Decimal("500"), Decimal("480"), Decimal("480")
        ]
        assert [r.non_cash_balance for r in rows] == [
            Decimal("0"), Decimal("100"), Decimal("100"), Decimal("100"), Decimal("100")
        ]

    def test_valuations_as_cash_keeps_balance_equal_to_cash(self):
        entries = [E(d(1), Decimal("100"), kind="valuation"), E(d(2), Decimal("-20"))]

        rows = ForwardCalculator(valuations_as_cash=True).compute(
            D0, Decimal("500"), Decimal("500"), entries, d(2), "USD"
        )

        assert all(r.cash_balance == r.total_balance for r in rows)
        assert rows[-1].total_balance == Decimal("580")

    def test_trade_and_transfer_move_cash(self):
        entries = [E(d(1), Decimal("-300"), kind="trade"), E(d(2), Decimal("50"), kind="transfer")]

        rows = ForwardCalculator().compute(D0, Decimal("1000"), Decimal("1000"), entries, d(2), "USD")

        assert [r.cash_balance for r in rows] == [Decimal("1000"), Decimal("700"), Decimal("750")]

    def test_single_day_range(self):
        rows = ForwardCalculator().compute(D0, Decimal("1"), Decimal("1"), [], D0, "USD")
        assert len(rows) == 1

    def test_end_before_start_raises(self):
        with pytest.raises(InvalidRangeError):
            ForwardCalculator().compute(d(2), Decimal("0"), Decimal("0"), [], d(1), "USD")

    def test_currency_mismatch_raises(self):
        entries = [E(d(1), Decimal("5"), currency="EUR")]
        with pytest.raises(CurrencyMismatchError) as exc_info:
            ForwardCalculator().compute(D0, Decimal("0"), Decimal("0"), entries, d(2), "USD")
        assert exc_info.value.entry_currency == "EUR"
        assert exc_info.value.account_currency == "USD"

    def test_currency_checked_outside_range(self):
        entries = [E(d(10), Decimal("5"), currency="EUR")]
        with pytest.raises(CurrencyMismatchError):
            ForwardCalculator().compute(D0, Decimal("0"), Decimal("0"), entries, d(2), "USD")


# ---------------------------------------------------------------------------
# Reverse
# ---------------------------------------------------------------------------


class TestReverseCalculator:
    def test_walks_back_from_end_anchor(self):
        entries = [E(d(1), Decimal("-200")), E(d(3), Decimal("50"))]

        rows = ReverseCalculator().compute(
            d(3), Decimal("850"), Decimal("850"), entries, D0, "USD"
        )

        assert [r.balance_date for r in rows] == [d(0), d(1), d(2), d(3)]
        assert totals(rows) == [Decimal("1000"), Decimal("800"), Decimal("800"), Decimal("850")]

    def test_missing_anchor_raises(self):
        with pytest.raises(InsufficientAnchorError):
            ReverseCalculator().compute(d(3), None, None, [], D0, "USD")

    def test_end_before_start_raises(self):
        with pytest.raises(InvalidRangeError):
            ReverseCalculator().compute(D0, Decimal("0"), Decimal("0"), [], d(1), "USD")

    def test_reverse_reproduces_forward_series(self):
        entries = [
            E(d(2), Decimal("-12.34")),
            E(d(2), Decimal("40"), kind="valuation"),
            E(d(5), Decimal("7.01"), kind="trade"),
            E(d(9), Decimal("-100"), kind="transfer"),
        ]
        forward = ForwardCalculator().compute(
            D0, Decimal("250"), Decimal("300"), entries, d(12), "USD"
        )
        last = forward[-1]

        reverse = ReverseCalculator().compute(
            last.balance_date, last.cash_balance, last.total_balance, entries, D0, "USD"
        )

        assert reverse == forward


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


class TestDayDeltas:
    def test_only_entries_in_half_open_range(self):
        entries = [E(d(0), Decimal("1")), E(d(1), Decimal("2")), E(d(3), Decimal("4"))]

        deltas = day_deltas(entries, "USD", after=d(0), through=d(2))

        assert list(deltas) == [d(1)]
        assert deltas[d(1)].cash == Decimal("2")

    def test_valuation_has_no_cash_effect(self):
        deltas = day_deltas([E(d(1), Decimal("9"), kind="valuation")], "USD", D0, d(1))
        assert deltas[d(1)].cash == Decimal("0")
        assert deltas[d(1)].total == Decimal("9")


class TestReplay:
    def test_backward_output_is_ascending(self):
        rows = replay(d(2), Decimal("0"), Decimal("0"), {}, D0, Direction.BACKWARD)
        assert [r.balance_date for r in rows] == [d(0), d(1), d(2)]


def test_iter_days_inclusive():
    assert list(iter_days(D0, d(2))) == [d(0), d(1), d(2)]
    assert list(iter_days(d(2), D0)) == []
