"""Unit tests for HoldingsValuator."""

import time
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from services.exceptions import SyncTimeoutError
from services.holdings_valuator import HoldingsValuator
from tests.fixtures.mocks import (
    BlockingPriceLookup,
    FakeHolding,
    FlakyPriceLookup,
    MockPriceLookup,
    StaticHoldings,
)

D0 = date(2024, 5, 6)
ACCOUNT = SimpleNamespace(id="acct-1")


def d(n: int) -> date:
    return D0 + timedelta(days=n)


def make_valuator(lookup, **kwargs) -> HoldingsValuator:
    kwargs.setdefault("max_retries", 3)
    kwargs.setdefault("base_delay", 0.5)
    kwargs.setdefault("max_workers", 2)
    return HoldingsValuator(lookup, **kwargs)


class TestValue:
    def test_total_is_cash_plus_market_value(self):
        lookup = MockPriceLookup({("S", D0): Decimal("20")})
        valuator = make_valuator(lookup)

        result = valuator.value(ACCOUNT, D0, [FakeHolding("S", Decimal("10"))], Decimal("500"))

        assert result.total_balance == Decimal("700")
        assert result.holdings_value == Decimal("200")
        assert result.degraded is False

    def test_market_value_rounded_half_up_to_cents(self):
        lookup = MockPriceLookup({("S", D0): Decimal("0.125")})
        valuator = make_valuator(lookup)

        result = valuator.value(ACCOUNT, D0, [FakeHolding("S", Decimal("1"))])

        assert result.holdings_value == Decimal("0.13")

    def test_no_holdings_total_equals_cash(self):
        result = make_valuator(MockPriceLookup()).value(ACCOUNT, D0, [], Decimal("42"))
        assert result.total_balance == Decimal("42")
        assert result.degraded is False

    def test_never_priced_security_contributes_zero_and_degrades(self):
        valuator = make_valuator(MockPriceLookup())

        result = valuator.value(ACCOUNT, D0, [FakeHolding("S", Decimal("10"))], Decimal("500"))

        assert result.total_balance == Decimal("500")
        assert result.degraded is True

    def test_missing_price_seeded_from_last_price_before(self):
        lookup = MockPriceLookup({("S", d(-3)): Decimal("18")})
        valuator = make_valuator(lookup)

        result = valuator.value(ACCOUNT, D0, [FakeHolding("S", Decimal("10"))])

        assert result.holdings_value == Decimal("180")
        assert result.degraded is True


class TestValueDays:
    def test_carry_forward_across_gap(self):
        lookup = MockPriceLookup({("S", d(0)): Decimal("20"), ("S", d(2)): Decimal("25")})
        valuator = make_valuator(lookup)
        holdings = StaticHoldings([FakeHolding("S", Decimal("10"))])
        cash = {d(i): Decimal("500") for i in range(3)}

        result = valuator.value_days(ACCOUNT, [d(2), d(0), d(1)], holdings, cash)

        assert [result[d(i)].total_balance for i in range(3)] == [
            Decimal("700"), Decimal("700"), Decimal("750")
        ]
        assert [result[d(i)].degraded for i in range(3)] == [False, True, False]

    def test_degraded_days_logged(self, caplog):
        valuator = make_valuator(MockPriceLookup())
        holdings = StaticHoldings([FakeHolding("S", Decimal("1"))])

        valuator.value_days(ACCOUNT, [d(0), d(1)], holdings)

        assert "2 of 2 valuation days degraded" in caplog.text

    def test_empty_holdings_make_no_lookups(self):
        lookup = MockPriceLookup()
        result = make_valuator(lookup).value_days(ACCOUNT, [d(0)], StaticHoldings([]))

        assert lookup.calls == []
        assert result[d(0)].holdings_value == Decimal("0")

    def test_deadline_exceeded_raises_timeout(self):
        lookup = BlockingPriceLookup({("S", d(0)): Decimal("1")})
        valuator = make_valuator(lookup)
        holdings = StaticHoldings([FakeHolding("S", Decimal("1"))])

        try:
            with pytest.raises(SyncTimeoutError):
                valuator.value_days(
                    ACCOUNT, [d(0), d(1)], holdings, deadline=time.monotonic() + 0.05
                )
        finally:
            lookup.release.set()


class TestRetry:
    @patch("services.holdings_valuator.time_module.sleep")
    def test_transient_failure_retried_with_backoff(self, mock_sleep):
        lookup = FlakyPriceLookup({("S", D0): Decimal("20")}, failures=2)
        valuator = make_valuator(lookup, max_retries=3, base_delay=0.5)

        result = valuator.value(ACCOUNT, D0, [FakeHolding("S", Decimal("1"))])

        assert result.holdings_value == Decimal("20")
        assert result.degraded is False
        assert [c.args[0] for c in mock_sleep.call_args_list] == [0.5, 1.0]

    @patch("services.holdings_valuator.time_module.sleep")
    def test_exhausted_retries_treated_as_missing(self, mock_sleep):
        lookup = FlakyPriceLookup({("S", d(-1)): Decimal("19"), ("S", D0): Decimal("20")}, failures=5)
        valuator = make_valuator(lookup, max_retries=2)

        result = valuator.value(ACCOUNT, D0, [FakeHolding("S", Decimal("1"))])

        assert result.holdings_value == Decimal("19")
        assert result.degraded is True
        assert lookup.failures_left == 2
        assert mock_sleep.call_count == 2

    @patch("services.holdings_valuator.time_module.sleep")
    def test_zero_retries_makes_single_attempt(self, mock_sleep):
        lookup = FlakyPriceLookup({("S", D0): Decimal("20")}, failures=1)
        valuator = make_valuator(lookup, max_retries=0)

        result = valuator.value(ACCOUNT, D0, [FakeHolding("S", Decimal("1"))])

        assert result.degraded is True
        assert lookup.failures_left == 0
        mock_sleep.assert_not_called()
