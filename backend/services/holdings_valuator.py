"""Holdings valuator - daily market value of an investment account's positions."""

import logging
import time as time_module
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional, Sequence

from config import settings
from integrations.exceptions import PriceLookupTransientError
from integrations.ledger_protocol import HoldingsProvider, PriceLookup
from models import Account, Holding
from services.exceptions import SyncTimeoutError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class DayValuation:
    """Valuation of one account on one day."""

    valuation_date: date
    total_balance: Decimal
    holdings_value: Decimal
    degraded: bool = False


class HoldingsValuator:
    """Values holdings with per-day graceful degradation.

    A missing price never fails a day: the most recent known price for the
    security is carried forward, or the position contributes zero if the
    security was never priced, and the day is flagged ``degraded`` so a
    later re-sync can correct it once prices are backfilled.

    Carry-forward state lives on the instance, so one valuator should be
    used per sync run and fed days in ascending order.
    """

    def __init__(
        self,
        price_lookup: PriceLookup,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_workers: Optional[int] = None,
    ):
        self.price_lookup = price_lookup
        self.max_retries = settings.PRICE_LOOKUP_MAX_RETRIES if max_retries is None else max_retries
        self.base_delay = settings.PRICE_LOOKUP_BASE_DELAY if base_delay is None else base_delay
        self.max_workers = settings.PRICE_LOOKUP_MAX_WORKERS if max_workers is None else max_workers
        self._last_known: dict[str, Decimal] = {}

    def value(
        self,
        account: Account,
        on_date: date,
        holdings: Sequence[Holding],
        cash_balance: Decimal = ZERO,
    ) -> DayValuation:
        """Value one day: total = cash + sum(quantity x effective price)."""
        prices = self._fetch_day(on_date, holdings)
        return self._apply(account, on_date, holdings, prices, cash_balance)

    def value_days(
        self,
        account: Account,
        days: Sequence[date],
        holdings_provider: HoldingsProvider,
        cash_balances: Optional[dict[date, Decimal]] = None,
        deadline: Optional[float] = None,
    ) -> dict[date, DayValuation]:
        """Value every day in ``days``.

        Positions are resolved on the calling thread (the holdings provider
        may hold a database session). Price lookups for independent days run
        on a thread pool; carry-forward is then applied in date order.

        Args:
            deadline: ``time.monotonic()`` value after which the run is
                abandoned with ``SyncTimeoutError``.
        """
        ordered = sorted(days)
        holdings_by_day = {
            d: list(holdings_provider.holdings_as_of(account, d)) for d in ordered
        }
        prices_by_day = self._fetch_parallel(holdings_by_day, deadline)

        cash_balances = cash_balances or {}
        results: dict[date, DayValuation] = {}
        for d in ordered:
            results[d] = self._apply(
                account, d, holdings_by_day[d], prices_by_day.get(d, {}),
                cash_balances.get(d, ZERO),
            )

        degraded = sum(1 for v in results.values() if v.degraded)
        if degraded:
            logger.warning(
                "Account %s: %d of %d valuation days degraded by missing prices",
                account.id, degraded, len(results),
            )
        return results

    def _fetch_parallel(
        self,
        holdings_by_day: dict[date, list[Holding]],
        deadline: Optional[float],
    ) -> dict[date, dict[str, Optional[Decimal]]]:
        """Look up prices for all days, running independent days concurrently."""
        work = {d: h for d, h in holdings_by_day.items() if h}
        if not work:
            return {}

        executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="price-lookup"
        )
        try:
            futures = {
                executor.submit(self._fetch_day, d, holdings): d
                for d, holdings in work.items()
            }
            done, not_done = wait(futures, timeout=self._remaining(deadline))
            if not_done:
                pending = sorted(futures[f] for f in not_done)
                raise SyncTimeoutError(
                    f"Price lookups for {len(pending)} days did not finish in time "
                    f"(first pending day {pending[0]})"
                )
            return {futures[f]: f.result() for f in done}
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(0.0, deadline - time_module.monotonic())

    def _fetch_day(
        self, on_date: date, holdings: Sequence[Holding]
    ) -> dict[str, Optional[Decimal]]:
        """Prices for each held security on one day (None where unavailable)."""
        return {
            h.security_id: self._with_retry(self.price_lookup.price_on, h.security_id, on_date)
            for h in holdings
        }

    def _with_retry(
        self,
        fn: Callable[[str, date], Optional[Decimal]],
        security_id: str,
        on_date: date,
    ) -> Optional[Decimal]:
        """Call a lookup, retrying transient failures with exponential backoff.

        Once retries are exhausted the price is reported as unavailable.
        """
        attempts = max(0, self.max_retries) + 1
        for attempt in range(attempts):
            try:
                return fn(security_id, on_date)
            except PriceLookupTransientError as exc:
                if attempt == attempts - 1:
                    logger.warning(
                        "Price lookup for %s on %s failed after %d attempts, treating as unavailable: %s",
                        security_id, on_date, attempts, exc,
                    )
                    return None
                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    "Price lookup for %s on %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    security_id, on_date, attempt + 1, attempts, delay, exc,
                )
                time_module.sleep(delay)
        return None

    def _apply(
        self,
        account: Account,
        on_date: date,
        holdings: Sequence[Holding],
        prices: dict[str, Optional[Decimal]],
        cash_balance: Decimal,
    ) -> DayValuation:
        holdings_value = ZERO
        degraded = False

        for holding in holdings:
            security_id = holding.security_id
            price = prices.get(security_id)
            if price is not None:
                self._last_known[security_id] = price
            else:
                degraded = True
                price = self._carried_price(security_id, on_date)
                if price is None:
                    logger.debug(
                        "Account %s: %s never priced as of %s, valued at zero",
                        account.id, security_id, on_date,
                    )
                    continue

            quantity = Decimal(holding.quantity)
            holdings_value += (quantity * price).quantize(CENT, rounding=ROUND_HALF_UP)

        return DayValuation(
            valuation_date=on_date,
            total_balance=Decimal(cash_balance) + holdings_value,
            holdings_value=holdings_value,
            degraded=degraded,
        )

    def _carried_price(self, security_id: str, on_date: date) -> Optional[Decimal]:
        """Most recent known price: this run's last seen price, else the lookup's."""
        if security_id in self._last_known:
            return self._last_known[security_id]

        price = self._with_retry(self.price_lookup.last_price_before, security_id, on_date)
        if price is not None:
            self._last_known[security_id] = price
        return price
