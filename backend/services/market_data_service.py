"""Market data service - stores closing prices and serves them to the valuator."""

import bisect
import logging
import threading
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import settings
from integrations.exceptions import PriceLookupTransientError, ProviderConnectionError, ProviderError
from integrations.market_data_protocol import MarketDataProvider, PriceResult
from models import Account, Holding, Security, SecurityPrice

logger = logging.getLogger(__name__)


class MarketDataService:
    """Fetches closing prices from a provider and persists them.

    Backfilled prices are what lets a later balance sync clear days that
    were previously valued with stale or missing prices.
    """

    def __init__(self, provider: Optional[MarketDataProvider] = None):
        """Initialize with an optional provider for dependency injection.

        Args:
            provider: Market data provider. If None, a YahooFinanceClient
                     is created on first use.
        """
        self._provider = provider

    @property
    def provider(self) -> MarketDataProvider:
        """Get the market data provider, creating if not provided."""
        if self._provider is None:
            from integrations.yahoo_finance_client import YahooFinanceClient

            self._provider = YahooFinanceClient()
        return self._provider

    def get_price_history(
        self, symbols: list[str], start_date: date, end_date: date
    ) -> dict[str, list[PriceResult]]:
        """Fetch historical prices, normalizing symbols to uppercase."""
        if not symbols:
            return {}
        normalized = [s.upper() for s in symbols]
        return self.provider.get_price_history(normalized, start_date, end_date)

    def backfill_prices(
        self,
        db: Session,
        start_date: date,
        end_date: date,
        security_ids: Optional[Iterable[str]] = None,
    ) -> int:
        """Fetch and upsert prices for securities in a date range.

        Args:
            db: Database session
            start_date: Start date (inclusive)
            end_date: End date (inclusive)
            security_ids: Securities to refresh. Defaults to every security
                          held by any account.

        Returns:
            Number of price rows inserted or updated.
        """
        query = db.query(Security)
        if security_ids is not None:
            query = query.filter(Security.id.in_(list(security_ids)))
        else:
            held = select(Holding.security_id).distinct()
            query = query.filter(Security.id.in_(held))
        securities = query.all()
        if not securities:
            return 0

        by_ticker = {s.ticker.upper(): s for s in securities}
        history = self.get_price_history(list(by_ticker), start_date, end_date)

        written = 0
        for ticker, results in history.items():
            security = by_ticker.get(ticker)
            if security is None:
                continue
            for result in results:
                upsert_price(db, security.id, result.price_date, result.close_price, result.source)
                written += 1

        db.flush()
        logger.info(
            "Price backfill %s..%s: %d rows for %d securities",
            start_date, end_date, written, len(securities),
        )
        return written


def upsert_price(
    db: Session,
    security_id: str,
    price_date: date,
    close_price: Decimal,
    source: str,
) -> SecurityPrice:
    """Insert or update the stored close for (security, day)."""
    existing = (
        db.query(SecurityPrice)
        .filter(
            SecurityPrice.security_id == security_id,
            SecurityPrice.price_date == price_date,
        )
        .first()
    )
    if existing:
        existing.close_price = close_price
        existing.source = source
        return existing

    row = SecurityPrice(
        security_id=security_id,
        price_date=price_date,
        close_price=close_price,
        source=source,
    )
    db.add(row)
    return row


class StoredPriceLookup:
    """``PriceLookup`` over prices loaded up front from ``security_prices``.

    Prices are read into memory before valuation starts, so lookups are
    safe to call from worker threads. When a live provider is configured,
    misses are fetched from it; those results are kept in memory until
    ``persist_fetched`` writes them back on the caller's session.
    """

    def __init__(
        self,
        prices: dict[str, list[tuple[date, Decimal]]],
        tickers: Optional[dict[str, str]] = None,
        provider: Optional[MarketDataProvider] = None,
    ):
        self._dates: dict[str, list[date]] = {}
        self._closes: dict[str, list[Decimal]] = {}
        self._by_day: dict[tuple[str, date], Decimal] = {}
        for security_id, rows in prices.items():
            ordered = sorted(rows)
            self._dates[security_id] = [d for d, _ in ordered]
            self._closes[security_id] = [p for _, p in ordered]
            for d, p in ordered:
                self._by_day[(security_id, d)] = p

        self._tickers = tickers or {}
        self._provider = provider
        self._fetched: dict[tuple[str, date], PriceResult] = {}
        self._lock = threading.Lock()

    @classmethod
    def for_account(
        cls,
        db: Session,
        account: Account,
        through: date,
        provider: Optional[MarketDataProvider] = None,
    ) -> "StoredPriceLookup":
        """Load every stored price up to ``through`` for securities the account has held."""
        security_ids = [
            row[0]
            for row in db.query(Holding.security_id)
            .filter(Holding.account_id == account.id)
            .distinct()
            .all()
        ]
        prices: dict[str, list[tuple[date, Decimal]]] = {sid: [] for sid in security_ids}
        tickers: dict[str, str] = {}
        if security_ids:
            rows = (
                db.query(SecurityPrice.security_id, SecurityPrice.price_date, SecurityPrice.close_price)
                .filter(
                    SecurityPrice.security_id.in_(security_ids),
                    SecurityPrice.price_date <= through,
                )
                .all()
            )
            for security_id, price_date, close_price in rows:
                prices[security_id].append((price_date, Decimal(str(close_price))))
            tickers = {
                s.id: s.ticker
                for s in db.query(Security).filter(Security.id.in_(security_ids)).all()
            }

        if provider is None and settings.MARKET_DATA_LIVE_FETCH:
            provider = MarketDataService().provider

        return cls(prices, tickers=tickers, provider=provider)

    def price_on(self, security_id: str, on_date: date) -> Optional[Decimal]:
        price = self._by_day.get((security_id, on_date))
        if price is not None or self._provider is None:
            return price
        return self._fetch_live(security_id, on_date)

    def last_price_before(self, security_id: str, on_date: date) -> Optional[Decimal]:
        dates = self._dates.get(security_id)
        if not dates:
            return None
        idx = bisect.bisect_left(dates, on_date)
        if idx == 0:
            return None
        return self._closes[security_id][idx - 1]

    def _fetch_live(self, security_id: str, on_date: date) -> Optional[Decimal]:
        """Ask the live provider for one day's close."""
        ticker = self._tickers.get(security_id)
        if ticker is None:
            return None

        with self._lock:
            cached = self._fetched.get((security_id, on_date))
        if cached is not None:
            return cached.close_price

        try:
            history = self._provider.get_price_history([ticker], on_date, on_date)
        except ProviderConnectionError as e:
            raise PriceLookupTransientError(str(e), security_id=security_id) from e
        except ProviderError as e:
            logger.warning("Price provider error for %s on %s: %s", ticker, on_date, e)
            return None

        for result in history.get(ticker, []):
            if result.price_date == on_date:
                with self._lock:
                    self._fetched[(security_id, on_date)] = result
                return result.close_price
        return None

    def persist_fetched(self, db: Session) -> int:
        """Write prices fetched live during this run to ``security_prices``."""
        with self._lock:
            fetched = dict(self._fetched)
            self._fetched.clear()
        for (security_id, price_date), result in fetched.items():
            upsert_price(db, security_id, price_date, result.close_price, result.source)
        return len(fetched)
