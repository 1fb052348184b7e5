"""Yahoo Finance market data provider implementation."""

import logging
from datetime import date, timedelta
from decimal import Decimal

import yfinance as yf

from integrations.exceptions import ProviderConnectionError
from integrations.market_data_protocol import PriceResult

logger = logging.getLogger(__name__)


class YahooFinanceClient:
    """Market data provider using Yahoo Finance (yfinance library).

    Returns only prices for actual trading days. Weekend and holiday gaps
    are left empty on purpose: the holdings valuator decides how to carry
    prices across them and flags those days.
    """

    @property
    def provider_name(self) -> str:
        return "yahoo"

    def get_price_history(
        self, symbols: list[str], start_date: date, end_date: date
    ) -> dict[str, list[PriceResult]]:
        """Fetch historical closing prices from Yahoo Finance.

        Args:
            symbols: List of ticker symbols.
            start_date: Start date (inclusive).
            end_date: End date (inclusive).

        Returns:
            Dict mapping each symbol to its list of PriceResults.

        Raises:
            ProviderConnectionError: If the download itself fails.
        """
        if not symbols:
            return {}

        logger.info(
            "Yahoo Finance: fetching prices for %d symbols (%s to %s)",
            len(symbols), start_date, end_date,
        )

        result: dict[str, list[PriceResult]] = {s: [] for s in symbols}

        # yfinance end is exclusive, so add one day
        download_end = end_date + timedelta(days=1)

        try:
            df = yf.download(
                tickers=symbols,
                start=start_date.isoformat(),
                end=download_end.isoformat(),
                auto_adjust=True,
                progress=False,
            )
        except Exception as e:
            raise ProviderConnectionError(
                f"yfinance download failed for {', '.join(symbols)}: {e}",
                provider_name=self.provider_name,
            ) from e

        if df is None or df.empty:
            return result

        multi_symbol = len(symbols) > 1

        for symbol in symbols:
            closes = self._closes_for(df, symbol, multi_symbol)
            if closes is None:
                continue
            for ts, price in closes.items():
                price_date = ts.date()
                if price_date < start_date or price_date > end_date:
                    continue
                result[symbol].append(
                    PriceResult(
                        symbol=symbol,
                        price_date=price_date,
                        close_price=Decimal(str(round(float(price), 6))),
                        source=self.provider_name,
                    )
                )

        return result

    @staticmethod
    def _closes_for(df, symbol: str, multi_symbol: bool):
        """Extract the non-null Close series for a symbol, or None if absent.

        Newer yfinance releases return (metric, symbol) MultiIndex columns
        even for a single ticker, so that shape is checked first.
        """
        if ("Close", symbol) in df.columns:
            closes = df[("Close", symbol)]
        elif not multi_symbol and "Close" in df.columns:
            # Flat columns for single symbol
            closes = df["Close"]
        else:
            return None

        closes = closes.dropna()
        if closes.empty:
            return None
        return closes
