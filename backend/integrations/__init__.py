"""External integrations.

This package contains:
- Ledger protocol: Contracts the balance engine consumes (entries,
  holdings, prices, provider anchors)
- Market data protocol: Common interface for price feed providers
- Yahoo Finance client: Price feed backed by yfinance
"""

from integrations.ledger_protocol import (
    AnchorBalance,
    AnchorProvider,
    HoldingsProvider,
    OrderedEntrySource,
    PriceLookup,
)
from integrations.market_data_protocol import MarketDataProvider, PriceResult

__all__ = [
    "AnchorBalance",
    "AnchorProvider",
    "HoldingsProvider",
    "MarketDataProvider",
    "OrderedEntrySource",
    "PriceLookup",
    "PriceResult",
]
