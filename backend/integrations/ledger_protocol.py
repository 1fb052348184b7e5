"""Collaborator contracts consumed by the balance sync engine.

The engine reads ledgers, holdings, prices and provider anchors only
through these protocols, so any storage layer that implements them can
back an account. The SQL-backed implementations live in ``services``.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Protocol, Sequence

from models import Account, Entry, Holding


@dataclass(frozen=True)
class AnchorBalance:
    """A known (date, cash, total) balance reported from outside the ledger."""

    balance_date: date
    cash_balance: Decimal
    total_balance: Decimal


class OrderedEntrySource(Protocol):
    """Anything that can hand out an account's entries in date order."""

    def entries_since(self, account: Account, since: Optional[date] = None) -> Sequence[Entry]:
        """Entries dated on or after ``since`` (all when None), ascending by date."""
        ...

    def first_entry_date(self, account: Account) -> Optional[date]:
        """Date of the account's earliest entry, or None for an empty ledger."""
        ...


class HoldingsProvider(Protocol):
    """Point-in-time positions of an investment account."""

    def holdings_as_of(self, account: Account, on_date: date) -> Sequence[Holding]:
        """Open positions (non-zero quantity) in effect on ``on_date``."""
        ...


class PriceLookup(Protocol):
    """Market prices by security and day.

    Implementations may block on the network and may be called from
    worker threads. Transient failures raise ``PriceLookupTransientError``.
    """

    def price_on(self, security_id: str, on_date: date) -> Optional[Decimal]:
        """Closing price on exactly ``on_date``, or None when unavailable."""
        ...

    def last_price_before(self, security_id: str, on_date: date) -> Optional[Decimal]:
        """Most recent known price strictly before ``on_date``, or None."""
        ...


class AnchorProvider(Protocol):
    """Externally reported balances used when no internal history exists."""

    def latest_external_balance(self, account: Account) -> Optional[AnchorBalance]:
        ...

    def first_external_balance_date(self, account: Account) -> Optional[date]:
        ...
