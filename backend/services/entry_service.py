"""Entry service - the SQL-backed account ledger."""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Account, Entry, EntryKind

logger = logging.getLogger(__name__)


def mark_dirty(account: Account, from_date: date) -> None:
    """Move the account's dirty marker back to ``from_date`` if it is earlier."""
    current = account.balances_dirty_from
    if current is None or from_date < current:
        account.balances_dirty_from = from_date


class EntryService:
    """Reads and mutates an account's ledger.

    Implements ``OrderedEntrySource`` for the balance syncer. Every
    mutation marks the account dirty from the earliest affected date;
    nothing here recomputes balances. Mutations flush, callers commit.
    """

    def __init__(self, db: Session):
        self.db = db

    def entries_since(self, account: Account, since: Optional[date] = None) -> list[Entry]:
        """Entries on or after ``since`` (whole ledger when None), ascending by date."""
        query = self.db.query(Entry).filter(Entry.account_id == account.id)
        if since is not None:
            query = query.filter(Entry.entry_date >= since)
        return query.order_by(Entry.entry_date.asc(), Entry.created_at.asc()).all()

    def first_entry_date(self, account: Account) -> Optional[date]:
        return (
            self.db.query(func.min(Entry.entry_date))
            .filter(Entry.account_id == account.id)
            .scalar()
        )

    def add_entry(
        self,
        account: Account,
        entry_date: date,
        amount: Decimal,
        kind: EntryKind | str = EntryKind.cash,
        currency: Optional[str] = None,
        name: Optional[str] = None,
    ) -> Entry:
        """Append an entry. Currency defaults to the account's currency."""
        entry = Entry(
            account_id=account.id,
            entry_date=entry_date,
            amount=Decimal(amount),
            currency=currency or account.currency,
            kind=EntryKind(kind).value,
            name=name,
        )
        self.db.add(entry)
        mark_dirty(account, entry_date)
        self.db.flush()
        logger.debug(
            "Entry added to %s on %s: %s %s (%s)",
            account.id, entry_date, entry.amount, entry.currency, entry.kind,
        )
        return entry

    def update_entry(
        self,
        entry: Entry,
        *,
        entry_date: Optional[date] = None,
        amount: Optional[Decimal] = None,
        kind: Optional[EntryKind | str] = None,
        name: Optional[str] = None,
    ) -> Entry:
        """Edit an entry; balances from the earlier of old and new date go dirty."""
        account = self.db.get(Account, entry.account_id)
        affected_from = entry.entry_date

        if entry_date is not None:
            affected_from = min(affected_from, entry_date)
            entry.entry_date = entry_date
        if amount is not None:
            entry.amount = Decimal(amount)
        if kind is not None:
            entry.kind = EntryKind(kind).value
        if name is not None:
            entry.name = name

        mark_dirty(account, affected_from)
        self.db.flush()
        return entry

    def delete_entry(self, entry: Entry) -> None:
        """Remove an entry; balances from its date onward go dirty."""
        account = self.db.get(Account, entry.account_id)
        mark_dirty(account, entry.entry_date)
        self.db.delete(entry)
        self.db.flush()
        logger.debug("Entry %s deleted from %s (%s)", entry.id, account.id, entry.entry_date)
