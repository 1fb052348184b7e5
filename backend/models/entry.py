"""Entry model - a dated, signed monetary event in an account's ledger."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class EntryKind(str, Enum):
    """How an entry moves the account's balances."""

    cash = "cash"
    trade = "trade"  # Cash leg of a buy/sell; the security leg lives in holdings
    transfer = "transfer"
    valuation = "valuation"  # Valuation adjustment, moves total balance only


class Entry(Base):
    """A single ledger entry. Amounts are signed in the account's currency."""

    __tablename__ = "entries"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id"), nullable=False, index=True
    )
    entry_date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    currency = Column(String(3), nullable=False)
    kind = Column(String, nullable=False, default=EntryKind.cash.value)
    name = Column(String, nullable=True)
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    account = relationship("Account", back_populates="entries")
