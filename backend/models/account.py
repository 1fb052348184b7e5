"""Account model - a ledger-bearing financial account."""

from enum import Enum

from sqlalchemy import Boolean, Column, Date, DateTime, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class AccountType(str, Enum):
    """Valid account types."""

    cash = "cash"
    investment = "investment"
    credit = "credit"
    loan = "loan"
    other = "other"


class Classification(str, Enum):
    """Which side of the balance sheet an account sits on."""

    asset = "asset"
    liability = "liability"


LIABILITY_TYPES = frozenset({AccountType.credit.value, AccountType.loan.value})


def classification_for(account_type: str) -> str:
    """Default classification for an account type."""
    if account_type in LIABILITY_TYPES:
        return Classification.liability.value
    return Classification.asset.value


class Account(Base):
    """A financial account whose daily balances are derived from its ledger.

    Balances are never edited directly; ledger mutations move
    ``balances_dirty_from`` back to the earliest affected date and the next
    balance sync recomputes from there.
    """

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    account_type = Column(String, nullable=False, default=AccountType.cash.value)
    classification = Column(String, nullable=False, default=Classification.asset.value)
    is_linked = Column(Boolean, default=False, nullable=False)  # Backed by a data provider
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
    )

    # Balance sync tracking
    balances_dirty_from = Column(Date, nullable=True)
    pending_deletion = Column(Boolean, default=False, nullable=False)
    last_sync_time = Column(DateTime, nullable=True)
    last_sync_status = Column(String, nullable=True)  # "syncing" | "success" | "failed" | "cancelled"
    last_sync_error = Column(String, nullable=True)

    # Relationships
    entries = relationship("Entry", back_populates="account", order_by="Entry.entry_date")
    holdings = relationship("Holding", back_populates="account")
    balances = relationship("Balance", back_populates="account", order_by="Balance.balance_date")
    external_balances = relationship("ExternalBalance", back_populates="account")
    sync_runs = relationship("BalanceSyncRun", back_populates="account")

    @property
    def is_investment(self) -> bool:
        return self.account_type == AccountType.investment.value
