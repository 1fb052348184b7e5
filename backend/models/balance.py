"""Balance model - derived end-of-day balance per account per calendar day."""

from decimal import Decimal

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class Balance(Base):
    """Computed balance for a single account on a single calendar day.

    Rows are written only by the balance syncer. For every account the
    stored dates form one contiguous range with no gaps.
    """

    __tablename__ = "balances"
    __table_args__ = (
        UniqueConstraint("account_id", "balance_date", name="uix_balance_account_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id"), nullable=False, index=True
    )
    balance_date = Column(Date, nullable=False, index=True)
    balance = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    cash_balance = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    holdings_value = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    currency = Column(String(3), nullable=False)
    degraded = Column(Boolean, nullable=False, default=False)  # Stale or missing price used
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(
        DateTime,
        default=utc_now,
        onupdate=utc_now,
    )

    # Relationships
    account = relationship("Account", back_populates="balances")
