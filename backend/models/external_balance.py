"""ExternalBalance model - balances reported by a linked data provider."""

from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class ExternalBalance(Base):
    """A provider-reported (date, cash, total) anchor for reverse replay."""

    __tablename__ = "external_balances"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id"), nullable=False, index=True
    )
    balance_date = Column(Date, nullable=False, index=True)
    cash_balance = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    total_balance = Column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    source = Column(String, nullable=True)  # e.g., "plaid", "manual"
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    account = relationship("Account", back_populates="external_balances")
