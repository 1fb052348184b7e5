"""Holding model - quantity of a security held by an account as of a date."""

from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class Holding(Base):
    """A position record for an investment account.

    A row states the quantity held from ``holding_date`` until the next row
    for the same security. A zero quantity closes the position.
    """

    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "security_id", "holding_date",
            name="uix_holding_account_security_date",
        ),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(
        String(36), ForeignKey("accounts.id"), nullable=False, index=True
    )
    security_id = Column(
        String(36), ForeignKey("securities.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    holding_date = Column(Date, nullable=False, index=True)
    quantity = Column(Numeric(18, 8), nullable=False, default=Decimal("0"))  # Negative for shorts
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    account = relationship("Account", back_populates="holdings")
    security = relationship("Security", back_populates="holdings")
