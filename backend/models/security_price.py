"""SecurityPrice model - stored daily closing prices."""

from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class SecurityPrice(Base):
    """Closing price of a security on a trading day."""

    __tablename__ = "security_prices"
    __table_args__ = (
        UniqueConstraint("security_id", "price_date", name="uix_security_price_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    security_id = Column(
        String(36), ForeignKey("securities.id", ondelete="CASCADE"), nullable=False, index=True
    )
    price_date = Column(Date, nullable=False, index=True)
    close_price = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    source = Column(String, nullable=False)  # e.g., "yahoo", "manual"
    created_at = Column(DateTime, default=utc_now)

    # Relationships
    security = relationship("Security", back_populates="prices")
