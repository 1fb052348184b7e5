"""BalanceSyncRun model - records the outcome of each balance sync run."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid, utc_now


class BalanceSyncRun(Base):
    """A log entry recording the result of one balance sync for one account."""

    __tablename__ = "balance_sync_runs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    status = Column(String, nullable=False)  # "success" | "failed" | "cancelled"
    strategy = Column(String, nullable=True)  # "forward" | "reverse"
    window_start = Column(Date, nullable=True)
    window_end = Column(Date, nullable=True)
    degraded_days = Column(Integer, default=0)
    inserted = Column(Integer, default=0)
    updated = Column(Integer, default=0)
    deleted = Column(Integer, default=0)
    error_kind = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=False, default=utc_now)
    finished_at = Column(DateTime, nullable=True)

    # Relationships
    account = relationship("Account", back_populates="sync_runs")
