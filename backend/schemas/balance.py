"""Pydantic schemas for balance and balance sync responses."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class BalanceResponse(BaseModel):
    """One stored end-of-day balance."""

    balance_date: date
    balance: Decimal
    cash_balance: Decimal
    holdings_value: Decimal
    currency: str
    degraded: bool

    model_config = ConfigDict(from_attributes=True)


class SyncResultResponse(BaseModel):
    """Outcome of a balance sync request."""

    status: str
    account_id: str
    strategy: Optional[str] = None
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    degraded_days: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    error: Optional[str] = None
    error_message: Optional[str] = None


class BalanceSyncRunResponse(BaseModel):
    """A recorded sync run."""

    id: str
    account_id: str
    status: str
    strategy: Optional[str] = None
    window_start: Optional[date] = None
    window_end: Optional[date] = None
    degraded_days: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    started_at: datetime
    finished_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BalanceGapDiagnostic(BaseModel):
    """Contiguity check of one account's stored balances."""

    account_id: str
    account_name: str
    first_date: date
    last_date: date
    expected_days: int
    actual_days: int
    missing_days: int
    missing_dates: list[date]
    degraded_days: int
