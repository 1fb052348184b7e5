"""Pydantic schemas for API request/response validation."""

from schemas.balance import (
    BalanceGapDiagnostic,
    BalanceResponse,
    BalanceSyncRunResponse,
    SyncResultResponse,
)

__all__ = [
    "BalanceGapDiagnostic",
    "BalanceResponse",
    "BalanceSyncRunResponse",
    "SyncResultResponse",
]
