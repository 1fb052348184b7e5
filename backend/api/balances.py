"""Balance sync API endpoints."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.helpers import get_or_404
from database import get_db
from models import Account, BalanceSyncRun
from schemas import (
    BalanceGapDiagnostic,
    BalanceResponse,
    BalanceSyncRunResponse,
    SyncResultResponse,
)
from services.balance_store import BalanceStore
from services.balance_syncer import BalanceSyncer, SyncResult, SyncStrategy

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["balances"])

# Dependency injection for testing
_balance_syncer_override: Optional[BalanceSyncer] = None


def get_balance_syncer() -> BalanceSyncer:
    """Get BalanceSyncer instance, allowing for test overrides."""
    if _balance_syncer_override is not None:
        return _balance_syncer_override
    return BalanceSyncer()


def set_balance_syncer_override(syncer: Optional[BalanceSyncer]) -> None:
    """Set a BalanceSyncer override for testing."""
    global _balance_syncer_override
    _balance_syncer_override = syncer


def _sync_result_response(result: SyncResult) -> SyncResultResponse:
    return SyncResultResponse(
        status=result.status.value,
        account_id=result.account_id,
        strategy=result.strategy.value if result.strategy else None,
        window_start=result.window.start if result.window else None,
        window_end=result.window.end if result.window else None,
        degraded_days=result.degraded_days,
        inserted=result.inserted,
        updated=result.updated,
        deleted=result.deleted,
        error=result.error.value if result.error else None,
        error_message=result.error_message,
    )


@router.post("/accounts/{account_id}/sync", response_model=SyncResultResponse)
def sync_account_balances(
    account_id: str,
    strategy: SyncStrategy = Query(SyncStrategy.AUTO),
    db: Session = Depends(get_db),
    syncer: BalanceSyncer = Depends(get_balance_syncer),
):
    """Recompute an account's stale daily balances.

    Always returns 200 once the account exists. Whether the run succeeded,
    failed, was skipped because another run holds the account, or was
    cancelled is reported in ``status``.

    Raises:
        HTTPException: 404 if the account doesn't exist.
    """
    get_or_404(db, Account, account_id, "Account not found")
    result = syncer.sync(db, account_id, strategy)
    return _sync_result_response(result)


@router.get("/accounts/{account_id}/balances", response_model=list[BalanceResponse])
def get_account_balances(
    account_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
):
    """Stored daily balances for an account, ascending by date."""
    get_or_404(db, Account, account_id, "Account not found")
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date is before start_date")
    return BalanceStore.balance_series(db, account_id, start_date, end_date)


@router.get("/accounts/{account_id}/sync-runs", response_model=list[BalanceSyncRunResponse])
def get_account_sync_runs(
    account_id: str,
    limit: int = Query(20, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Most recent balance sync runs for an account, newest first."""
    get_or_404(db, Account, account_id, "Account not found")
    return (
        db.query(BalanceSyncRun)
        .filter(BalanceSyncRun.account_id == account_id)
        .order_by(BalanceSyncRun.started_at.desc())
        .limit(limit)
        .all()
    )


@router.get("/balances/diagnostics", response_model=list[BalanceGapDiagnostic])
def get_balance_diagnostics(db: Session = Depends(get_db)):
    """Per-account contiguity check of stored balances."""
    return BalanceStore.diagnose_gaps(db)
