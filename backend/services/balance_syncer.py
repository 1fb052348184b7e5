"""Balance syncer - recomputes an account's derived daily balances.

One run per account at a time. A run works out which days are stale,
picks an anchor to replay from, values holdings for investment accounts,
and reconciles the result into the balance store. Failures roll back and
are reported on the returned ``SyncResult`` rather than raised.
"""

import logging
import threading
import time as time_module
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from sqlalchemy.orm import Session

from config import settings
from integrations.ledger_protocol import (
    AnchorBalance,
    AnchorProvider,
    HoldingsProvider,
    OrderedEntrySource,
    PriceLookup,
)
from models import Account, BalanceSyncRun
from services.anchor_service import AnchorService
from services.balance_calculator import (
    ZERO,
    DailyBalance,
    ForwardCalculator,
    ReverseCalculator,
    iter_days,
)
from services.balance_store import BalancePoint, BalanceStore, DateRange, ReconcileCounts
from services.entry_service import EntryService
from services.exceptions import (
    BalanceSyncError,
    ErrorKind,
    InsufficientAnchorError,
    InvalidRangeError,
    NoAnchorAvailableError,
    SyncTimeoutError,
)
from services.holding_service import HoldingService
from services.holdings_valuator import DayValuation, HoldingsValuator
from services.market_data_service import StoredPriceLookup

logger = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)


class SyncStrategy(str, Enum):
    """How a run anchors its replay. AUTO resolves to FORWARD or REVERSE."""

    AUTO = "auto"
    FORWARD = "forward"
    REVERSE = "reverse"


class SyncStatus(str, Enum):
    success = "success"
    failed = "failed"
    already_syncing = "already_syncing"
    cancelled = "cancelled"


@dataclass
class SyncResult:
    """Outcome of one ``BalanceSyncer.sync`` call."""

    status: SyncStatus
    account_id: str
    window: Optional[DateRange] = None
    strategy: Optional[SyncStrategy] = None
    degraded_days: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    error: Optional[ErrorKind] = None
    error_message: Optional[str] = None


class SyncLockRegistry:
    """Process-wide set of accounts with a sync in progress.

    ``try_acquire`` is a compare-and-set: it either takes the account's
    token or reports that another run holds it, and never blocks.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._held: set[str] = set()

    def try_acquire(self, account_id: str) -> bool:
        with self._lock:
            if account_id in self._held:
                return False
            self._held.add(account_id)
            return True

    def release(self, account_id: str) -> None:
        with self._lock:
            self._held.discard(account_id)

    def is_held(self, account_id: str) -> bool:
        with self._lock:
            return account_id in self._held


default_lock_registry = SyncLockRegistry()


@dataclass
class _Plan:
    """Resolved window and anchor for one run."""

    start_date: date  # earliest day the account can have a balance
    window: DateRange  # stored rows in here are replaced
    compute_start: date  # first day the series covers
    compute_end: date
    strategy: SyncStrategy
    prior_row: Optional[DailyBalance] = None  # forward anchor, end of compute_start - 1
    anchor: Optional[AnchorBalance] = None  # reverse anchor


class _Cancelled(Exception):
    pass


class BalanceSyncer:
    """Orchestrates a balance recomputation for one account.

    Collaborators are built per run from the caller's session, so tests
    can swap any of them through the constructor.
    """

    def __init__(
        self,
        lock_registry: Optional[SyncLockRegistry] = None,
        entry_source_factory: Callable[[Session], OrderedEntrySource] = EntryService,
        holdings_provider_factory: Callable[[Session], HoldingsProvider] = HoldingService,
        anchor_provider_factory: Callable[[Session], AnchorProvider] = AnchorService,
        price_lookup_factory: Optional[Callable[[Session, Account, date], PriceLookup]] = None,
        valuator_factory: Callable[[PriceLookup], HoldingsValuator] = HoldingsValuator,
        today: Optional[Callable[[], date]] = None,
        timeout_seconds: Optional[float] = None,
        chunk_days: Optional[int] = None,
    ):
        self.lock_registry = lock_registry or default_lock_registry
        self.entry_source_factory = entry_source_factory
        self.holdings_provider_factory = holdings_provider_factory
        self.anchor_provider_factory = anchor_provider_factory
        self.price_lookup_factory = price_lookup_factory or StoredPriceLookup.for_account
        self.valuator_factory = valuator_factory
        self.today = today or date.today
        self.timeout_seconds = (
            settings.SYNC_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        )
        self.chunk_days = settings.SYNC_CHUNK_DAYS if chunk_days is None else chunk_days

    def sync(
        self,
        db: Session,
        account_id: str,
        strategy: SyncStrategy | str = SyncStrategy.AUTO,
    ) -> SyncResult:
        """Recompute the stale part of an account's balance history.

        Returns immediately with ``already_syncing`` if another run holds
        the account. Otherwise the run owns ``db``'s transaction: it commits
        on success and rolls back on failure.
        """
        strategy = SyncStrategy(strategy)
        if not self.lock_registry.try_acquire(account_id):
            logger.info("Balance sync for %s already in progress, skipping", account_id)
            return SyncResult(status=SyncStatus.already_syncing, account_id=account_id)

        try:
            return self._run(db, account_id, strategy)
        finally:
            self.lock_registry.release(account_id)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def _run(self, db: Session, account_id: str, strategy: SyncStrategy) -> SyncResult:
        account = db.get(Account, account_id)
        if account is None:
            return SyncResult(
                status=SyncStatus.failed,
                account_id=account_id,
                error=ErrorKind.account_not_found,
                error_message=f"Account not found: {account_id}",
            )
        if account.pending_deletion:
            logger.info("Account %s is pending deletion, not syncing", account_id)
            return SyncResult(status=SyncStatus.cancelled, account_id=account_id)

        started_at = datetime.now(timezone.utc)
        dirty_marker = account.balances_dirty_from
        account.last_sync_status = "syncing"
        account.last_sync_time = started_at
        db.commit()

        deadline = None
        if self.timeout_seconds and self.timeout_seconds > 0:
            deadline = time_module.monotonic() + self.timeout_seconds

        plan: Optional[_Plan] = None
        failed_range: Optional[DateRange] = None
        counts = ReconcileCounts()
        try:
            plan = self._plan(db, account, strategy)
            failed_range = plan.window
            logger.info(
                "Balance sync %s: %s strategy, window %s..%s",
                account.id, plan.strategy.value, plan.window.start, plan.window.end,
            )

            series, price_lookup = self._compute(db, account, plan, deadline)
            degraded_days = sum(1 for p in series if p.degraded)

            for chunk in plan.window.chunks(self.chunk_days):
                failed_range = DateRange(chunk.start, plan.window.end)
                if self._is_cancelled(db, account_id):
                    raise _Cancelled()
                self._check_deadline(deadline, failed_range)
                counts = counts + BalanceStore.reconcile(db, account, chunk, series)
                if self.chunk_days:
                    db.commit()

            if self._is_cancelled(db, account_id):
                raise _Cancelled()

            persist_fetched = getattr(price_lookup, "persist_fetched", None)
            if persist_fetched is not None:
                persist_fetched(db)

            self._clear_dirty_marker(db, account, dirty_marker)
            result = SyncResult(
                status=SyncStatus.success,
                account_id=account_id,
                window=plan.window,
                strategy=plan.strategy,
                degraded_days=degraded_days,
                inserted=counts.inserted,
                updated=counts.updated,
                deleted=counts.deleted,
            )
            self._record(db, account, result, started_at)
            db.commit()
            logger.info(
                "Balance sync %s succeeded: +%d ~%d -%d, %d degraded days",
                account_id, counts.inserted, counts.updated, counts.deleted, degraded_days,
            )
            return result

        except _Cancelled:
            db.rollback()
            logger.info("Balance sync for %s cancelled, account is being deleted", account_id)
            result = SyncResult(
                status=SyncStatus.cancelled,
                account_id=account_id,
                window=plan.window if plan else None,
                strategy=plan.strategy if plan else None,
            )
            self._record_after_rollback(db, account_id, result, started_at)
            return result

        except BalanceSyncError as e:
            db.rollback()
            logger.warning(
                "Balance sync for %s failed (%s): %s", account_id, e.kind.value, e.message
            )
            result = self._failure(account_id, plan, failed_range, e.kind, e.message, counts)
            self._record_after_rollback(db, account_id, result, started_at)
            return result

        except Exception as e:
            db.rollback()
            logger.error("Unexpected error syncing balances for %s", account_id, exc_info=True)
            result = self._failure(
                account_id, plan, failed_range, ErrorKind.unexpected, str(e), counts
            )
            self._record_after_rollback(db, account_id, result, started_at)
            return result

    def _failure(
        self,
        account_id: str,
        plan: Optional[_Plan],
        failed_range: Optional[DateRange],
        kind: ErrorKind,
        message: str,
        counts: ReconcileCounts,
    ) -> SyncResult:
        """Build a failed result. Counts survive only for committed chunks."""
        committed = counts if self.chunk_days else ReconcileCounts()
        return SyncResult(
            status=SyncStatus.failed,
            account_id=account_id,
            window=failed_range,
            strategy=plan.strategy if plan else None,
            inserted=committed.inserted,
            updated=committed.updated,
            deleted=committed.deleted,
            error=kind,
            error_message=message,
        )

    @staticmethod
    def _is_cancelled(db: Session, account_id: str) -> bool:
        """True if the account was deleted or flagged for deletion since the run began."""
        pending = (
            db.query(Account.pending_deletion)
            .filter(Account.id == account_id)
            .scalar()
        )
        return pending is None or bool(pending)

    @staticmethod
    def _check_deadline(deadline: Optional[float], remaining: DateRange) -> None:
        if deadline is not None and time_module.monotonic() > deadline:
            raise SyncTimeoutError(
                f"Sync timed out before {remaining.start}..{remaining.end} was written"
            )

    @staticmethod
    def _clear_dirty_marker(db: Session, account: Account, seen: Optional[date]) -> None:
        """Clear the dirty marker unless a ledger edit moved it during the run."""
        current = (
            db.query(Account.balances_dirty_from)
            .filter(Account.id == account.id)
            .scalar()
        )
        if current == seen:
            account.balances_dirty_from = None
        else:
            logger.info(
                "Account %s dirty marker moved to %s during sync, leaving it set",
                account.id, current,
            )

    @staticmethod
    def _record(db: Session, account: Account, result: SyncResult, started_at: datetime) -> None:
        """Mirror the result onto the account and add a BalanceSyncRun row."""
        finished_at = datetime.now(timezone.utc)
        account.last_sync_status = result.status.value
        account.last_sync_time = finished_at
        account.last_sync_error = result.error_message
        db.add(
            BalanceSyncRun(
                account_id=account.id,
                status=result.status.value,
                strategy=result.strategy.value if result.strategy else None,
                window_start=result.window.start if result.window else None,
                window_end=result.window.end if result.window else None,
                degraded_days=result.degraded_days,
                inserted=result.inserted,
                updated=result.updated,
                deleted=result.deleted,
                error_kind=result.error.value if result.error else None,
                error_message=result.error_message,
                started_at=started_at,
                finished_at=finished_at,
            )
        )

    def _record_after_rollback(
        self, db: Session, account_id: str, result: SyncResult, started_at: datetime
    ) -> None:
        account = db.get(Account, account_id)
        if account is None:
            return
        self._record(db, account, result, started_at)
        db.commit()

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _plan(self, db: Session, account: Account, strategy: SyncStrategy) -> _Plan:
        """Work out the stale window and the anchor to replay from."""
        entries = self.entry_source_factory(db)
        anchors = self.anchor_provider_factory(db)
        today = self.today()

        first_entry = entries.first_entry_date(account)
        first_external = anchors.first_external_balance_date(account)
        known = [d for d in (first_entry, first_external) if d is not None]
        stored = BalanceStore.bounds(db, account.id)

        if not known:
            if stored is None:
                if strategy is SyncStrategy.REVERSE:
                    raise InsufficientAnchorError(
                        f"Reverse sync of {account.id} needs an external balance"
                    )
                raise NoAnchorAvailableError(
                    f"Account {account.id} has no entries and no external balance"
                )
            # Ledger emptied: every stored row is stale
            return _Plan(
                start_date=stored.start,
                window=stored,
                compute_start=stored.start,
                compute_end=stored.start - ONE_DAY,
                strategy=SyncStrategy.FORWARD,
            )

        start_date = min(known)
        if start_date > today:
            raise InvalidRangeError(start_date, today)

        window_start = self._window_start(db, account, start_date, stored, today)
        window_end = max(today, stored.end) if stored else today
        compute_start = max(window_start, start_date)

        # A stored row from before the account's first day is stale, never an anchor
        if strategy is not SyncStrategy.REVERSE and compute_start > start_date:
            prior = BalanceStore.balance_on(db, account.id, compute_start - ONE_DAY)
            if prior is not None:
                return _Plan(
                    start_date=start_date,
                    window=DateRange(window_start, window_end),
                    compute_start=compute_start,
                    compute_end=today,
                    strategy=SyncStrategy.FORWARD,
                    prior_row=self._prior_row(account, prior),
                )

        anchor = None
        if strategy is not SyncStrategy.FORWARD:
            anchor = anchors.latest_external_balance(account)
            if anchor is None and strategy is SyncStrategy.REVERSE:
                raise InsufficientAnchorError(
                    f"Reverse sync of {account.id} needs an external balance"
                )

        if anchor is None and first_entry is None:
            raise NoAnchorAvailableError(
                f"Account {account.id} has no stored balance before {compute_start} "
                f"and no entries to replay from zero"
            )

        # Both remaining strategies rebuild the full history
        return _Plan(
            start_date=start_date,
            window=DateRange(min(window_start, start_date), window_end),
            compute_start=start_date,
            compute_end=today,
            strategy=SyncStrategy.REVERSE if anchor is not None else SyncStrategy.FORWARD,
            anchor=anchor,
        )

    def _window_start(
        self,
        db: Session,
        account: Account,
        start_date: date,
        stored: Optional[DateRange],
        today: date,
    ) -> date:
        if stored is None:
            return start_date

        candidates = [min(stored.end + ONE_DAY, today)]
        if account.balances_dirty_from is not None:
            candidates.append(account.balances_dirty_from)
        degraded = BalanceStore.earliest_degraded_date(db, account.id)
        if degraded is not None:
            candidates.append(degraded)
        if stored.start < start_date:
            candidates.append(stored.start)
        return min(candidates)

    @staticmethod
    def _prior_row(account: Account, row) -> DailyBalance:
        """Calculator anchor from a stored balance (holdings value taken out)."""
        cash = Decimal(str(row.cash_balance))
        total = Decimal(str(row.balance))
        if account.is_investment:
            total -= Decimal(str(row.holdings_value or 0))
        else:
            cash = total
        return DailyBalance(row.balance_date, cash, total)

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    def _compute(
        self,
        db: Session,
        account: Account,
        plan: _Plan,
        deadline: Optional[float],
    ) -> tuple[list[BalancePoint], Optional[PriceLookup]]:
        """Compute the series for [compute_start, compute_end]."""
        if plan.compute_end < plan.compute_start:
            return [], None

        investment = account.is_investment
        valuations: dict[date, DayValuation] = {}
        price_lookup = None
        if investment:
            days = list(iter_days(plan.compute_start, plan.compute_end))
            if plan.anchor is not None and plan.anchor.balance_date > plan.compute_end:
                days.append(plan.anchor.balance_date)
            price_lookup = self.price_lookup_factory(db, account, max(days))
            valuator = self.valuator_factory(price_lookup)
            valuations = valuator.value_days(
                account, days, self.holdings_provider_factory(db), deadline=deadline
            )
            self._check_deadline(deadline, plan.window)

        rows = self._replay(db, account, plan, valuations)

        points = []
        for row in rows:
            if row.balance_date < plan.compute_start or row.balance_date > plan.compute_end:
                continue
            valuation = valuations.get(row.balance_date)
            holdings_value = valuation.holdings_value if valuation else ZERO
            points.append(
                BalancePoint(
                    balance_date=row.balance_date,
                    balance=row.total_balance + holdings_value,
                    cash_balance=row.cash_balance,
                    holdings_value=holdings_value,
                    degraded=bool(valuation and valuation.degraded),
                )
            )
        return points, price_lookup

    def _replay(
        self,
        db: Session,
        account: Account,
        plan: _Plan,
        valuations: dict[date, DayValuation],
    ) -> list[DailyBalance]:
        """Run the calculators. Totals exclude holdings value."""
        entries = self.entry_source_factory(db)
        valuations_as_cash = not account.is_investment
        forward = ForwardCalculator(valuations_as_cash=valuations_as_cash)

        if plan.prior_row is not None:
            ledger = entries.entries_since(account, plan.compute_start)
            rows = forward.compute(
                plan.prior_row.balance_date,
                plan.prior_row.cash_balance,
                plan.prior_row.total_balance,
                ledger,
                plan.compute_end,
                account.currency,
            )
            return rows[1:]

        ledger = entries.entries_since(account, None)

        if plan.anchor is None:
            opening = plan.compute_start - ONE_DAY
            rows = forward.compute(opening, ZERO, ZERO, ledger, plan.compute_end, account.currency)
            return rows[1:]

        anchor = plan.anchor
        end_total = anchor.total_balance
        end_cash = anchor.cash_balance
        if account.is_investment:
            valuation = valuations.get(anchor.balance_date)
            if valuation is not None:
                end_total -= valuation.holdings_value
        else:
            end_cash = end_total

        reverse = ReverseCalculator(valuations_as_cash=valuations_as_cash)
        rows = reverse.compute(
            anchor.balance_date, end_cash, end_total, ledger, plan.compute_start, account.currency
        )
        if anchor.balance_date < plan.compute_end:
            rows += forward.compute(
                anchor.balance_date, end_cash, end_total, ledger,
                plan.compute_end, account.currency,
            )[1:]
        return rows
