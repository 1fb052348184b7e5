"""Typed exception hierarchy for balance sync errors.

Every error carries an ``ErrorKind`` so the syncer can report a
machine-readable reason alongside the failed window.
"""

from datetime import date
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Machine-readable failure reasons reported in sync results."""

    currency_mismatch = "currency_mismatch"
    invalid_range = "invalid_range"
    no_anchor_available = "no_anchor_available"
    insufficient_anchor = "insufficient_anchor"
    reconciliation_aborted = "reconciliation_aborted"
    timeout = "timeout"
    account_not_found = "account_not_found"
    unexpected = "unexpected"


class BalanceSyncError(Exception):
    """Base exception for all balance-sync errors."""

    kind: ErrorKind = ErrorKind.unexpected

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class CurrencyMismatchError(BalanceSyncError):
    """An entry's currency differs from its account's currency."""

    kind = ErrorKind.currency_mismatch

    def __init__(self, entry_currency: str, account_currency: str, entry_date: Optional[date] = None):
        self.entry_currency = entry_currency
        self.account_currency = account_currency
        self.entry_date = entry_date
        on = f" on {entry_date}" if entry_date else ""
        super().__init__(
            f"Entry currency {entry_currency}{on} does not match account currency {account_currency}"
        )


class InvalidRangeError(BalanceSyncError):
    """A date range ends before it starts."""

    kind = ErrorKind.invalid_range

    def __init__(self, start_date: date, end_date: date):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(f"Invalid range: end {end_date} is before start {start_date}")


class NoAnchorAvailableError(BalanceSyncError):
    """Neither a starting balance nor an external balance exists to replay from."""

    kind = ErrorKind.no_anchor_available


class InsufficientAnchorError(BalanceSyncError):
    """Reverse replay was requested without an end-balance anchor."""

    kind = ErrorKind.insufficient_anchor


class ReconciliationAbortedError(BalanceSyncError):
    """The storage layer failed while applying a computed series."""

    kind = ErrorKind.reconciliation_aborted


class SyncTimeoutError(BalanceSyncError):
    """A sync run exceeded its wall-clock budget."""

    kind = ErrorKind.timeout


class AccountNotFoundError(BalanceSyncError):
    """The account does not exist."""

    kind = ErrorKind.account_not_found

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")
