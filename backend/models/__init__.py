"""SQLAlchemy ORM models."""

from .account import Account, AccountType, Classification, classification_for
from .balance import Balance
from .balance_sync_run import BalanceSyncRun
from .entry import Entry, EntryKind
from .external_balance import ExternalBalance
from .holding import Holding
from .security import Security
from .security_price import SecurityPrice
from .utils import generate_uuid, utc_now

__all__ = ["Account", "AccountType", "Balance", "BalanceSyncRun", "Classification", "Entry", "EntryKind", "ExternalBalance", "Holding", "Security", "SecurityPrice", "classification_for", "generate_uuid", "utc_now"]
