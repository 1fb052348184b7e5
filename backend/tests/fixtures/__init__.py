"""Test fixtures and sample data."""
import pytest
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from models import (
    Account,
    AccountType,
    Entry,
    EntryKind,
    ExternalBalance,
    Holding,
    Security,
    SecurityPrice,
    classification_for,
)
from services.balance_syncer import BalanceSyncer, SyncLockRegistry

# Fixed "today" used by syncers in tests
TODAY = date(2024, 1, 10)


def days_before(n: int, anchor: date = TODAY) -> date:
    return anchor - timedelta(days=n)


def make_account(
    db: Session,
    name: str = "Checking",
    account_type: AccountType = AccountType.cash,
    currency: str = "USD",
    **kwargs,
) -> Account:
    account = Account(
        name=name,
        currency=currency,
        account_type=account_type.value,
        classification=classification_for(account_type.value),
        **kwargs,
    )
    db.add(account)
    db.commit()
    db.refresh(account)
    return account


def add_entry(
    db: Session,
    account: Account,
    entry_date: date,
    amount: str | Decimal,
    kind: EntryKind = EntryKind.cash,
    currency: str | None = None,
) -> Entry:
    """Insert an entry directly, bypassing dirty tracking."""
    entry = Entry(
        account_id=account.id,
        entry_date=entry_date,
        amount=Decimal(amount),
        currency=currency or account.currency,
        kind=kind.value,
    )
    db.add(entry)
    db.commit()
    return entry


def get_or_create_security(db: Session, ticker: str) -> Security:
    security = db.query(Security).filter_by(ticker=ticker).first()
    if not security:
        security = Security(ticker=ticker, name=ticker)
        db.add(security)
        db.flush()
    return security


def add_holding(
    db: Session,
    account: Account,
    ticker: str,
    holding_date: date,
    quantity: str | Decimal,
) -> Holding:
    security = get_or_create_security(db, ticker)
    holding = Holding(
        account_id=account.id,
        security_id=security.id,
        holding_date=holding_date,
        quantity=Decimal(quantity),
    )
    db.add(holding)
    db.commit()
    return holding


def add_price(db: Session, ticker: str, price_date: date, close: str | Decimal) -> SecurityPrice:
    security = get_or_create_security(db, ticker)
    price = SecurityPrice(
        security_id=security.id,
        price_date=price_date,
        close_price=Decimal(close),
        source="test",
    )
    db.add(price)
    db.commit()
    return price


def add_external_balance(
    db: Session,
    account: Account,
    balance_date: date,
    total: str | Decimal,
    cash: str | Decimal | None = None,
) -> ExternalBalance:
    row = ExternalBalance(
        account_id=account.id,
        balance_date=balance_date,
        total_balance=Decimal(total),
        cash_balance=Decimal(total if cash is None else cash),
        source="test",
    )
    db.add(row)
    db.commit()
    return row


def make_syncer(today: date = TODAY, **kwargs) -> BalanceSyncer:
    """A syncer with its own lock registry and a fixed clock."""
    kwargs.setdefault("lock_registry", SyncLockRegistry())
    kwargs.setdefault("timeout_seconds", 0)
    kwargs.setdefault("chunk_days", 0)
    return BalanceSyncer(today=lambda: today, **kwargs)


@pytest.fixture
def account(db):
    """A USD cash account."""
    return make_account(db)


@pytest.fixture
def investment_account(db):
    """A USD investment account."""
    return make_account(db, name="Brokerage", account_type=AccountType.investment)


@pytest.fixture
def syncer():
    return make_syncer()
