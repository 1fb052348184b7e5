"""Unit tests for AccountService trigger helpers."""

from decimal import Decimal

import pytest

from models import Account, AccountType, Balance, BalanceSyncRun, Entry, EntryKind
from services.account_service import AccountService
from services.balance_store import BalanceStore
from services.balance_syncer import SyncStatus
from tests.fixtures import (
    TODAY,
    add_entry,
    add_holding,
    add_price,
    days_before,
    make_account,
    make_syncer,
)


@pytest.fixture
def service():
    return AccountService(syncer=make_syncer())


def balances(db, account_id):
    return [Decimal(str(b.balance)) for b in BalanceStore.balance_series(db, account_id)]


class TestCreateAndSync:
    def test_opening_balance_synced(self, db, service):
        account, result = service.create_and_sync(
            db, name="Savings", opening_balance=Decimal("250"), opening_date=days_before(2)
        )

        assert result.status == SyncStatus.success
        assert account.last_sync_status == "success"
        assert balances(db, account.id) == [Decimal("250")] * 3

    def test_liability_classification(self, db, service):
        account, _ = service.create_and_sync(
            db, name="Card", account_type="credit",
            opening_balance=Decimal("-40"), opening_date=TODAY,
        )
        assert account.classification == "liability"
        assert balances(db, account.id) == [Decimal("-40")]

    def test_without_opening_balance_does_not_sync(self, db, service):
        account, result = service.create_and_sync(db, name="Empty", currency="eur")

        assert result is None
        assert account.currency == "EUR"
        assert BalanceStore.bounds(db, account.id) is None


class TestUpdateBalanceWithSync:
    def test_records_difference_as_valuation(self, db, service, account):
        add_entry(db, account, days_before(3), "100")
        service.syncer.sync(db, account.id)

        result = service.update_balance_with_sync(db, account.id, Decimal("130"), as_of=TODAY)

        assert result.status == SyncStatus.success
        assert balances(db, account.id) == [Decimal("100")] * 3 + [Decimal("130")]
        entry = db.query(Entry).filter(Entry.kind == "valuation").one()
        assert Decimal(str(entry.amount)) == Decimal("30")

    def test_unchanged_balance_adds_no_entry(self, db, service, account):
        add_entry(db, account, days_before(1), "100")

        service.update_balance_with_sync(db, account.id, Decimal("100"), as_of=TODAY)

        assert db.query(Entry).count() == 1

    def test_unknown_account(self, db, service):
        assert service.update_balance_with_sync(db, "missing", Decimal("1")) is None


class TestUpdateAccount:
    def test_currency_locked_once_balances_exist(self, db, service, account):
        add_entry(db, account, TODAY, "1")
        service.syncer.sync(db, account.id)

        with pytest.raises(ValueError, match="currency"):
            AccountService.update_account(db, account.id, currency="EUR")

    def test_currency_change_allowed_without_balances(self, db, account):
        updated = AccountService.update_account(db, account.id, currency="eur", name="Euro")
        assert updated.currency == "EUR"
        assert updated.name == "Euro"

    def test_type_change_updates_classification(self, db, account):
        updated = AccountService.update_account(db, account.id, account_type=AccountType.loan)
        assert updated.classification == "liability"

    def test_type_change_recomputes_whole_series(self, db, service):
        account = make_account(db, name="Brokerage", account_type=AccountType.investment)
        start = days_before(2)
        add_entry(db, account, start, "500")
        add_entry(db, account, start, "100", kind=EntryKind.valuation)
        add_holding(db, account, "VTI", start, "10")
        add_price(db, "VTI", start, "20")
        service.syncer.sync(db, account.id)
        assert balances(db, account.id) == [Decimal("800")] * 3

        updated = AccountService.update_account(db, account.id, account_type=AccountType.cash)
        assert updated.balances_dirty_from == start

        result = service.syncer.sync(db, account.id)

        rows = BalanceStore.balance_series(db, account.id)
        assert result.window.start == start
        assert [Decimal(str(r.balance)) for r in rows] == [Decimal("600")] * 3
        assert all(r.balance == r.cash_balance for r in rows)

    def test_same_type_leaves_dirty_marker(self, db, service, account):
        add_entry(db, account, days_before(2), "10")
        service.syncer.sync(db, account.id)

        updated = AccountService.update_account(db, account.id, account_type=AccountType.cash)

        assert updated.balances_dirty_from is None

    def test_unknown_account(self, db):
        assert AccountService.update_account(db, "missing", name="x") is None


class TestDestroyLater:
    def test_linked_account_refused(self, db):
        linked = make_account(db, is_linked=True)

        with pytest.raises(ValueError, match="Cannot delete a linked account"):
            AccountService.destroy_later(db, linked.id)

        assert db.query(Account).count() == 1

    def test_removes_account_and_derived_rows(self, db, service, account):
        add_entry(db, account, days_before(1), "5")
        service.syncer.sync(db, account.id)
        account_id = account.id

        assert AccountService.destroy_later(db, account_id) is True

        db.expire_all()
        assert db.query(Account).count() == 0
        assert db.query(Balance).count() == 0
        assert db.query(Entry).count() == 0
        assert db.query(BalanceSyncRun).count() == 0

    def test_unknown_account(self, db):
        assert AccountService.destroy_later(db, "missing") is False
