"""Account management service - mutations that trigger a balance sync."""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from models import (
    Account,
    AccountType,
    Balance,
    BalanceSyncRun,
    Entry,
    EntryKind,
    ExternalBalance,
    Holding,
    classification_for,
)
from services.anchor_service import AnchorService
from services.balance_store import BalanceStore
from services.balance_syncer import BalanceSyncer, SyncResult
from services.entry_service import EntryService, mark_dirty

logger = logging.getLogger(__name__)


class AccountService:
    """Account operations that change balances.

    Each helper commits its ledger mutation first and then hands the
    account to the syncer, which runs in its own transaction.
    """

    def __init__(self, syncer: Optional[BalanceSyncer] = None):
        self.syncer = syncer or BalanceSyncer()

    @staticmethod
    def list_accounts(db: Session) -> list[Account]:
        """List all accounts from the database."""
        return db.query(Account).order_by(Account.name).all()

    @staticmethod
    def get_account(db: Session, account_id: str) -> Account | None:
        """Get a specific account by ID."""
        return db.query(Account).filter(Account.id == account_id).first()

    def create_and_sync(
        self,
        db: Session,
        *,
        name: str,
        currency: str = "USD",
        account_type: AccountType | str = AccountType.cash,
        opening_balance: Optional[Decimal] = None,
        opening_date: Optional[date] = None,
        is_linked: bool = False,
    ) -> tuple[Account, Optional[SyncResult]]:
        """Create an account, record its opening balance and sync it.

        The opening balance is stored as a valuation entry dated
        ``opening_date`` (default today). Without one there is nothing to
        replay yet and no sync is run.
        """
        account_type = AccountType(account_type).value
        account = Account(
            name=name,
            currency=currency.upper(),
            account_type=account_type,
            classification=classification_for(account_type),
            is_linked=is_linked,
        )
        db.add(account)
        db.flush()

        if opening_balance is None:
            db.commit()
            db.refresh(account)
            logger.info("Account created: %s (id=%s)", account.name, account.id)
            return account, None

        EntryService(db).add_entry(
            account,
            opening_date or date.today(),
            Decimal(opening_balance),
            kind=EntryKind.valuation,
            name="Opening balance",
        )
        db.commit()
        logger.info(
            "Account created: %s (id=%s) with opening balance %s",
            account.name, account.id, opening_balance,
        )

        result = self.syncer.sync(db, account.id)
        db.refresh(account)
        return account, result

    def update_balance_with_sync(
        self,
        db: Session,
        account_id: str,
        new_balance: Decimal,
        as_of: Optional[date] = None,
    ) -> Optional[SyncResult]:
        """Set an account's balance by recording the difference and syncing.

        The difference against the stored balance on ``as_of`` (default
        today) becomes a valuation entry on that day. Returns None if the
        account does not exist.
        """
        account = self.get_account(db, account_id)
        if account is None:
            return None

        as_of = as_of or date.today()
        current = BalanceStore.balance_on(db, account.id, as_of)
        if current is None:
            # Nothing stored for that day yet; bring the series up to date first
            self.syncer.sync(db, account.id)
            current = BalanceStore.balance_on(db, account.id, as_of)

        current_value = Decimal(str(current.balance)) if current is not None else Decimal("0")
        delta = Decimal(new_balance) - current_value
        if delta != 0:
            EntryService(db).add_entry(
                account, as_of, delta, kind=EntryKind.valuation, name="Balance update",
            )
            db.commit()
            logger.info(
                "Balance of %s set to %s on %s (adjustment %s)",
                account.id, new_balance, as_of, delta,
            )

        return self.syncer.sync(db, account.id)

    @staticmethod
    def update_account(
        db: Session,
        account_id: str,
        *,
        name: str | None = None,
        currency: str | None = None,
        account_type: AccountType | str | None = None,
    ) -> Account | None:
        """Update an account's properties.

        Raises:
            ValueError: If the currency is changed after balances exist.
        """
        account = db.query(Account).filter(Account.id == account_id).first()
        if not account:
            return None

        if currency is not None and currency.upper() != account.currency:
            has_balances = (
                db.query(Balance.id).filter(Balance.account_id == account.id).first()
                is not None
            )
            if has_balances:
                raise ValueError(
                    f"Cannot change currency of account {account.id}: balances already exist"
                )
            account.currency = currency.upper()
        if name is not None:
            account.name = name
        if account_type is not None:
            new_type = AccountType(account_type).value
            if new_type != account.account_type:
                account.account_type = new_type
                account.classification = classification_for(new_type)
                # Holdings valuation and valuation handling both depend on the type
                recompute_from = AccountService._earliest_known_date(db, account)
                if recompute_from is not None:
                    mark_dirty(account, recompute_from)

        db.commit()
        db.refresh(account)
        logger.info("Account updated: %s (id=%s)", account.name, account.id)
        return account

    @staticmethod
    def _earliest_known_date(db: Session, account: Account) -> date | None:
        """First day of the ledger, anchors or stored balances, whichever is earliest."""
        stored = BalanceStore.bounds(db, account.id)
        candidates = [
            EntryService(db).first_entry_date(account),
            AnchorService(db).first_external_balance_date(account),
            stored.start if stored else None,
        ]
        known = [d for d in candidates if d is not None]
        return min(known) if known else None

    @staticmethod
    def destroy_later(db: Session, account_id: str) -> bool:
        """Flag an account for deletion, then remove it with its derived data.

        The flag is committed first so a sync already running for the
        account sees it and skips reconciliation.

        Returns:
            False if the account does not exist.

        Raises:
            ValueError: If the account is linked to a data provider.
        """
        account = db.query(Account).filter(Account.id == account_id).first()
        if not account:
            return False
        if account.is_linked:
            raise ValueError("Cannot delete a linked account")

        account.pending_deletion = True
        db.commit()
        logger.info("Account %s (%s) flagged for deletion", account.name, account_id)

        for model in (Balance, Entry, Holding, ExternalBalance, BalanceSyncRun):
            db.query(model).filter(model.account_id == account_id).delete(
                synchronize_session=False
            )
        db.query(Account).filter(Account.id == account_id).delete(synchronize_session=False)
        db.commit()
        logger.info("Account %s deleted", account_id)
        return True
