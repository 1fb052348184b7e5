"""Anchor service - provider-reported balances used as replay anchors."""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from integrations.ledger_protocol import AnchorBalance
from models import Account, ExternalBalance
from services.entry_service import mark_dirty

logger = logging.getLogger(__name__)


class AnchorService:
    """Implements ``AnchorProvider`` over the ``external_balances`` table."""

    def __init__(self, db: Session):
        self.db = db

    def latest_external_balance(self, account: Account) -> Optional[AnchorBalance]:
        row = (
            self.db.query(ExternalBalance)
            .filter(ExternalBalance.account_id == account.id)
            .order_by(ExternalBalance.balance_date.desc(), ExternalBalance.created_at.desc())
            .first()
        )
        if row is None:
            return None
        return AnchorBalance(
            balance_date=row.balance_date,
            cash_balance=Decimal(str(row.cash_balance)),
            total_balance=Decimal(str(row.total_balance)),
        )

    def first_external_balance_date(self, account: Account) -> Optional[date]:
        return (
            self.db.query(func.min(ExternalBalance.balance_date))
            .filter(ExternalBalance.account_id == account.id)
            .scalar()
        )

    def record_external_balance(
        self,
        account: Account,
        balance_date: date,
        total_balance: Decimal,
        cash_balance: Optional[Decimal] = None,
        source: Optional[str] = None,
    ) -> ExternalBalance:
        """Store a provider-reported balance. Cash defaults to the total.

        The account is marked dirty from its earliest known date. The anchor
        only changes stored values when the sync replays in reverse, which
        AUTO does when no earlier stored row exists.
        """
        row = ExternalBalance(
            account_id=account.id,
            balance_date=balance_date,
            total_balance=Decimal(total_balance),
            cash_balance=Decimal(total_balance if cash_balance is None else cash_balance),
            source=source,
        )
        self.db.add(row)

        earliest = self.first_external_balance_date(account)
        mark_dirty(account, min(d for d in (earliest, balance_date) if d is not None))
        self.db.flush()
        logger.info(
            "External balance recorded for %s on %s: %s (cash %s)",
            account.id, balance_date, row.total_balance, row.cash_balance,
        )
        return row
