"""Holding service - point-in-time positions for investment accounts."""

import bisect
import logging
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from models import Account, Holding
from services.entry_service import mark_dirty
from services.security_service import SecurityService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class HoldingService:
    """Implements ``HoldingsProvider`` over the ``holdings`` table.

    Each account's position history is loaded once per service instance
    and answered from memory, since the syncer asks for every day of a
    window.
    """

    def __init__(self, db: Session):
        self.db = db
        self._timelines: dict[str, dict[str, tuple[list[date], list[Holding]]]] = {}

    def holdings_as_of(self, account: Account, on_date: date) -> list[Holding]:
        """Latest row per security dated on or before ``on_date``, open positions only."""
        result = []
        for dates, rows in self._timeline(account).values():
            idx = bisect.bisect_right(dates, on_date)
            if idx == 0:
                continue
            holding = rows[idx - 1]
            if Decimal(holding.quantity) != ZERO:
                result.append(holding)
        return result

    def record_holding(
        self,
        account: Account,
        ticker: str,
        holding_date: date,
        quantity: Decimal,
    ) -> Holding:
        """Upsert the quantity of ``ticker`` held from ``holding_date``."""
        security = SecurityService.ensure_exists(self.db, ticker)
        holding = (
            self.db.query(Holding)
            .filter(
                Holding.account_id == account.id,
                Holding.security_id == security.id,
                Holding.holding_date == holding_date,
            )
            .first()
        )
        if holding:
            holding.quantity = Decimal(quantity)
        else:
            holding = Holding(
                account_id=account.id,
                security_id=security.id,
                holding_date=holding_date,
                quantity=Decimal(quantity),
            )
            self.db.add(holding)

        mark_dirty(account, holding_date)
        self.db.flush()
        self._timelines.pop(account.id, None)
        return holding

    def _timeline(self, account: Account) -> dict[str, tuple[list[date], list[Holding]]]:
        cached = self._timelines.get(account.id)
        if cached is not None:
            return cached

        rows = (
            self.db.query(Holding)
            .filter(Holding.account_id == account.id)
            .order_by(Holding.security_id, Holding.holding_date.asc())
            .all()
        )
        timeline: dict[str, tuple[list[date], list[Holding]]] = {}
        for row in rows:
            dates, holdings = timeline.setdefault(row.security_id, ([], []))
            dates.append(row.holding_date)
            holdings.append(row)

        self._timelines[account.id] = timeline
        return timeline
