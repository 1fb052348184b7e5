"""Service for managing Security records."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from models import Security

logger = logging.getLogger(__name__)


class SecurityService:
    """Centralized operations on the Security master list."""

    @staticmethod
    def ensure_exists(
        db: Session,
        ticker: str,
        name: Optional[str] = None,
    ) -> Security:
        """Ensure a Security record exists for the given ticker.

        Tickers are stored uppercase. An existing record's name is filled in
        only if it has none.

        Returns:
            The Security record (flushed but not committed)
        """
        ticker = ticker.upper()
        security = db.query(Security).filter_by(ticker=ticker).first()

        if not security:
            security = Security(ticker=ticker, name=name or ticker)
            db.add(security)
            db.flush()
            logger.info("Created security: %s", ticker)
        elif name and not security.name:
            security.name = name
            db.flush()
            logger.info("Filled missing security name: %s -> %s", ticker, name)

        return security
