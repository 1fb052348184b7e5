"""Database setup and session management."""

import logging
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


@lru_cache
def get_engine():
    """Get or create the database engine (cached)."""
    connect_args = {}
    database_url = settings.DATABASE_URL

    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    return create_engine(
        database_url,
        connect_args=connect_args,
        echo=False,
    )


def get_session_local():
    """Get a sessionmaker bound to the engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def init_db(engine=None) -> None:
    """Create all tables that do not exist yet."""
    import models  # noqa: F401  (registers mappers on Base.metadata)

    engine = engine or get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Database schema ensured (%s)", engine.url.render_as_string(hide_password=True))


def get_db():
    """Dependency that provides a database session.

    Transaction conventions:
    - Default: services ``flush()``, API layer ``commit()``
    - Exceptions that commit internally:
      - ``BalanceSyncer.sync()``: owns its transaction so a failed run can
        be rolled back and recorded
      - ``AccountService`` trigger helpers: commit the mutation before
        handing the account to the syncer
    """
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
