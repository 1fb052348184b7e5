"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from api.balances import get_balance_syncer
from database import Base, get_db
from main import app
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import (  # noqa: F401
    account,
    investment_account,
    make_syncer,
    syncer,
)


@pytest.fixture(name="db")
def db_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(name="client")
def client_fixture(db):
    """Create a test client with the test database and a fixed-clock syncer."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    test_syncer = make_syncer()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_balance_syncer] = lambda: test_syncer
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
