"""
Pytest configuration and fixtures for otpgate tests.

Every test gets its own in-memory SQLite database, so commits and rollbacks
made by the services never leak between tests.
"""
import sys
import pathlib

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from otpgate import models  # noqa: F401 - registers tables on Base
from otpgate.core.config import IdentityConfig
from otpgate.core.security import hash_password
from otpgate.db import Base
from otpgate.models import Account, AccountStatus
from otpgate.services import build_services
from tests.helpers.identity_helpers import ADMIN_KEY, NOW, PASSWORD, RecordingHook, RecordingNotifier


@pytest.fixture(scope="function")
def engine():
    test_engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    Base.metadata.drop_all(bind=test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    """
    Provide a database session for each test.

    Services commit and roll back on their own, so isolation comes from the
    per-test engine rather than an outer transaction.
    """
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def config():
    return IdentityConfig()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def hook():
    return RecordingHook()


@pytest.fixture
def services(config, notifier, hook):
    return build_services(config=config, notifier=notifier, hook=hook)


@pytest.fixture
def make_account(db):
    """Create a committed account directly, bypassing registration."""
    counter = {"n": 0}

    def _make(
        email=None,
        phone=None,
        password=PASSWORD,
        email_verified=True,
        phone_verified=False,
        **fields,
    ):
        counter["n"] += 1
        account = Account(
            first_name=fields.pop("first_name", "Ada"),
            last_name=fields.pop("last_name", "Lovelace"),
            email=email or f"user{counter['n']}@example.com",
            phone=phone or f"+1201555{counter['n']:04d}",
            email_verified=email_verified,
            phone_verified=phone_verified,
            email_primary=email_verified,
            password_hash=hash_password(password),
            password_history=[],
            account_status=fields.pop("account_status", AccountStatus.ACTIVE.value),
            created_at=NOW,
            **fields,
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _make


@pytest.fixture
def client(db, services, monkeypatch):
    """
    FastAPI TestClient bound to the test database and service container.

    Admin routes accept the `ADMIN_KEY` header value.
    """
    from fastapi.testclient import TestClient

    from otpgate.core.config import settings
    from otpgate.db import get_db
    from otpgate.dependencies.services import get_services
    from otpgate.main import app

    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_KEY)
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_services] = lambda: services
    try:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
