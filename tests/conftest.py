"""
Test fixtures and configuration for pytest.
"""

import os
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

# Required before any app module builds its settings
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-0123456789abcdef-XYZ")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-fedcba9876543210-XYZ")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.db.session import Base
from app.models.account import Account
from app.services.auth_service import AuthService
from app.services.password_service import CredentialVerifier

ACCESS_SECRET = "unit-access-secret-0123456789abcdefghij"
REFRESH_SECRET = "unit-refresh-secret-abcdefghij0123456789"
STRONG_PASSWORD = "Corr3ct!Horse"

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingAudit:
    """Audit sink that keeps events in memory."""

    def __init__(self):
        self.events = []

    def record(self, event) -> None:
        self.events.append(event)

    def actions(self):
        return [event.action for event in self.events]

    async def drain(self) -> None:
        return None


# ============== Settings / Engine ==============


@pytest.fixture
def settings() -> Settings:
    """Low work factors keep hashing fast in tests."""
    return Settings(
        _env_file=None,
        jwt_access_secret=ACCESS_SECRET,
        jwt_refresh_secret=REFRESH_SECRET,
        password_hash_rounds=4,
        token_hash_rounds=4,
        database_url=TEST_DATABASE_URL,
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    from app import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session


# ============== Service Fixtures ==============


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.send_password_reset = AsyncMock(return_value=True)
    mock.send_password_changed = AsyncMock(return_value=True)
    mock.send_api_key_created = AsyncMock(return_value=True)
    mock.drain = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def audit():
    return RecordingAudit()


@pytest.fixture
def auth_service(settings, notifier, audit) -> AuthService:
    return AuthService.from_settings(settings, notifier=notifier, audit=audit)


@pytest.fixture
def password_hasher() -> CredentialVerifier:
    return CredentialVerifier(rounds=4)


@pytest.fixture
def make_account(db_session, password_hasher):
    """Factory creating persisted accounts."""

    async def _make(
        username: str = "jdupont",
        email: str = "j.dupont@example.com",
        password: str = STRONG_PASSWORD,
        role: str = "DIETITIAN",
        is_active: bool = True,
        **fields,
    ) -> Account:
        account = Account(
            username=username,
            email=email,
            password_hash=password_hasher.hash(password),
            role=role,
            is_active=is_active,
            first_name=fields.pop("first_name", "Jeanne"),
            last_name=fields.pop("last_name", "Dupont"),
            **fields,
        )
        db_session.add(account)
        await db_session.commit()
        return account

    return _make


@pytest_asyncio.fixture
async def account(make_account) -> Account:
    return await make_account()
