"""
@module conftest
@description Pytest fixtures for Submission Vault tests.
"""

import json
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["SECRET_KEY"] = "test-secret-key-for-testing-only-32chars!"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENCRYPTION_SECRETS"] = "first-test-secret-value,second-test-secret-value"
os.environ["ENCRYPTION_KDF_ITERATIONS"] = "1000"
os.environ["HASH_SALT"] = "test-hash-salt"
os.environ.pop("ENCRYPTION_KEY", None)
os.environ.pop("ADMIN_API_KEY", None)
os.environ["MIGRATION_SCHEDULE_KEYS"] = ""

from app.config import get_settings

# Clear settings cache to ensure test environment variables take effect
get_settings.cache_clear()

from app.database import Base, get_db
from app.main import app
from app.models import Submission, User
from app.services import encryption, option_store
from app.services.migrations.strategies.base import utcnow


@pytest.fixture(scope="function", autouse=True)
def clear_settings_cache():
    """Clear settings cache before each test to ensure env vars take effect."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with the database session override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_submission(db_session: AsyncSession):
    """Factory for submissions. ``payload`` is JSON encoded into ``data``; ``age_days`` backdates ``created_at``."""

    async def _make(
        payload: Optional[dict] = None,
        age_days: float = 0,
        form_id: int = 1,
        **columns,
    ) -> Submission:
        if payload is not None and "data" not in columns:
            columns["data"] = json.dumps(payload)
        submission = Submission(
            form_id=form_id,
            created_at=datetime.now(timezone.utc) - timedelta(days=age_days),
            **columns,
        )
        db_session.add(submission)
        await db_session.commit()
        return submission

    return _make


@pytest.fixture
def make_encrypted_submission(make_submission):
    """Factory for submissions already carrying ciphertext for every given field."""

    async def _make(
        email: Optional[str] = None,
        cpf_rf: Optional[str] = None,
        payload: Optional[dict] = None,
        age_days: float = 0,
        keep_plaintext: bool = True,
        **columns,
    ) -> Submission:
        data = json.dumps(payload) if payload is not None else None
        if email:
            columns.setdefault("email_encrypted", encryption.encrypt(email))
            columns.setdefault("email_hash", encryption.keyed_hash(email))
        if cpf_rf:
            columns.setdefault("cpf_rf_encrypted", encryption.encrypt(cpf_rf))
            columns.setdefault("cpf_rf_hash", encryption.keyed_hash(cpf_rf))
        if data:
            columns.setdefault("data_encrypted", encryption.encrypt(data))
        if keep_plaintext:
            columns.setdefault("email", email)
            columns.setdefault("cpf_rf", cpf_rf)
            columns.setdefault("data", data)
        return await make_submission(age_days=age_days, **columns)

    return _make


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Factory for user accounts."""

    async def _make(email: str, roles: Optional[list] = None, **fields) -> User:
        user = User(
            email=email,
            username=fields.pop("username", email),
            roles=roles if roles is not None else ["form_user"],
            capabilities=fields.pop("capabilities", {}),
            **fields,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
def mark_encryption_complete(db_session: AsyncSession):
    """Record the encryption completion timestamp ``days_ago`` days in the past."""

    async def _mark(days_ago: float) -> None:
        completed_at = utcnow() - timedelta(days=days_ago)
        await option_store.set_option(db_session, option_store.ENCRYPTION_COMPLETED_AT, completed_at.isoformat())
        await db_session.commit()

    return _mark
