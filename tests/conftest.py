"""Test configuration and fixtures.

Each test gets its own in-memory SQLite database (aiosqlite) with every
table created up front. Services commit freely; nothing outlives the test.
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from provisioning.config import settings
from provisioning.database import Base, get_db
from provisioning.main import app
from provisioning.models.registration import RegistrationTicket
from provisioning.redis import get_redis
from provisioning.services.policy import InstancePolicy

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_settings() -> None:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    object.__setattr__(settings, "env", "test")
    object.__setattr__(settings, "rate_limit_enabled", False)
    object.__setattr__(settings, "enable_active_email_validation", False)
    object.__setattr__(settings, "email_required_for_signup", False)
    object.__setattr__(settings, "disable_registration", False)
    object.__setattr__(settings, "enable_email", True)
    object.__setattr__(settings, "email_backend", "log")
    yield  # type: ignore[misc]
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database; StaticPool keeps the single connection alive."""
    test_engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def db_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with overridden DB and Redis dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def override_get_redis() -> AsyncGenerator[None, None]:
        # Rate limiting is off in tests; see test_rate_limit.py for the bucket
        yield None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_policy(**overrides) -> InstancePolicy:  # type: ignore[no-untyped-def]
    """Policy snapshot of the current settings with `overrides` applied."""
    return InstancePolicy.from_settings(settings).model_copy(update=overrides)


def make_signup_data(
    username: str = "alice",
    password: str = "correct horse",
    **extra: str | None,
) -> dict:
    """Factory for a /signup payload (wire field names)."""
    data: dict = {"username": username, "password": password}
    data.update({k: v for k, v in extra.items() if v is not None})
    return data


async def create_ticket(
    db: AsyncSession,
    code: str | None = None,
    expires_at: datetime | None = None,
    used_at: datetime | None = None,
    used_by_id: uuid.UUID | None = None,
) -> RegistrationTicket:
    ticket = RegistrationTicket(
        code=code or f"invite-{uuid.uuid4().hex[:8]}",
        expires_at=expires_at,
        used_at=used_at,
        used_by_id=used_by_id,
    )
    db.add(ticket)
    await db.commit()
    return ticket
