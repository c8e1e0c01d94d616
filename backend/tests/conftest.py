"""
Test fixtures and configuration for pytest.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# get_settings() is only reached when a test builds Settings from the
# environment; keep it valid.
os.environ.setdefault("JWT_ACCESS_TOKEN_SECRET", "test-access-secret-0123456789abcdef")
os.environ.setdefault("JWT_REFRESH_TOKEN_SECRET", "test-refresh-secret-0123456789abcdef")

from config import Settings
from db.database import create_engine_from_settings, create_session_factory, init_db
from main import create_app
from services.auth_service import AuthService, Hashers, NewUser
from services.clock import Clock

ACCESS_SECRET = "test-access-secret-0123456789abcdef"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef"

FROZEN_START = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

CLIENT_IP = "203.0.113.77"
CLIENT_UA = "UA-1"
STRONG_PASSWORD = "Aa1!aaaa"


class FrozenClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = FROZEN_START):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> datetime:
        self.current = self.current + delta
        return self.current


def make_settings(**overrides) -> Settings:
    values = dict(
        APP_MODE="dev",
        DEBUG=False,
        DATABASE_URL="sqlite+aiosqlite://",
        JWT_ACCESS_TOKEN_SECRET=ACCESS_SECRET,
        JWT_REFRESH_TOKEN_SECRET=REFRESH_SECRET,
        # Cheap argon2 parameters keep the suite fast
        PASSWORD_HASH_TIME_COST=1,
        REFRESH_TOKEN_HASH_TIME_COST=1,
        HASH_MEMORY_COST_KIB=1024,
        HASH_PARALLELISM=1,
        TOKEN_SWEEP_ENABLED=False,
        RATE_LIMIT_ENABLED=False,
        # httpx's ASGITransport reports the client as 127.0.0.1
        TRUSTED_PROXIES="127.0.0.1/32",
        LOG_LEVEL="WARNING",
    )
    values.update(overrides)
    return Settings(**values)


def new_user(email: str = "a@x", password: str = STRONG_PASSWORD, **overrides) -> NewUser:
    values = dict(
        email=email,
        first_name="Ada",
        last_name="Lovelace",
        password=password,
        confirm_password=password,
    )
    values.update(overrides)
    return NewUser(**values)


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return make_settings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def hashers(test_settings: Settings) -> Hashers:
    return Hashers.from_settings(test_settings)


@pytest_asyncio.fixture
async def engine(test_settings: Settings):
    """A fresh file-backed SQLite database per test."""
    engine = create_engine_from_settings(test_settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def auth_service(db_session, test_settings, hashers, clock) -> AuthService:
    return AuthService(db_session, test_settings, hashers, clock)


@pytest.fixture
def app(test_settings, clock, engine):
    return create_app(test_settings, clock=clock, engine=engine)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client whose requests appear to come from CLIENT_IP / CLIENT_UA."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Forwarded-For": CLIENT_IP, "User-Agent": CLIENT_UA},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def registered_session(auth_service: AuthService, db_session: AsyncSession):
    """A committed user with one active refresh token issued to CLIENT_IP / CLIENT_UA."""
    outcome = await auth_service.issue_on_register(new_user(), CLIENT_IP, CLIENT_UA)
    assert outcome.ok, outcome.failure
    await db_session.commit()
    return outcome.value
