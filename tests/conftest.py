import os
from typing import AsyncGenerator

from dotenv import load_dotenv

# Optional local overrides (e.g. a real GEMINI_API_KEY for manual runs)
env_test_path = os.path.join(os.path.dirname(__file__), "..", ".env.test")
if os.path.exists(env_test_path):
    load_dotenv(env_test_path)

# Settings are read at import time; point everything at throwaway backends
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.db.base import Base
from libs.db.session import get_async_db

# Import all models so metadata includes every table
from services.referral_service import models as _referral_models  # noqa: F401
from services.variations_service import models as _variation_models  # noqa: F401

get_settings.cache_clear()
settings = get_settings()


@pytest_asyncio.fixture
async def test_engine():
    """
    A fresh in-memory SQLite database per test.
    StaticPool keeps every session on the one connection that holds the data.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """
    Session factory over a file database, one connection per session.

    Used by concurrency tests: each concurrent task gets its own session and
    connection, and SQLite serialises the writers.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    await engine.dispose()


# ---------------------------------------------------------------------------
# Callers
# ---------------------------------------------------------------------------


@pytest.fixture
def customer_user() -> AuthUser:
    return AuthUser(user_id="auth-customer", email="owner@example.com")


@pytest.fixture
def admin_user() -> AuthUser:
    return AuthUser(
        user_id="auth-admin",
        email="admin@example.com",
        app_metadata={"roles": ["admin"]},
    )


@pytest.fixture
def service_user() -> AuthUser:
    return AuthUser(user_id="service:orders", role="service_role")


# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def referral_app(db_session):
    from services.referral_service.app.main import app

    app.dependency_overrides[get_async_db] = lambda: db_session
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def referral_client(referral_app) -> AsyncGenerator[AsyncClient, None]:
    """
    Unauthenticated client for the referral service.
    Protected routes answer 403 (no bearer token) unless a login fixture is used.
    """
    async with AsyncClient(
        transport=ASGITransport(app=referral_app), base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
def login(referral_app):
    """Return a function that makes the referral client act as ``user``."""

    def _login(user: AuthUser) -> AuthUser:
        referral_app.dependency_overrides[get_current_user] = lambda: user
        return user

    return _login


@pytest_asyncio.fixture
async def variations_client(db_session) -> AsyncGenerator[AsyncClient, None]:
    """
    Client for the variations service with a fresh rate-limit window per test.
    The Gemini client is overridden per test with ``gemini_stub``.
    """
    from libs.common.rate_limit import PublicRateLimiter
    from services.variations_service.app.main import app
    from services.variations_service.routers.public import get_rate_limiter

    limiter = PublicRateLimiter(max_requests=3, window_seconds=3600)
    app.dependency_overrides[get_async_db] = lambda: db_session
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


class FakeGeminiClient:
    """Records calls and returns fixed bytes instead of calling Gemini."""

    def __init__(self):
        self.prompts: list[str] = []
        self.downloaded: list[str] = []
        self.error: Exception | None = None

    async def download_image(self, url: str):
        from services.variations_service.services.gemini_client import InlineImage

        self.downloaded.append(url)
        return InlineImage(data=b"reference-bytes", mime_type="image/png")

    async def generate_variation(self, prompt, images):
        from services.variations_service.services.gemini_client import (
            GenerationResult,
            InlineImage,
        )

        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return GenerationResult(
            image=InlineImage(data=b"generated-bytes", mime_type="image/png"),
            model="fake-gemini",
            latency_ms=5,
        )


@pytest.fixture
def gemini_stub():
    """Install a fake Gemini client on the variations app."""
    from services.variations_service.app.main import app
    from services.variations_service.services.gemini_client import get_gemini_client

    stub = FakeGeminiClient()
    app.dependency_overrides[get_gemini_client] = lambda: stub
    yield stub
    app.dependency_overrides.pop(get_gemini_client, None)
