"""Global test configuration and fixtures for the WedAI API."""

import os

# Settings are read from the environment at call time; set them before the app is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./wedai-test.db")
os.environ.setdefault("RECONCILER_ENABLED", "false")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-key-for-testing-only")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")

from collections.abc import AsyncGenerator, Callable
from uuid import uuid4

import fakeredis
import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.api.core.constants import ADMIN_TOKEN_HEADER, JWT_ALGORITHM
from src.api.core.dependencies import get_db_session, get_quota_settings
from src.core.context import Identity
from src.core.enums import Tier
from src.database.connection import create_engine, create_session_factory
from src.database.models import Base
from src.modules.credits.ledger import CreditLedger
from src.modules.identity.resolver import IdentityResolver
from src.modules.rate_limit.limiter import RateLimiter
from src.modules.rate_limit.store import WindowCounterStore
from src.modules.usage.orchestrator import UsageOrchestrator
from src.modules.usage.provider import get_generation_provider
from src.redis.client import get_redis_client
from src.utils.settings.auth import AuthSettings
from src.utils.settings.provider import ProviderSettings
from src.utils.settings.quota import QuotaSettings
from src.utils.settings.settlement import SettlementSettings

from tests.factories import CreditBalanceFactory
from tests.utils.fakes import FakeGenerationProvider


@pytest.fixture
def credit_balance_factory():
    return CreditBalanceFactory


@pytest.fixture
def quota_settings() -> QuotaSettings:
    """Defaults with room for the multi-request scenarios below."""
    return QuotaSettings()


@pytest.fixture
def provider_settings() -> ProviderSettings:
    return ProviderSettings(PROVIDER_TIMEOUT_SECONDS=0.5, MAX_OUTPUTS_PER_REQUEST=4)


@pytest.fixture
def settlement_settings() -> SettlementSettings:
    return SettlementSettings(RESERVATION_GRACE_SECONDS=300, RECONCILER_ENABLED=False)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """A file-backed SQLite database per test, so concurrent sessions really contend."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def window_store(redis_client, quota_settings) -> WindowCounterStore:
    return WindowCounterStore(redis_client, quota_settings.RATE_WINDOW_RETENTION_SECONDS)


@pytest.fixture
def rate_limiter(window_store, quota_settings) -> RateLimiter:
    return RateLimiter(window_store, quota_settings)


@pytest.fixture
def ledger(db_session, quota_settings) -> CreditLedger:
    return CreditLedger(db_session, quota_settings)


@pytest.fixture
def fake_provider() -> FakeGenerationProvider:
    return FakeGenerationProvider()


@pytest.fixture
def orchestrator(
    db_session, rate_limiter, ledger, fake_provider, provider_settings
) -> UsageOrchestrator:
    return UsageOrchestrator(
        db_session,
        IdentityResolver(db_session),
        rate_limiter,
        ledger,
        fake_provider,
        provider_settings,
    )


@pytest.fixture
def registered_identity() -> Identity:
    return Identity(key=f"acct:{uuid4()}", tier=Tier.REGISTERED)


@pytest.fixture
def anonymous_identity() -> Identity:
    return Identity(key=f"sess:{uuid4().hex}", tier=Tier.ANONYMOUS)


@pytest_asyncio.fixture
async def app(
    session_factory, redis_client, fake_provider, quota_settings
) -> AsyncGenerator[FastAPI, None]:
    """FastAPI application wired to the test database, fake Redis and fake provider."""
    from src.main import app

    async def _test_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def _test_redis_client():
        return redis_client

    async def _test_provider():
        return fake_provider

    app.dependency_overrides[get_db_session] = _test_db_session
    app.dependency_overrides[get_redis_client] = _test_redis_client
    app.dependency_overrides[get_generation_provider] = _test_provider
    app.dependency_overrides[get_quota_settings] = lambda: quota_settings

    async with LifespanManager(app):
        yield app

    app.dependency_overrides.clear()


# JWT Token Fixtures
@pytest.fixture()
def jwt_token_factory() -> Callable[..., str]:
    """Factory for creating Supabase-style JWT tokens for test accounts."""
    auth_settings = AuthSettings()

    def create_token(account_id: str, plan: str | None = None) -> str:
        payload = {
            "sub": account_id,
            "email": f"{account_id[:8]}@example.com",
            "role": "authenticated",
            "aud": auth_settings.JWT_AUDIENCE,
            "app_metadata": {"provider": "email", "providers": ["email"]},
            "is_anonymous": False,
        }
        if plan:
            payload["app_metadata"]["plan"] = plan
        return jwt.encode(
            payload, auth_settings.SUPABASE_JWT_SECRET, algorithm=JWT_ALGORITHM
        )

    return create_token


@pytest.fixture
def account_id() -> str:
    return str(uuid4())


# HTTP Client Fixtures
@pytest_asyncio.fixture
async def public_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with no credentials at all."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test-wedai-api",
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def authorized_client(
    app: FastAPI, jwt_token_factory, account_id: str
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client signed in as a registered account."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test-wedai-api",
        headers={"Authorization": f"Bearer {jwt_token_factory(account_id)}"},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def admin_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client carrying the operator token."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test-wedai-api",
        headers={ADMIN_TOKEN_HEADER: os.environ["ADMIN_API_TOKEN"]},
    ) as ac:
        yield ac
