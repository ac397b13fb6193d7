from functools import lru_cache
from typing import Annotated, AsyncGenerator

import redis.asyncio as redis
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.core.middleware.identity import build_request_context
from src.core.context import Identity, RequestContext
from src.modules.analytics.service import AnalyticsService
from src.modules.credits.ledger import CreditLedger
from src.modules.identity.resolver import IdentityResolver
from src.modules.payments.service import PaymentService
from src.modules.rate_limit.limiter import RateLimiter
from src.modules.rate_limit.store import WindowCounterStore
from src.modules.settlement.reconciler import SettlementReconciler
from src.modules.usage.orchestrator import UsageOrchestrator
from src.modules.usage.provider import GenerationProvider, get_generation_provider
from src.redis.client import get_redis_client
from src.utils.settings.provider import ProviderSettings
from src.utils.settings.quota import QuotaSettings


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get database session from app state."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


@lru_cache
def get_quota_settings() -> QuotaSettings:
    return QuotaSettings()


@lru_cache
def get_provider_settings() -> ProviderSettings:
    return ProviderSettings()


AsyncSessionDep = Annotated[AsyncSession, Depends(get_db_session)]
RedisDep = Annotated[redis.Redis, Depends(get_redis_client)]
QuotaSettingsDep = Annotated[QuotaSettings, Depends(get_quota_settings)]


async def get_window_store(
    redis_client: RedisDep, settings: QuotaSettingsDep
) -> WindowCounterStore:
    return WindowCounterStore(redis_client, settings.RATE_WINDOW_RETENTION_SECONDS)


async def get_rate_limiter(
    store: Annotated[WindowCounterStore, Depends(get_window_store)],
    settings: QuotaSettingsDep,
) -> RateLimiter:
    """Get rate limit service."""
    return RateLimiter(store, settings)


async def get_credit_ledger(db: AsyncSessionDep, settings: QuotaSettingsDep) -> CreditLedger:
    """Get credit ledger with database session."""
    return CreditLedger(db, settings)


async def get_identity_resolver(db: AsyncSessionDep) -> IdentityResolver:
    return IdentityResolver(db)


async def get_usage_orchestrator(
    db: AsyncSessionDep,
    resolver: Annotated[IdentityResolver, Depends(get_identity_resolver)],
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
    ledger: Annotated[CreditLedger, Depends(get_credit_ledger)],
    provider: Annotated[GenerationProvider, Depends(get_generation_provider)],
    settings: Annotated[ProviderSettings, Depends(get_provider_settings)],
) -> UsageOrchestrator:
    return UsageOrchestrator(db, resolver, limiter, ledger, provider, settings)


async def get_payment_service(
    db: AsyncSessionDep,
    ledger: Annotated[CreditLedger, Depends(get_credit_ledger)],
) -> PaymentService:
    return PaymentService(db, ledger)


async def get_analytics_service(db: AsyncSessionDep) -> AnalyticsService:
    """Get analytics service with database session."""
    return AnalyticsService(db)


async def get_settlement_reconciler(
    db: AsyncSessionDep,
    ledger: Annotated[CreditLedger, Depends(get_credit_ledger)],
) -> SettlementReconciler:
    return SettlementReconciler(db, ledger)


def get_request_context(request: Request) -> RequestContext:
    return build_request_context(request)


async def get_current_identity(
    resolver: Annotated[IdentityResolver, Depends(get_identity_resolver)],
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> Identity:
    """Resolved caller identity; never rejects."""
    return await resolver.resolve(context)


WindowCounterStoreDep = Annotated[WindowCounterStore, Depends(get_window_store)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
CreditLedgerDep = Annotated[CreditLedger, Depends(get_credit_ledger)]
UsageOrchestratorDep = Annotated[UsageOrchestrator, Depends(get_usage_orchestrator)]
PaymentServiceDep = Annotated[PaymentService, Depends(get_payment_service)]
AnalyticsServiceDep = Annotated[AnalyticsService, Depends(get_analytics_service)]
SettlementReconcilerDep = Annotated[
    SettlementReconciler, Depends(get_settlement_reconciler)
]
RequestContextDep = Annotated[RequestContext, Depends(get_request_context)]
CurrentIdentityDep = Annotated[Identity, Depends(get_current_identity)]
