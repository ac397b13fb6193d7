import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

import redis.asyncio as redis
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.core.models.rate_limit import WindowCounter
from src.core.enums import Resource, WindowKind
from src.modules.rate_limit.store import WindowCounterStore
from src.utils.logger import get_logger
from src.utils.time_windows import utc_now, window_bounds

logger = get_logger(__name__)

HEALTH_IDENTITY_KEY = "health:check"


@dataclass
class HealthCheckResult:
    """Result of a health check."""

    service: str
    status: Literal["healthy", "unhealthy", "degraded"]
    connected: bool
    details: dict
    error: str | None = None


@dataclass
class OverallHealthStatus:
    """Overall health status with individual service results."""

    status: Literal["healthy", "degraded", "unhealthy"]
    services: dict[str, HealthCheckResult]
    timestamp: str


class HealthService:
    """Service for performing health checks on the ledger and counter stores."""

    def __init__(self, db: AsyncSession, redis: redis.Redis):
        self.db = db
        self.redis = redis

    async def check_database_health(self) -> HealthCheckResult:
        """Database connection health check."""
        try:
            result = await self.db.execute(text("SELECT 1 as test"))
            test_value = result.scalar()
            await self.db.rollback()

            return HealthCheckResult(
                service="database",
                status="healthy",
                connected=True,
                details={"test_query_result": test_value},
            )
        except SQLAlchemyError as e:
            logger.error("Database health check error", error_type=type(e).__name__)
            return HealthCheckResult(
                service="database",
                status="unhealthy",
                connected=False,
                details={},
                error=type(e).__name__,
            )

    async def check_redis_health(self) -> HealthCheckResult:
        """Redis connection health check."""
        try:
            await self.redis.ping()
            return HealthCheckResult(
                service="redis",
                status="healthy",
                connected=True,
                details={},
            )
        except redis.RedisError as e:
            logger.error("Redis health check error", error_type=type(e).__name__)
            return HealthCheckResult(
                service="redis",
                status="unhealthy",
                connected=False,
                details={},
                error=type(e).__name__,
            )

    async def check_rate_limit_health(self) -> HealthCheckResult:
        """Runs the window counter script against a throwaway key."""
        try:
            now = utc_now()
            start, end = window_bounds(WindowKind.HOURLY, now)
            window = WindowCounter(
                identity_key=HEALTH_IDENTITY_KEY,
                resource=Resource.GENERATION,
                kind=WindowKind.HOURLY,
                window_start=start,
                window_end=end,
                limit=0,
            )
            store = WindowCounterStore(self.redis)
            # A zero limit must deny without creating the key
            allowed, _ = await store.check_and_increment([window])
            script_works = not allowed

            return HealthCheckResult(
                service="rate_limit",
                status="healthy" if script_works else "degraded",
                connected=True,
                details={"script_works": script_works},
            )
        except redis.RedisError as e:
            logger.error("Rate limit health check error", error_type=type(e).__name__)
            return HealthCheckResult(
                service="rate_limit",
                status="unhealthy",
                connected=False,
                details={},
                error=type(e).__name__,
            )

    async def run_all_checks(self) -> OverallHealthStatus:
        """Run all health checks in parallel and return overall status."""
        results = await asyncio.gather(
            self.check_database_health(),
            self.check_redis_health(),
            self.check_rate_limit_health(),
        )

        services = {}
        overall_status: Literal["healthy", "degraded", "unhealthy"] = "healthy"
        for result in results:
            if result.status == "unhealthy":
                overall_status = "unhealthy"
            elif result.status == "degraded" and overall_status == "healthy":
                overall_status = "degraded"
            services[result.service] = result

        return OverallHealthStatus(
            status=overall_status,
            services=services,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
