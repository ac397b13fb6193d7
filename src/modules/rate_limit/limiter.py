"""Per-identity hourly and daily admission windows."""

from datetime import datetime

import redis.asyncio as redis

from src.api.core.exceptions.errors import StorageUnavailableError
from src.api.core.models.rate_limit import RateDecision, WindowCounter
from src.core.context import Identity
from src.core.enums import Resource, WindowKind
from src.modules.rate_limit.store import WindowCounterStore
from src.utils.logger import get_logger
from src.utils.settings.quota import QuotaSettings, TierLimit
from src.utils.time_windows import seconds_until, utc_now, window_bounds

logger = get_logger(__name__)

# Unconfigured (tier, resource) pairs admit nothing
_CLOSED = TierLimit(hourly=0, daily=0)


class RateLimiter:
    """
    Fixed hourly and daily windows, checked and incremented together.

    Either both windows take the attempt or neither does, so a denied
    attempt never consumes quota. Counter storage failures deny the
    request rather than admitting it unmetered.
    """

    def __init__(self, store: WindowCounterStore, settings: QuotaSettings | None = None):
        self.store = store
        self.settings = settings or QuotaSettings()

    def _limit(self, identity: Identity, resource: Resource) -> TierLimit:
        limit = self.settings.limit_for(identity.tier, resource)
        if limit is None:
            logger.error(
                "rate_limit.unconfigured",
                tier=identity.tier.value,
                resource=resource.value,
            )
            return _CLOSED
        return limit

    def _windows(
        self, identity: Identity, resource: Resource, now: datetime
    ) -> list[WindowCounter]:
        """
        Hourly and daily windows for the caller, then for its device.

        Anonymous callers are also counted under their device key, so
        rotating session tokens on one device does not reset the cap.
        """
        limit = self._limit(identity, resource)
        keys = [identity.key]
        if identity.is_anonymous and identity.device_key not in (None, identity.key):
            keys.append(identity.device_key)

        windows = []
        for key in keys:
            for kind, kind_limit in (
                (WindowKind.HOURLY, limit.hourly),
                (WindowKind.DAILY, limit.daily),
            ):
                start, end = window_bounds(
                    kind, now, self.settings.DAILY_RESET_HOUR_UTC
                )
                windows.append(
                    WindowCounter(
                        identity_key=key,
                        resource=resource,
                        kind=kind,
                        window_start=start,
                        window_end=end,
                        limit=kind_limit,
                    )
                )
        return windows

    @staticmethod
    def _decision(
        allowed: bool,
        identity: Identity,
        resource: Resource,
        windows: list[WindowCounter],
        now: datetime,
    ) -> RateDecision:
        # The tightest window of each kind is the one the caller feels
        hourly = min(
            (w for w in windows if w.kind == WindowKind.HOURLY), key=lambda w: w.remaining
        )
        daily = min(
            (w for w in windows if w.kind == WindowKind.DAILY), key=lambda w: w.remaining
        )
        retry_after = None
        if not allowed:
            # Wait for every exhausted window, not just the nearest one
            blocking = [w for w in windows if w.count + 1 > w.limit]
            retry_after = max(
                (seconds_until(w.window_end, now) for w in blocking),
                default=seconds_until(hourly.window_end, now),
            )
            retry_after = max(retry_after, 1)

        return RateDecision(
            allowed=allowed,
            identity_key=identity.key,
            resource=resource,
            limit_hourly=hourly.limit,
            limit_daily=daily.limit,
            remaining_hourly=hourly.remaining,
            remaining_daily=daily.remaining,
            hourly_reset_at=hourly.window_end,
            daily_reset_at=daily.window_end,
            retry_after=retry_after,
        )

    async def check_and_increment(
        self,
        identity: Identity,
        resource: Resource = Resource.GENERATION,
        now: datetime | None = None,
    ) -> RateDecision:
        now = now or utc_now()
        windows = self._windows(identity, resource, now)

        try:
            allowed, counted = await self.store.check_and_increment(windows)
        except redis.RedisError as e:
            logger.error(
                "rate_limit.storage_unavailable",
                identity_key=identity.key,
                error=str(e),
            )
            raise StorageUnavailableError("rate_limit") from e

        decision = self._decision(allowed, identity, resource, counted, now)
        if not allowed:
            logger.info(
                "rate_limit.denied",
                identity_key=identity.key,
                tier=identity.tier.value,
                resource=resource.value,
                windows=[str(w) for w in counted],
                retry_after=decision.retry_after,
            )
        return decision

    async def give_back(
        self,
        identity: Identity,
        resource: Resource = Resource.GENERATION,
        now: datetime | None = None,
    ) -> None:
        """Undo one admitted attempt that turned out to be a duplicate."""
        now = now or utc_now()
        try:
            await self.store.decrement(self._windows(identity, resource, now))
        except redis.RedisError as e:
            logger.warning(
                "rate_limit.give_back_failed",
                identity_key=identity.key,
                error=str(e),
            )

    async def peek(
        self,
        identity: Identity,
        resource: Resource = Resource.GENERATION,
        now: datetime | None = None,
    ) -> RateDecision:
        """Remaining allowance without consuming any."""
        now = now or utc_now()
        windows = self._windows(identity, resource, now)
        try:
            counted = await self.store.read(windows)
        except redis.RedisError as e:
            logger.error(
                "rate_limit.storage_unavailable",
                identity_key=identity.key,
                error=str(e),
            )
            raise StorageUnavailableError("rate_limit") from e

        allowed = all(w.count + 1 <= w.limit for w in counted)
        return self._decision(allowed, identity, resource, counted, now)
