"""Rate limiting types and models."""

from datetime import datetime

from pydantic import BaseModel

from src.core.enums import Resource, WindowKind

# Cache keys: rate_window:{identity}:{resource}:{kind}:{window_start_epoch}
# The identity is wrapped in a hash tag so both windows of one caller share
# a cluster slot. Anonymous checks also touch the device's windows in the
# same script, which the single-node client in src/redis/client.py allows.
# Examples:
# - rate_window:{acct:123}:generation:hourly:1767225600
# - rate_window:{sess:9f2c...}:generation:daily:1767225600
RATE_WINDOW_PREFIX = "rate_window"


class WindowCounter(BaseModel):
    """One fixed window counter for an (identity, resource, kind) triple."""

    identity_key: str
    resource: Resource
    kind: WindowKind
    window_start: datetime
    window_end: datetime
    limit: int
    count: int = 0

    def to_cache_key(self) -> str:
        return window_cache_key(
            self.identity_key, self.resource, self.kind, self.window_start
        )

    @property
    def remaining(self) -> int:
        return max(self.limit - self.count, 0)

    def __str__(self) -> str:
        """String representation for logging."""
        return f"{self.kind.value}:{self.count}/{self.limit}"


class RateDecision(BaseModel):
    """Result of an admission check against the hourly and daily windows."""

    allowed: bool
    identity_key: str
    resource: Resource
    limit_hourly: int
    limit_daily: int
    remaining_hourly: int
    remaining_daily: int
    hourly_reset_at: datetime
    daily_reset_at: datetime
    retry_after: int | None = None


class WindowSnapshot(BaseModel):
    """Stored counter as seen by the analytics routes."""

    key: str
    resource: str
    kind: str
    window_start: datetime
    count: int
    ttl_seconds: int | None = None


def window_cache_key(
    identity_key: str,
    resource: Resource,
    kind: WindowKind,
    window_start: datetime,
) -> str:
    return (
        f"{RATE_WINDOW_PREFIX}:{{{identity_key}}}:{resource.value}:"
        f"{kind.value}:{int(window_start.timestamp())}"
    )
