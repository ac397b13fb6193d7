"""Redis-backed fixed window counters with atomic check-and-increment."""

from datetime import datetime, timezone

import redis.asyncio as redis

from src.api.core.models.rate_limit import (
    RATE_WINDOW_PREFIX,
    WindowCounter,
    WindowSnapshot,
)
from src.utils.logger import get_logger

logger = get_logger(__name__)

# All-or-nothing increment across N windows.
# KEYS: one counter key per window
# ARGV: amount, then (limit, expire_at) per window
# Returns {allowed, count_1, ..., count_N}; counts are post-increment when
# allowed and untouched current values when denied.
_LUA_CHECK_AND_INCREMENT = r"""
local amount = tonumber(ARGV[1])
local n = #KEYS
local current = {}
local allowed = 1

for i = 1, n do
  current[i] = tonumber(redis.call('GET', KEYS[i]) or '0')
  local limit = tonumber(ARGV[2 * i])
  if current[i] + amount > limit then
    allowed = 0
  end
end

if allowed == 1 then
  for i = 1, n do
    current[i] = redis.call('INCRBY', KEYS[i], amount)
    redis.call('EXPIREAT', KEYS[i], tonumber(ARGV[2 * i + 1]))
  end
end

local out = {allowed}
for i = 1, n do
  out[i + 1] = current[i]
end
return out
"""


# Take back up to ARGV[1] from each counter, never going below zero.
# Keys that already expired stay absent.
_LUA_DECREMENT = r"""
local amount = tonumber(ARGV[1])
for i = 1, #KEYS do
  local current = tonumber(redis.call('GET', KEYS[i]) or '0')
  if current > 0 then
    redis.call('DECRBY', KEYS[i], math.min(amount, current))
  end
end
return 1
"""

def _strs(*xs) -> list[str]:
    return [str(x) for x in xs]


class WindowCounterStore:
    """Keyed integer counters, one per fixed window, with expiry."""

    def __init__(self, redis_client: redis.Redis, retention_seconds: int = 0):
        self.r = redis_client
        self.retention_seconds = retention_seconds

    def _expire_at(self, window: WindowCounter) -> int:
        return int(window.window_end.timestamp()) + self.retention_seconds

    async def check_and_increment(
        self, windows: list[WindowCounter], amount: int = 1
    ) -> tuple[bool, list[WindowCounter]]:
        """
        Increment every window by ``amount`` if none would exceed its limit.

        Returns whether the increment happened plus the windows with their
        counts filled in. A denied call leaves every counter unchanged.
        """
        if not windows:
            return True, []

        args: list = [amount]
        for window in windows:
            args.extend((window.limit, self._expire_at(window)))

        res = await self.r.eval(
            _LUA_CHECK_AND_INCREMENT,
            len(windows),
            *_strs(*(window.to_cache_key() for window in windows)),
            *_strs(*args),
        )

        allowed = bool(int(res[0]))
        counted = [
            window.model_copy(update={"count": int(count)})
            for window, count in zip(windows, res[1:])
        ]
        return allowed, counted

    async def decrement(self, windows: list[WindowCounter], amount: int = 1) -> None:
        """Return ``amount`` to every window, clamped at zero."""
        if not windows:
            return
        await self.r.eval(
            _LUA_DECREMENT,
            len(windows),
            *_strs(*(window.to_cache_key() for window in windows)),
            str(amount),
        )

    async def read(self, windows: list[WindowCounter]) -> list[WindowCounter]:
        """Current counts without touching them."""
        if not windows:
            return []
        values = await self.r.mget([window.to_cache_key() for window in windows])
        return [
            window.model_copy(update={"count": int(value or 0)})
            for window, value in zip(windows, values)
        ]

    async def snapshot(self, identity_key: str) -> list[WindowSnapshot]:
        """Every retained counter for one identity, newest window first."""
        pattern = f"{RATE_WINDOW_PREFIX}:{{{identity_key}}}:*"
        snapshots: list[WindowSnapshot] = []

        async for key in self.r.scan_iter(match=pattern, count=200):
            if isinstance(key, bytes):
                key = key.decode()
            # rate_window:{identity}:resource:kind:epoch; identity may hold ':'
            resource, kind, epoch = key.rsplit(":", 3)[1:]
            value = await self.r.get(key)
            if value is None:
                continue
            ttl = await self.r.ttl(key)
            snapshots.append(
                WindowSnapshot(
                    key=key,
                    resource=resource,
                    kind=kind,
                    window_start=datetime.fromtimestamp(int(epoch), tz=timezone.utc),
                    count=int(value),
                    ttl_seconds=ttl if ttl >= 0 else None,
                )
            )

        snapshots.sort(key=lambda s: s.window_start, reverse=True)
        return snapshots
