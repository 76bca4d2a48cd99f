"""
Fixed-window rate limiter for the webhook endpoint.

RateLimiterService keeps windows in process memory. The check runs without
awaiting anything, so on the event loop it is a single atomic step per key.
Stale windows are reaped by a background task (see workers/rate_limit_reaper.py).

RedisRateLimiter exposes the same interface for multi-instance deployments;
the increment-and-check runs server-side in a Lua script.
"""
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# Default limits
DEFAULT_MAX_REQUESTS = 100  # requests per window per client address
DEFAULT_WINDOW_MS = 60000


@dataclass
class RateLimitWindow:
    key: str
    count: int
    window_start: float  # epoch seconds
    reset_at: float  # epoch seconds


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds
    limit: int

    def retry_after_seconds(self, now: Optional[float] = None) -> int:
        current = time.time() if now is None else now
        return max(math.ceil(self.reset_at - current), 1)


class RateLimiterService:
    """In-memory fixed-window counter keyed by client identifier."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._windows: dict[str, RateLimitWindow] = {}

    @property
    def tracked_keys(self) -> int:
        return len(self._windows)

    def now(self) -> float:
        return self._clock()

    async def check(
        self,
        key: str,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_ms: int = DEFAULT_WINDOW_MS,
    ) -> RateLimitResult:
        """
        Count one request against `key`. Denied requests are not counted, so
        `remaining` never goes negative.
        """
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now > window.reset_at:
            window = RateLimitWindow(
                key=key,
                count=0,
                window_start=now,
                reset_at=now + window_ms / 1000,
            )
            self._windows[key] = window

        if window.count >= max_requests:
            logger.warning(
                "Rate limit exceeded: key=%s count=%d limit=%d",
                key, window.count, max_requests,
            )
            return RateLimitResult(
                allowed=False, remaining=0, reset_at=window.reset_at, limit=max_requests,
            )

        window.count += 1
        return RateLimitResult(
            allowed=True,
            remaining=max_requests - window.count,
            reset_at=window.reset_at,
            limit=max_requests,
        )

    def reap(self) -> int:
        """Drop windows whose reset time has passed. Returns count removed."""
        now = self._clock()
        expired = [key for key, w in self._windows.items() if now > w.reset_at]
        for key in expired:
            del self._windows[key]
        return len(expired)


# KEYS[1] = counter key; ARGV[1] = limit; ARGV[2] = window ms
# Returns {allowed (0/1), count, ttl_ms}
_FIXED_WINDOW_LUA = """
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current == 0 then
    redis.call('SET', KEYS[1], 1, 'PX', window)
    return {1, 1, window}
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], window)
    ttl = window
end
if current >= limit then
    return {0, current, ttl}
end
current = redis.call('INCR', KEYS[1])
return {1, current, ttl}
"""


class RedisRateLimiter:
    """Fixed-window limiter shared across instances through Redis."""

    key_prefix = "payhooks:ratelimit:"

    def __init__(self, redis_getter: Optional[Callable] = None, clock: Callable[[], float] = time.time):
        if redis_getter is None:
            from payhooks.utils.redis_client import get_redis
            redis_getter = get_redis
        self._get_redis = redis_getter
        self._clock = clock

    @property
    def tracked_keys(self) -> Optional[int]:
        # Key count lives in Redis; not worth a SCAN on every health call
        return None

    def now(self) -> float:
        return self._clock()

    async def check(
        self,
        key: str,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        window_ms: int = DEFAULT_WINDOW_MS,
    ) -> RateLimitResult:
        now = self._clock()
        try:
            redis = await self._get_redis()
            allowed, count, ttl_ms = await redis.eval(
                _FIXED_WINDOW_LUA, 1, f"{self.key_prefix}{key}", max_requests, window_ms,
            )
        except Exception as e:
            # Redis failure should not block webhooks - allow through
            logger.warning("Rate limiter Redis error: %s. Allowing request.", str(e))
            return RateLimitResult(
                allowed=True, remaining=max_requests, reset_at=now + window_ms / 1000, limit=max_requests,
            )

        reset_at = now + int(ttl_ms) / 1000
        if not int(allowed):
            logger.warning(
                "Rate limit exceeded: key=%s count=%d limit=%d",
                key, int(count), max_requests,
            )
            return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at, limit=max_requests)
        return RateLimitResult(
            allowed=True,
            remaining=max(max_requests - int(count), 0),
            reset_at=reset_at,
            limit=max_requests,
        )

    def reap(self) -> int:
        # Keys carry their own PX expiry
        return 0


def get_client_ip(request, trust_proxy_headers: bool = False) -> str:
    """Client address used as the rate-limit key."""
    if trust_proxy_headers:
        forwarded = request.headers.get("x-forwarded-for", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"
