"""
In-flight claims - keep two concurrent deliveries of the same event from
both running its handler.

The claim only covers the window between the dedupe check and the durable
record write. It is not a record of processing: a crash while holding it
leaves nothing behind (memory) or expires with the TTL (Redis), so the
provider's redelivery gets processed.

Usage:
    async with claims.claim(event_id) as acquired:
        if not acquired:
            ...  # someone else is handling this event right now
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Callable, Optional

logger = logging.getLogger(__name__)

CLAIM_TTL_SECONDS = 60


class InFlightClaims:
    """Per-process claim set. Check-and-add has no await, so it is atomic."""

    def __init__(self):
        self._held: set[str] = set()

    def __len__(self) -> int:
        return len(self._held)

    async def acquire(self, event_id: str) -> bool:
        if event_id in self._held:
            return False
        self._held.add(event_id)
        return True

    async def release(self, event_id: str) -> None:
        self._held.discard(event_id)

    @asynccontextmanager
    async def claim(self, event_id: str):
        acquired = await self.acquire(event_id)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(event_id)


_RELEASE_LUA = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
else
    return 0
end
"""


class RedisInFlightClaims:
    """Claims shared across instances via Redis SET NX with TTL."""

    key_prefix = "payhooks:claim:event:"

    def __init__(self, redis_getter: Optional[Callable] = None, ttl: int = CLAIM_TTL_SECONDS):
        if redis_getter is None:
            from payhooks.utils.redis_client import get_redis
            redis_getter = get_redis
        self._get_redis = redis_getter
        self._ttl = ttl
        self._tokens: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._tokens)

    async def acquire(self, event_id: str) -> bool:
        token = uuid.uuid4().hex  # Unique value so we only release our own claim
        try:
            redis = await self._get_redis()
            was_set = await redis.set(f"{self.key_prefix}{event_id}", token, nx=True, ex=self._ttl)
        except Exception as e:
            # The durable unique key still arbitrates; proceed without the claim
            logger.warning(
                "Redis claim error for %s: %s. Proceeding without claim.", event_id, str(e),
            )
            return True
        if not was_set:
            return False
        self._tokens[event_id] = token
        return True

    async def release(self, event_id: str) -> None:
        token = self._tokens.pop(event_id, None)
        if token is None:
            return
        try:
            redis = await self._get_redis()
            await redis.eval(_RELEASE_LUA, 1, f"{self.key_prefix}{event_id}", token)
        except Exception as e:
            logger.warning("Redis claim release error for %s: %s", event_id, str(e))

    @asynccontextmanager
    async def claim(self, event_id: str):
        acquired = await self.acquire(event_id)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(event_id)
