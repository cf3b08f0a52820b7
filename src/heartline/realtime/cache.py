"""Redis fan-out cache — bounded "recent" lists plus pub/sub wake-up signals.

Learn: Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine here because the published payload is only a marker:
subscribers never trust it, they re-read the recent list (or the database)
on every wake-up. Duplicate signals cost one extra read; a dropped signal is
caught up by the next one or by a reconnect. Postgres stays authoritative.

The client is shared by every connection in the process. It is created in
the app lifespan and handed to FanoutCache, never imported as a global.
"""

import asyncio
from typing import AsyncIterator, Sequence

import redis.asyncio as aioredis
import structlog
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError
from starlette.requests import HTTPConnection

from heartline.errors import DependencyError

logger = structlog.get_logger()

WAKE_UP = "new"


def connect_redis(url: str) -> aioredis.Redis:
    """Create the process-wide Redis connection pool."""
    return aioredis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
    )


class Subscription:
    """One channel subscription. Iterate it to receive wake-up markers."""

    def __init__(self, pubsub: PubSub, channel: str):
        self._pubsub = pubsub
        self.channel = channel

    def __aiter__(self) -> AsyncIterator[str]:
        return self._listen()

    async def _listen(self) -> AsyncIterator[str]:
        try:
            async for message in self._pubsub.listen():
                if message["type"] == "message":
                    yield message["data"]
        except RedisError as e:
            raise DependencyError("Lost connection to updates") from e

    async def close(self) -> None:
        """Unsubscribe and give the connection back. Never raises."""
        try:
            await self._pubsub.unsubscribe(self.channel)
        except (RedisError, OSError) as e:
            logger.debug("heartline.cache.unsubscribe_failed", channel=self.channel, error=str(e))
        try:
            await self._pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.debug("heartline.cache.pubsub_close_failed", channel=self.channel, error=str(e))


class FanoutCache:
    """Key-value + pub/sub primitives used by the chat and notification streams.

    Every Redis failure surfaces as DependencyError.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        subscribe_attempts: int = 3,
        subscribe_base_delay: float = 0.2,
    ):
        self.redis = redis
        self.subscribe_attempts = max(1, subscribe_attempts)
        self.subscribe_base_delay = subscribe_base_delay

    # ─── Bounded lists ────────────────────────────────────

    async def push_recent(self, key: str, payload: str, *, max_len: int, ttl: float) -> None:
        """Prepend ``payload``, trim to ``max_len`` entries, reset the TTL."""
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                await (
                    pipe.lpush(key, payload)
                    .ltrim(key, 0, max_len - 1)
                    .pexpire(key, int(ttl * 1000))
                    .execute()
                )
        except RedisError as e:
            raise DependencyError("Cache unavailable") from e

    async def read_recent(self, key: str) -> list[str]:
        """Entries at ``key``, newest first. Does not consume them."""
        try:
            return await self.redis.lrange(key, 0, -1)
        except RedisError as e:
            raise DependencyError("Cache unavailable") from e

    async def replace_recent(self, key: str, payloads: Sequence[str], *, ttl: float) -> None:
        """Atomically rewrite the list at ``key`` (same order as given)."""
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                if payloads:
                    pipe.rpush(key, *payloads).pexpire(key, int(ttl * 1000))
                await pipe.execute()
        except RedisError as e:
            raise DependencyError("Cache unavailable") from e

    async def invalidate(self, *keys: str) -> None:
        if not keys:
            return
        try:
            await self.redis.delete(*keys)
        except RedisError as e:
            raise DependencyError("Cache unavailable") from e

    # ─── Pub/sub ──────────────────────────────────────────

    async def publish(self, channel: str, marker: str = WAKE_UP) -> int:
        """Signal subscribers of ``channel``. Returns how many received it."""
        try:
            return await self.redis.publish(channel, marker)
        except RedisError as e:
            raise DependencyError("Cache unavailable") from e

    async def subscribe(self, channel: str) -> Subscription:
        """Subscribe to ``channel``, retrying with exponential backoff.

        Learn: This is the only retried cache call. It runs once per
        connection at setup. Per-command calls fail fast.
        """
        delay = self.subscribe_base_delay
        for attempt in range(1, self.subscribe_attempts + 1):
            pubsub = self.redis.pubsub()
            try:
                await pubsub.subscribe(channel)
                return Subscription(pubsub, channel)
            except RedisError as e:
                logger.warning(
                    "heartline.cache.subscribe_failed",
                    channel=channel,
                    attempt=attempt,
                    error=str(e),
                )
                await Subscription(pubsub, channel).close()
                if attempt == self.subscribe_attempts:
                    raise DependencyError("Failed to subscribe to updates") from e
                await asyncio.sleep(delay)
                delay *= 2
        raise DependencyError("Failed to subscribe to updates")

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self.redis.aclose()


def get_cache(conn: HTTPConnection) -> FanoutCache:
    """FastAPI dependency — the shared FanoutCache from app.state."""
    return conn.app.state.cache
