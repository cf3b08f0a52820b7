"""Fan-out cache tests — bounded lists, TTLs and pub/sub on fakeredis."""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from heartline.errors import DependencyError
from heartline.realtime.cache import WAKE_UP, FanoutCache


@pytest.mark.asyncio
async def test_push_recent_keeps_newest_first_and_bounded(cache):
    for i in range(5):
        await cache.push_recent("k", f"entry {i}", max_len=3, ttl=60)

    assert await cache.read_recent("k") == ["entry 4", "entry 3", "entry 2"]


@pytest.mark.asyncio
async def test_read_recent_does_not_consume(cache):
    await cache.push_recent("k", "a", max_len=3, ttl=60)
    assert await cache.read_recent("k") == ["a"]
    assert await cache.read_recent("k") == ["a"]


@pytest.mark.asyncio
async def test_read_recent_missing_key(cache):
    assert await cache.read_recent("nothing-here") == []


@pytest.mark.asyncio
async def test_push_recent_sets_ttl(cache, redis):
    await cache.push_recent("k", "a", max_len=3, ttl=30)
    ttl_ms = await redis.pttl("k")
    assert 0 < ttl_ms <= 30_000


@pytest.mark.asyncio
async def test_entries_expire_after_ttl(cache):
    await cache.push_recent("k", "short-lived", max_len=3, ttl=0.05)
    await asyncio.sleep(0.2)
    assert await cache.read_recent("k") == []


@pytest.mark.asyncio
async def test_replace_recent(cache, redis):
    await cache.push_recent("k", "old", max_len=3, ttl=60)

    await cache.replace_recent("k", ["b", "a"], ttl=60)
    assert await cache.read_recent("k") == ["b", "a"]
    assert await redis.pttl("k") > 0

    await cache.replace_recent("k", [], ttl=60)
    assert await redis.exists("k") == 0


@pytest.mark.asyncio
async def test_invalidate(cache):
    await cache.push_recent("a", "1", max_len=3, ttl=60)
    await cache.push_recent("b", "2", max_len=3, ttl=60)

    await cache.invalidate("a", "b")
    await cache.invalidate()

    assert await cache.read_recent("a") == []
    assert await cache.read_recent("b") == []


@pytest.mark.asyncio
async def test_publish_wakes_subscriber(cache):
    subscription = await cache.subscribe("events")
    try:
        receivers = await cache.publish("events")
        marker = await asyncio.wait_for(anext(aiter(subscription)), 2)
    finally:
        await subscription.close()

    assert receivers == 1
    assert marker == WAKE_UP


@pytest.mark.asyncio
async def test_publish_without_subscribers(cache):
    assert await cache.publish("nobody-listens") == 0


@pytest.mark.asyncio
async def test_ping(cache):
    assert await cache.ping() is True


class _RefusingPubSub:
    """A pub/sub that can never subscribe."""

    def __init__(self, calls: list):
        self.calls = calls

    async def subscribe(self, channel):
        self.calls.append(channel)
        raise RedisConnectionError("connection refused")

    async def unsubscribe(self, channel):
        raise RedisConnectionError("connection refused")

    async def aclose(self):
        pass


class _RefusingRedis:
    def __init__(self):
        self.calls: list = []

    def pubsub(self):
        return _RefusingPubSub(self.calls)


@pytest.mark.asyncio
async def test_subscribe_retries_then_fails():
    redis = _RefusingRedis()
    cache = FanoutCache(redis, subscribe_attempts=3, subscribe_base_delay=0.001)

    with pytest.raises(DependencyError):
        await cache.subscribe("events")

    assert redis.calls == ["events", "events", "events"]


@pytest.mark.asyncio
async def test_list_errors_become_dependency_errors():
    class _Broken:
        async def lrange(self, *args):
            raise RedisConnectionError("down")

        async def delete(self, *args):
            raise RedisConnectionError("down")

        async def publish(self, *args):
            raise RedisConnectionError("down")

    cache = FanoutCache(_Broken())
    with pytest.raises(DependencyError):
        await cache.read_recent("k")
    with pytest.raises(DependencyError):
        await cache.invalidate("k")
    with pytest.raises(DependencyError):
        await cache.publish("events")
