"""Tests for the Redis connection behind the distributed workspace lock."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from tollgate.config import LockBackend, settings
from tollgate.redis import client as redis_client


@pytest.fixture
def fake_redis():
    fake = MagicMock()
    fake.ping = AsyncMock(return_value=True)
    fake.aclose = AsyncMock()
    with patch("tollgate.redis.client.aioredis.from_url", return_value=fake) as from_url:
        yield fake, from_url
    redis_client._redis = None


class TestInitRedis:
    async def test_local_backend_skips_redis(self, fake_redis, monkeypatch):
        _, from_url = fake_redis
        monkeypatch.setattr(settings.locking, "backend", LockBackend.LOCAL)

        await redis_client.init_redis()

        from_url.assert_not_called()
        with pytest.raises(RuntimeError):
            redis_client.get_redis_client()

    async def test_redis_backend_connects(self, fake_redis, monkeypatch):
        fake, from_url = fake_redis
        monkeypatch.setattr(settings.locking, "backend", LockBackend.REDIS)

        await redis_client.init_redis()

        assert redis_client.get_redis_client() is fake
        fake.ping.assert_awaited_once()
        assert (
            from_url.call_args.kwargs["socket_timeout"]
            == settings.locking.blocking_timeout_seconds
        )

        await redis_client.close_redis()
        fake.aclose.assert_awaited_once()
        with pytest.raises(RuntimeError):
            redis_client.get_redis_client()


class TestRedisHealth:
    async def test_not_connected(self):
        assert await redis_client.get_redis_health() is False

    async def test_ping_failure(self, fake_redis, monkeypatch):
        fake, _ = fake_redis
        monkeypatch.setattr(settings.locking, "backend", LockBackend.REDIS)
        await redis_client.init_redis()
        fake.ping.side_effect = RedisConnectionError("gone")

        assert await redis_client.get_redis_health() is False
