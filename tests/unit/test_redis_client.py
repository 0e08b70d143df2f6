"""Unit tests for the Redis client used by the send slot."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from src.core.redis_client import RedisClient


def _client_with_pipeline(current: str | None) -> tuple[RedisClient, MagicMock]:
    client = RedisClient()
    client._enabled = True
    client._client = MagicMock()

    pipe = MagicMock()
    pipe.watch = AsyncMock()
    pipe.unwatch = AsyncMock()
    pipe.get = AsyncMock(return_value=current)
    pipe.execute = AsyncMock(return_value=[True])

    ctx = MagicMock()
    ctx.__aenter__.return_value = pipe
    ctx.__aexit__.return_value = False
    client._client.pipeline.return_value = ctx
    return client, pipe


@pytest.mark.unit
class TestRedisClient:
    """Tests for get, compare_and_set and ping."""

    async def test_get_records_success(self):
        client = RedisClient()
        client._enabled = True
        client._client = AsyncMock()
        client._client.get = AsyncMock(return_value="1700000000000")

        assert await client.get("notify:slot") == "1700000000000"
        assert client.get_health_status()["total_operations"] == 1

    async def test_get_failure_is_raised_and_counted(self):
        client = RedisClient()
        client._enabled = True
        client._client = AsyncMock()
        client._client.get = AsyncMock(side_effect=RedisConnectionError("down"))

        with pytest.raises(RedisConnectionError):
            await client.get("notify:slot")
        assert client.get_health_status()["failure_count"] == 1

    async def test_get_without_client_raises(self):
        client = RedisClient()
        client._enabled = False
        client._client = None

        with pytest.raises(RuntimeError):
            await client.get("notify:slot")

    async def test_compare_and_set_writes_when_value_matches(self):
        client, pipe = _client_with_pipeline("100")

        assert await client.compare_and_set("notify:slot", expected="100", value="5100") is True
        pipe.watch.assert_awaited_once_with("notify:slot")
        pipe.set.assert_called_once_with("notify:slot", "5100")
        pipe.execute.assert_awaited_once()

    async def test_compare_and_set_rejects_changed_value(self):
        client, pipe = _client_with_pipeline("200")

        assert await client.compare_and_set("notify:slot", expected="100", value="5100") is False
        pipe.unwatch.assert_awaited_once()
        pipe.set.assert_not_called()

    async def test_compare_and_set_lost_race(self):
        client, pipe = _client_with_pipeline(None)
        pipe.execute.side_effect = WatchError("changed")

        assert await client.compare_and_set("notify:slot", expected=None, value="5000") is False

    async def test_compare_and_set_connection_error_raised(self):
        client, pipe = _client_with_pipeline(None)
        pipe.watch.side_effect = RedisConnectionError("down")

        with pytest.raises(RedisConnectionError):
            await client.compare_and_set("notify:slot", expected=None, value="5000")

    async def test_ping(self):
        client = RedisClient()
        client._enabled = True
        client._client = AsyncMock()
        client._client.ping = AsyncMock(return_value=True)

        assert await client.ping() is True

        client._client.ping = AsyncMock(side_effect=RedisConnectionError("down"))
        assert await client.ping() is False

    async def test_ping_when_disabled(self):
        client = RedisClient()
        client._enabled = False
        client._client = None

        assert await client.ping() is False
