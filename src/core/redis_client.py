"""Redis client for the shared notification send slot."""

import logging
from datetime import UTC, datetime
from typing import Any

from redis.asyncio import Redis
from redis.asyncio.connection import ConnectionPool
from redis.exceptions import RedisError, WatchError

from src.core.config import Constants, settings


logger = logging.getLogger(__name__)


class RedisClient:
    """Async Redis client wrapper with connection pooling."""

    def __init__(self, url: str | None = None) -> None:
        """Initialize Redis client."""
        self._client: Redis | None = None
        self._pool: ConnectionPool | None = None
        redis_url = url or settings.redis_url
        self._enabled = bool(redis_url)

        # Health tracking
        self._last_successful_operation: datetime | None = None
        self._failure_count = 0
        self._total_operations = 0

        if self._enabled and redis_url:
            try:
                self._pool = ConnectionPool.from_url(
                    redis_url,
                    decode_responses=True,
                    max_connections=Constants.REDIS_MAX_CONNECTIONS,
                )
                self._client = Redis(connection_pool=self._pool)
                logger.info("Redis client initialized with URL: %s", redis_url)
            except RedisError as e:
                logger.warning("Failed to initialize Redis client: %s. Using the document store.", e)
                self._enabled = False
                self._client = None
                self._pool = None
        else:
            logger.info("Redis URL not configured. Using the document store for the send slot.")

    @property
    def is_available(self) -> bool:
        """Check if Redis is available."""
        return self._enabled and self._client is not None

    def get_health_status(self) -> dict[str, Any]:
        """Get Redis health status.

        Returns:
            Dict with health status including last successful operation,
            failure count, and total operations
        """
        return {
            "enabled": self._enabled,
            "connected": self.is_available,
            "last_successful_operation": self._last_successful_operation.isoformat()
            if self._last_successful_operation
            else None,
            "failure_count": self._failure_count,
            "total_operations": self._total_operations,
        }

    def _record_success(self) -> None:
        """Record successful Redis operation."""
        self._last_successful_operation = datetime.now(UTC)
        self._total_operations += 1

    def _record_failure(self) -> None:
        """Record failed Redis operation."""
        self._failure_count += 1
        self._total_operations += 1

    def _require_client(self) -> Redis:
        if not self.is_available or self._client is None:
            msg = "Redis is not configured"
            raise RuntimeError(msg)
        return self._client

    async def get(self, key: str) -> str | None:
        """Get a value, raising RedisError on failure."""
        client = self._require_client()
        try:
            value = await client.get(key)
        except RedisError:
            self._record_failure()
            raise
        self._record_success()
        return value

    async def compare_and_set(self, key: str, *, expected: str | None, value: str) -> bool:
        """Set ``key`` to ``value`` only if it still holds ``expected`` (WATCH/MULTI).

        Returns:
            False when the key changed underneath us; raises RedisError on
            connection failures.
        """
        client = self._require_client()
        try:
            async with client.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != expected:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, value)
                await pipe.execute()
        except WatchError:
            logger.debug("Redis CAS lost race for key %s", key)
            return False
        except RedisError:
            self._record_failure()
            raise
        self._record_success()
        return True

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            logger.info("Redis client closed")

    async def ping(self) -> bool:
        """Ping Redis to check connection.

        Returns:
            True if Redis is responsive, False otherwise
        """
        if not self.is_available or not self._client:
            return False

        try:
            result = await self._client.ping()  # type: ignore[misc]
            return bool(result)
        except RedisError as e:
            logger.warning("Redis PING failed: %s", e)
            return False


# Global Redis client instance
redis_client = RedisClient()
