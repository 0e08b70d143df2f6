"""Global send throttle for outbound WhatsApp messages.

One token, refilled every ``notification_min_interval_ms``, shared by every
dispatcher in every process. The token is a persisted ``last_send_at``
timestamp that is claimed with an optimistic conditional write: read the
slot, wait out the remaining interval, then try to write our own claim. If
another sender wrote in between, back off briefly and start over.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import NamedTuple, Protocol

from src.core import db_client
from src.core.config import Constants, settings
from src.core.redis_client import RedisClient, redis_client


logger = logging.getLogger(__name__)


class SendSlot(NamedTuple):
    """Snapshot of the shared slot: last claim time and the version it was read at."""

    last_send_at_ms: int | None
    version: int | str | None


class SendSlotStore(Protocol):
    """Storage for the shared send slot."""

    async def read(self) -> SendSlot: ...

    async def claim(self, *, slot: SendSlot, claimed_at_ms: int) -> bool: ...


class DocumentSendSlotStore:
    """Send slot kept as a single versioned document."""

    def __init__(
        self,
        *,
        collection: str = Constants.RATE_LIMIT_COLLECTION,
        record_id: str = Constants.RATE_LIMIT_DOCUMENT_ID,
    ) -> None:
        self._collection = collection
        self._record_id = record_id

    async def read(self) -> SendSlot:
        try:
            record = await db_client.get_record(collection=self._collection, record_id=self._record_id)
        except db_client.RecordNotFoundError:
            return SendSlot(last_send_at_ms=None, version=None)
        last = record.get("last_send_at")
        return SendSlot(last_send_at_ms=int(last) if last is not None else None, version=record["version"])

    async def claim(self, *, slot: SendSlot, claimed_at_ms: int) -> bool:
        expected = int(slot.version) if slot.version is not None else None
        return await db_client.compare_and_set(
            collection=self._collection,
            record_id=self._record_id,
            data={"last_send_at": claimed_at_ms},
            expected_version=expected,
        )


class RedisSendSlotStore:
    """Send slot kept in a single Redis key, claimed with WATCH/MULTI."""

    def __init__(self, client: RedisClient, *, key: str = Constants.RATE_LIMIT_REDIS_KEY) -> None:
        self._client = client
        self._key = key

    async def read(self) -> SendSlot:
        raw = await self._client.get(self._key)
        return SendSlot(last_send_at_ms=int(raw) if raw else None, version=raw)

    async def claim(self, *, slot: SendSlot, claimed_at_ms: int) -> bool:
        expected = str(slot.version) if slot.version is not None else None
        return await self._client.compare_and_set(self._key, expected=expected, value=str(claimed_at_ms))


class GlobalSendThrottle:
    """Suspends callers until the shared minimum send interval has elapsed."""

    def __init__(
        self,
        store: SendSlotStore,
        *,
        min_interval_ms: int | None = None,
        retry_backoff_ms: int | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._store = store
        self._min_interval_ms = min_interval_ms if min_interval_ms is not None else settings.notification_min_interval_ms
        self._retry_backoff_ms = (
            retry_backoff_ms if retry_backoff_ms is not None else settings.rate_limit_retry_backoff_ms
        )
        self._clock = clock
        self._sleep_fn = sleep
        self._last_local_claim_ms: int | None = None

    def _now_ms(self) -> int:
        clock = self._clock or time.time
        return int(clock() * 1000)

    async def _sleep(self, seconds: float) -> None:
        sleep = self._sleep_fn or asyncio.sleep
        await sleep(seconds)

    async def _wait_out(self, last_ms: int | None) -> None:
        if last_ms is None:
            return
        remaining_ms = self._min_interval_ms - (self._now_ms() - last_ms)
        if remaining_ms > 0:
            await self._sleep(remaining_ms / 1000)

    async def _acquire_locally(self) -> int:
        """Keep spacing within this process when the shared slot is unreachable."""
        await self._wait_out(self._last_local_claim_ms)
        claimed = self._now_ms()
        self._last_local_claim_ms = claimed
        return claimed

    async def acquire(self) -> int:
        """Wait for the send slot and claim it.

        Returns:
            The claimed timestamp in epoch milliseconds
        """
        attempts = 0
        while True:
            attempts += 1
            try:
                slot = await self._store.read()
                await self._wait_out(slot.last_send_at_ms)
                claimed = self._now_ms()
                won = await self._store.claim(slot=slot, claimed_at_ms=claimed)
            except Exception:
                logger.exception("send_slot_unavailable", extra={"fallback": "process_local"})
                return await self._acquire_locally()

            if won:
                self._last_local_claim_ms = claimed
                logger.debug("send_slot_claimed", extra={"claimed_at_ms": claimed, "attempts": attempts})
                return claimed

            logger.debug("send_slot_contended", extra={"attempt": attempts, "backoff_ms": self._retry_backoff_ms})
            await self._sleep(self._retry_backoff_ms / 1000)


def build_send_slot_store() -> SendSlotStore:
    """Use Redis when configured, otherwise the document store."""
    if redis_client.is_available:
        return RedisSendSlotStore(redis_client)
    return DocumentSendSlotStore()


# Global throttle instance
send_throttle = GlobalSendThrottle(build_send_slot_store())
