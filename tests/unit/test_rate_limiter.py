"""Unit tests for the global send throttle."""

from unittest.mock import AsyncMock

import pytest

from src.core.rate_limiter import (
    DocumentSendSlotStore,
    GlobalSendThrottle,
    RedisSendSlotStore,
    SendSlot,
)
from tests.unit.mocks import FakeClock, MemorySlotStore


class UnreachableStore:
    """Slot store whose backend is down."""

    async def read(self) -> SendSlot:
        raise ConnectionError("store offline")

    async def claim(self, *, slot: SendSlot, claimed_at_ms: int) -> bool:
        raise ConnectionError("store offline")


@pytest.mark.unit
class TestGlobalSendThrottle:
    """Tests for GlobalSendThrottle.acquire."""

    async def test_first_send_does_not_wait(self, throttle, fake_clock, slot_store):
        claimed = await throttle.acquire()

        assert fake_clock.sleeps == []
        assert slot_store.claims == [claimed]

    async def test_waits_out_remaining_interval(self, fake_clock):
        store = MemorySlotStore(last_send_at_ms=int(fake_clock.now * 1000) - 1000)
        throttle = GlobalSendThrottle(
            store, min_interval_ms=5000, retry_backoff_ms=200, clock=fake_clock.time, sleep=fake_clock.sleep
        )

        await throttle.acquire()
        await throttle.acquire()

        assert fake_clock.sleeps == [4.0, 5.0]

    async def test_claims_are_spaced_by_interval(self, throttle, slot_store):
        for _ in range(4):
            await throttle.acquire()

        gaps = [b - a for a, b in zip(slot_store.claims, slot_store.claims[1:], strict=False)]
        assert gaps == [5000, 5000, 5000]

    async def test_interval_shared_between_throttles(self, fake_clock, slot_store):
        first = GlobalSendThrottle(slot_store, min_interval_ms=5000, clock=fake_clock.time, sleep=fake_clock.sleep)
        second = GlobalSendThrottle(slot_store, min_interval_ms=5000, clock=fake_clock.time, sleep=fake_clock.sleep)

        a = await first.acquire()
        b = await second.acquire()

        assert b - a >= 5000

    async def test_lost_race_backs_off_and_retries(self, fake_clock):
        store = MemorySlotStore(races=2)
        throttle = GlobalSendThrottle(
            store, min_interval_ms=5000, retry_backoff_ms=200, clock=fake_clock.time, sleep=fake_clock.sleep
        )

        await throttle.acquire()

        assert fake_clock.sleeps == [0.2, 0.2]
        assert len(store.claims) == 1

    async def test_unreachable_store_falls_back_to_local_spacing(self, fake_clock):
        throttle = GlobalSendThrottle(
            UnreachableStore(), min_interval_ms=5000, clock=fake_clock.time, sleep=fake_clock.sleep
        )

        first = await throttle.acquire()
        second = await throttle.acquire()

        assert fake_clock.sleeps == [5.0]
        assert second - first == 5000

    async def test_local_spacing_continues_after_shared_claim(self, fake_clock):
        class FlakyStore(MemorySlotStore):
            fail = False

            async def read(self) -> SendSlot:
                if self.fail:
                    raise ConnectionError("store offline")
                return await super().read()

        store = FlakyStore()
        throttle = GlobalSendThrottle(store, min_interval_ms=5000, clock=fake_clock.time, sleep=fake_clock.sleep)

        await throttle.acquire()
        store.fail = True
        await throttle.acquire()

        assert fake_clock.sleeps == [5.0]


@pytest.mark.unit
class TestDocumentSendSlotStore:
    """Tests for the document-backed send slot."""

    async def test_empty_slot(self, patched_db):
        slot = await DocumentSendSlotStore().read()
        assert slot == SendSlot(last_send_at_ms=None, version=None)

    async def test_claim_creates_then_updates(self, patched_db):
        store = DocumentSendSlotStore()

        assert await store.claim(slot=await store.read(), claimed_at_ms=1000) is True
        slot = await store.read()
        assert slot == SendSlot(last_send_at_ms=1000, version=1)

        assert await store.claim(slot=slot, claimed_at_ms=6000) is True
        assert (await store.read()).last_send_at_ms == 6000

    async def test_stale_claim_rejected(self, patched_db):
        store = DocumentSendSlotStore()
        stale = await store.read()
        await store.claim(slot=stale, claimed_at_ms=1000)

        assert await store.claim(slot=stale, claimed_at_ms=2000) is False
        assert (await store.read()).last_send_at_ms == 1000

    async def test_drives_throttle_end_to_end(self, patched_db):
        clock = FakeClock()
        throttle = GlobalSendThrottle(
            DocumentSendSlotStore(), min_interval_ms=5000, clock=clock.time, sleep=clock.sleep
        )

        await throttle.acquire()
        await throttle.acquire()

        assert clock.sleeps == [5.0]


@pytest.mark.unit
class TestRedisSendSlotStore:
    """Tests for the Redis-backed send slot."""

    async def test_read_parses_timestamp(self):
        client = AsyncMock()
        client.get = AsyncMock(return_value="1700000000000")

        slot = await RedisSendSlotStore(client, key="slot").read()

        assert slot == SendSlot(last_send_at_ms=1700000000000, version="1700000000000")
        client.get.assert_awaited_once_with("slot")

    async def test_read_missing_key(self):
        client = AsyncMock()
        client.get = AsyncMock(return_value=None)

        assert await RedisSendSlotStore(client).read() == SendSlot(last_send_at_ms=None, version=None)

    async def test_claim_compares_against_read_value(self):
        client = AsyncMock()
        client.compare_and_set = AsyncMock(return_value=True)
        store = RedisSendSlotStore(client, key="slot")

        won = await store.claim(slot=SendSlot(last_send_at_ms=10, version="10"), claimed_at_ms=5010)

        assert won is True
        client.compare_and_set.assert_awaited_once_with("slot", expected="10", value="5010")
