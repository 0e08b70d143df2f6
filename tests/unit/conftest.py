"""Pytest configuration and fixtures for unit tests."""

from datetime import datetime

import pytest

from src.core import change_feed
from src.core.rate_limiter import GlobalSendThrottle
from src.interface.whatsapp_sender import SendMessageResult, WhatsAppConfig
from src.services.notification_service import NotificationDispatcher
from tests.unit.mocks import FakeClock, InMemoryDBClient, MemorySlotStore


@pytest.fixture
def in_memory_db():
    """Provides a fresh InMemoryDBClient for each test."""
    return InMemoryDBClient()


@pytest.fixture(autouse=True)
def _reset_change_feed():
    """Listeners registered by one test must not leak into the next."""
    yield
    change_feed.clear()


class SentMessages:
    """Records calls to the patched WhatsApp sender."""

    def __init__(self) -> None:
        self.calls: list[dict] = []

    async def send_text_message(self, **kwargs) -> SendMessageResult:
        self.calls.append(kwargs)
        return SendMessageResult(success=True, message_id="mock_message_id", error=None)

    @property
    def phones(self) -> list[str]:
        return [call["to_phone"] for call in self.calls]


@pytest.fixture
def sent_messages(monkeypatch):
    """Patches the Green API sender to record messages instead of sending them."""
    sent = SentMessages()
    monkeypatch.setattr("src.interface.whatsapp_sender.send_text_message", sent.send_text_message)
    return sent


@pytest.fixture
def whatsapp_config(monkeypatch):
    """Enables WhatsApp delivery with fixed test credentials."""
    config = WhatsAppConfig(id_instance="1101", api_token_instance="token-abc")

    async def _load() -> WhatsAppConfig:
        return config

    monkeypatch.setattr("src.interface.whatsapp_sender.load_whatsapp_config", _load)
    return config


@pytest.fixture
def patched_db(monkeypatch, in_memory_db, sent_messages):
    """Patches src.core.db_client functions to use InMemoryDBClient.

    Also patches the WhatsApp sender to avoid real HTTP calls.
    """
    monkeypatch.setattr("src.core.db_client.create_record", in_memory_db.create_record)
    monkeypatch.setattr("src.core.db_client.get_record", in_memory_db.get_record)
    monkeypatch.setattr("src.core.db_client.update_record", in_memory_db.update_record)
    monkeypatch.setattr("src.core.db_client.set_record", in_memory_db.set_record)
    monkeypatch.setattr("src.core.db_client.compare_and_set", in_memory_db.compare_and_set)
    monkeypatch.setattr("src.core.db_client.delete_record", in_memory_db.delete_record)
    monkeypatch.setattr("src.core.db_client.list_records", in_memory_db.list_records)
    monkeypatch.setattr("src.core.db_client.get_first_record", in_memory_db.get_first_record)

    return in_memory_db


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def slot_store():
    return MemorySlotStore()


@pytest.fixture
def throttle(fake_clock, slot_store):
    """Throttle with the production interval but a fake clock."""
    return GlobalSendThrottle(
        slot_store,
        min_interval_ms=5000,
        retry_backoff_ms=200,
        clock=fake_clock.time,
        sleep=fake_clock.sleep,
    )


@pytest.fixture
def dispatcher(throttle):
    """A fresh dispatcher that never waits in real time."""
    return NotificationDispatcher(throttle=throttle)


@pytest.fixture
def event_record():
    return {
        "id": "evt1",
        "title": "ערב התנדבות",
        "location": "תל אביב",
        "start_time": "2030-05-20T18:00:00",
        "recurrence": "NONE",
        "volunteer_tasks_paused": False,
        "team_tasks_paused": False,
    }


@pytest.fixture
def fixed_now():
    return datetime(2030, 5, 1, 12, 0)
