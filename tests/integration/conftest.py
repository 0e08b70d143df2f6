"""Fixtures for workflow tests against a real SQLite document store."""

import pytest

from src.core import change_feed, db_client
from src.core.config import settings
from src.core.rate_limiter import DocumentSendSlotStore, GlobalSendThrottle
from src.interface.whatsapp_sender import SendMessageResult
from src.services.notification_service import NotificationDispatcher
from tests.unit.mocks import FakeClock


@pytest.fixture(autouse=True)
def _reset_change_feed():
    yield
    change_feed.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def outbox(monkeypatch):
    """Messages handed to Green API, captured instead of sent."""
    sent: list[dict] = []

    async def _send(**kwargs):
        sent.append(kwargs)
        return SendMessageResult(success=True, message_id=f"msg-{len(sent)}")

    monkeypatch.setattr("src.interface.whatsapp_sender.send_text_message", _send)
    return sent


@pytest.fixture
async def store(sqlite_store, monkeypatch):
    """SQLite store with WhatsApp configured through the integrations record."""
    monkeypatch.setattr(settings, "whatsapp_id_instance", None)
    monkeypatch.setattr(settings, "whatsapp_api_token", None)
    await db_client.create_record(
        collection="integrations",
        record_id="whatsapp",
        data={"id_instance": "7103", "api_token_instance": "tok", "notify_on_mention": True},
    )
    return sqlite_store


@pytest.fixture
async def workflow_dispatcher(monkeypatch, store, clock):
    """Dispatcher throttled through the stored send slot, on a fake clock."""
    throttle = GlobalSendThrottle(DocumentSendSlotStore(), min_interval_ms=5000, clock=clock.time, sleep=clock.sleep)
    dispatcher = NotificationDispatcher(throttle=throttle)
    monkeypatch.setattr("src.services.task_service.dispatcher", dispatcher)
    monkeypatch.setattr("src.services.volunteer_service.dispatcher", dispatcher)
    yield dispatcher
    await dispatcher.wait_idle()
