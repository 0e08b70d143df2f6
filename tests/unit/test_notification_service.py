"""Unit tests for the notification dispatcher."""

import asyncio

import pytest

from src.interface.whatsapp_sender import SendMessageResult, WhatsAppConfig


TASK = {
    "id": "t1",
    "event_id": "evt1",
    "title": "Set up chairs",
    "due_date": "2030-05-20T12:00",
}

DANA = {"name": "Dana", "email": "dana@x.com", "phone": "050-1234567"}
AVI = {"name": "Avi", "email": "avi@x.com", "phone": "+972 52 765 4321"}
NOA = {"name": "Noa", "user_id": "u7", "phone": "0541112222"}


@pytest.mark.unit
class TestEnqueue:
    """Tests for queueing task notifications."""

    async def test_delivers_to_each_assignee_in_order(
        self, dispatcher, patched_db, sent_messages, whatsapp_config, event_record
    ):
        queued = dispatcher.enqueue([DANA, AVI, NOA], TASK, event_record)
        await dispatcher.wait_idle()

        assert queued == 3
        assert sent_messages.phones == ["972501234567", "972527654321", "972541112222"]
        assert "Set up chairs" in sent_messages.calls[0]["text"]
        assert "Dana" in sent_messages.calls[0]["text"]
        assert sent_messages.calls[0]["config"] == whatsapp_config
        assert [r.success for r in dispatcher.results] == [True, True, True]

    async def test_sends_are_spaced_by_throttle(self, dispatcher, sent_messages, whatsapp_config, fake_clock):
        dispatcher.enqueue([DANA, AVI, NOA], TASK)
        await dispatcher.wait_idle()

        assert fake_clock.sleeps == [5.0, 5.0]

    async def test_duplicate_pending_entries_ignored(self, dispatcher, sent_messages, whatsapp_config):
        first = dispatcher.enqueue([DANA, AVI], TASK)
        second = dispatcher.enqueue([{"name": "Dana again", "email": "DANA@x.com"}], TASK)
        await dispatcher.wait_idle()

        assert (first, second) == (2, 0)
        assert len(sent_messages.calls) == 2

    async def test_duplicate_in_flight_entry_ignored(self, monkeypatch, dispatcher, whatsapp_config):
        started = asyncio.Event()
        release = asyncio.Event()
        calls = []

        async def slow_send(**kwargs):
            calls.append(kwargs["to_phone"])
            started.set()
            await release.wait()
            return SendMessageResult(success=True, message_id="m1")

        monkeypatch.setattr("src.interface.whatsapp_sender.send_text_message", slow_send)

        dispatcher.enqueue([DANA], TASK)
        await started.wait()

        assert dispatcher.enqueue([DANA], TASK) == 0
        assert dispatcher.enqueue([AVI], TASK) == 1

        release.set()
        await dispatcher.wait_idle()
        assert calls == ["972501234567", "972527654321"]

    async def test_same_person_on_another_task_is_queued(self, dispatcher, sent_messages, whatsapp_config):
        dispatcher.enqueue([DANA], TASK)
        queued = dispatcher.enqueue([DANA], {**TASK, "id": "t2"})
        await dispatcher.wait_idle()

        assert queued == 1
        assert len(sent_messages.calls) == 2

    async def test_can_notify_again_after_delivery(self, dispatcher, sent_messages, whatsapp_config):
        dispatcher.enqueue([DANA], TASK)
        await dispatcher.wait_idle()

        assert dispatcher.enqueue([DANA], TASK) == 1
        await dispatcher.wait_idle()
        assert len(sent_messages.calls) == 2

    async def test_invalid_task_is_not_raised(self, dispatcher, sent_messages):
        assert dispatcher.enqueue([DANA], {"title": "no id"}) == 0
        assert dispatcher.pending_count == 0

    async def test_no_valid_assignees_queues_nothing(self, dispatcher):
        assert dispatcher.enqueue([{"name": ""}, None], TASK) == 0
        assert not dispatcher.is_running

    def test_without_event_loop_stays_queued(self, dispatcher):
        assert dispatcher.enqueue([DANA], TASK) == 1
        assert dispatcher.pending_count == 1
        assert not dispatcher.is_running


@pytest.mark.unit
class TestDelivery:
    """Tests for per-message delivery outcomes."""

    async def test_missing_config_sends_nothing(self, monkeypatch, dispatcher, sent_messages, slot_store):
        async def no_config():
            return None

        monkeypatch.setattr("src.interface.whatsapp_sender.load_whatsapp_config", no_config)

        dispatcher.enqueue([DANA, AVI], TASK)
        await dispatcher.wait_idle()

        assert sent_messages.calls == []
        assert slot_store.claims == []
        assert all(r.skipped and not r.success for r in dispatcher.results)

    async def test_notify_switch_off_sends_nothing(self, monkeypatch, dispatcher, sent_messages):
        async def muted():
            return WhatsAppConfig(id_instance="1", api_token_instance="t", notify_on_mention=False)

        monkeypatch.setattr("src.interface.whatsapp_sender.load_whatsapp_config", muted)

        dispatcher.enqueue([DANA], TASK)
        await dispatcher.wait_idle()

        assert sent_messages.calls == []

    async def test_phone_from_user_directory(self, dispatcher, patched_db, sent_messages, whatsapp_config):
        patched_db.seed("users", {"id": "u1", "name": "Eli", "phone": "052-9998888"})

        dispatcher.enqueue([{"name": "Eli", "user_id": "u1"}], TASK)
        await dispatcher.wait_idle()

        assert sent_messages.phones == ["972529998888"]

    async def test_no_phone_is_skipped(self, dispatcher, patched_db, sent_messages, whatsapp_config):
        dispatcher.enqueue([{"name": "Ghost", "email": "ghost@x.com"}, DANA], TASK)
        await dispatcher.wait_idle()

        assert sent_messages.phones == ["972501234567"]
        skipped = dispatcher.results[0]
        assert skipped.skipped is True
        assert skipped.recipient_key == "ghost@x.com"

    async def test_send_failure_does_not_stop_queue(self, monkeypatch, dispatcher, whatsapp_config):
        delivered = []

        async def flaky_send(**kwargs):
            if kwargs["to_phone"] == "972501234567":
                raise RuntimeError("gateway exploded")
            delivered.append(kwargs["to_phone"])
            return SendMessageResult(success=False, error="Send failed (500)", status_code=500)

        monkeypatch.setattr("src.interface.whatsapp_sender.send_text_message", flaky_send)

        dispatcher.enqueue([DANA, AVI], TASK)
        await dispatcher.wait_idle()

        assert delivered == ["972527654321"]
        assert len(dispatcher.results) == 1
        assert dispatcher.results[0].success is False
        assert dispatcher.results[0].error == "Send failed (500)"
        assert not dispatcher.is_running


@pytest.mark.unit
class TestBroadcast:
    """Tests for free-text broadcasts."""

    async def test_broadcast_message_prefixed_with_event(
        self, dispatcher, sent_messages, whatsapp_config, event_record
    ):
        queued = dispatcher.broadcast([DANA, AVI], "  נפגשים בשש  ", event=event_record)
        await dispatcher.wait_idle()

        assert queued == 2
        text = sent_messages.calls[0]["text"]
        assert text.startswith("\U0001f4e2 ערב התנדבות")
        assert text.endswith("נפגשים בשש")

    async def test_same_broadcast_deduplicated_while_pending(self, dispatcher, sent_messages, whatsapp_config):
        dispatcher.broadcast([DANA], "hello")
        again = dispatcher.broadcast([DANA], "hello")
        other = dispatcher.broadcast([DANA], "different")
        await dispatcher.wait_idle()

        assert (again, other) == (0, 1)
        assert [c["text"] for c in sent_messages.calls] == ["hello", "different"]
