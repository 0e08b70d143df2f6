"""Unit tests for task creation, hydration, visibility and assignment."""

import pytest
from pydantic import ValidationError

from src.domain.create_models import TaskCreate
from src.domain.task import TaskStatus
from src.services import task_service


@pytest.fixture
def event_db(patched_db, event_record):
    patched_db.seed("events", event_record)
    return patched_db


@pytest.fixture(autouse=True)
async def task_dispatcher(monkeypatch, dispatcher):
    """Route task notifications through the test dispatcher and drain it after each test."""
    monkeypatch.setattr("src.services.task_service.dispatcher", dispatcher)
    yield dispatcher
    await dispatcher.wait_idle()


@pytest.fixture
def notify(task_dispatcher, sent_messages, whatsapp_config):
    """Enable WhatsApp delivery for task notifications."""
    return task_dispatcher


def _stored_task(task_id, **overrides):
    task = {
        "id": task_id,
        "event_id": "evt1",
        "title": "Task",
        "description": "",
        "status": TaskStatus.TODO,
        "due_date": "2030-05-19T10:00",
        "required_completions": 1,
        "remaining_completions": 1,
        "assignees": [],
        "is_volunteer_task": False,
        "volunteer_hours": None,
    }
    task.update(overrides)
    return task


@pytest.mark.unit
class TestCreateTask:
    """Tests for create_task."""

    async def test_explicit_due_date_kept(self, event_db, fixed_now):
        record = await task_service.create_task(
            event_id="evt1",
            task={"title": "Book hall", "due_date": "2030-05-10T08:00", "due_mode": "offset", "due_offset_days": -1},
            now=fixed_now,
        )

        assert record["due_date"] == "2030-05-10T08:00"

    async def test_relative_due_date_from_event_start(self, event_db, fixed_now):
        record = await task_service.create_task(
            event_id="evt1",
            task=TaskCreate(title="Print flyers", due_mode="offset", due_offset_days=-3, due_time="10:30"),
            now=fixed_now,
        )

        assert record["due_date"] == "2030-05-17T10:30"

    async def test_event_day_mode(self, event_db, fixed_now):
        record = await task_service.create_task(
            event_id="evt1",
            task={"title": "Arrive early", "due_mode": "event_day", "due_time": "16:00"},
            now=fixed_now,
        )

        assert record["due_date"] == "2030-05-20T16:00"

    async def test_smart_due_date_when_nothing_given(self, event_db, fixed_now):
        record = await task_service.create_task(event_id="evt1", task={"title": "תזכורת לאירוע"}, now=fixed_now)

        assert record["due_date"] == "2030-05-20T14:00"

    async def test_recurring_event_anchors_on_next_occurrence(self, patched_db, event_record, fixed_now):
        patched_db.seed("events", {**event_record, "start_time": "2030-04-10T18:00:00", "recurrence": "WEEKLY"})

        record = await task_service.create_task(
            event_id="evt1",
            task={"title": "Setup", "due_mode": "event_day", "due_time": "09:00"},
            now=fixed_now,
        )

        assert record["due_date"] == "2030-05-01T09:00"

    async def test_initial_record_fields(self, event_db, fixed_now):
        record = await task_service.create_task(
            event_id="evt1",
            task={
                "title": "  Greeters  ",
                "required_completions": 3,
                "is_volunteer_task": True,
                "volunteer_hours": 2,
                "assignees": [
                    {"name": "Dana", "email": "Dana@X.com"},
                    {"name": "Dana again", "email": "dana@x.com"},
                    {"name": "Avi", "user_id": "u2"},
                ],
            },
            now=fixed_now,
        )

        assert record["title"] == "Greeters"
        assert record["status"] == TaskStatus.TODO
        assert record["required_completions"] == 3
        assert record["remaining_completions"] == 3
        assert record["assignees"] == [{"name": "Dana", "email": "dana@x.com"}, {"name": "Avi", "user_id": "u2"}]
        assert record["assignee"] == "Dana"
        assert record["assignee_id"] == "dana@x.com"
        assert record["volunteer_hours"] == 2

    async def test_volunteer_task_without_hours_writes_nothing(self, event_db):
        with pytest.raises(ValidationError):
            await task_service.create_task(event_id="evt1", task={"title": "Usher", "is_volunteer_task": True})

        assert event_db.writes == []

    async def test_empty_title_writes_nothing(self, event_db):
        with pytest.raises(ValidationError):
            await task_service.create_task(event_id="evt1", task={"title": "   "})

        assert event_db.writes == []

    async def test_unknown_event_writes_nothing(self, patched_db):
        with pytest.raises(KeyError):
            await task_service.create_task(event_id="missing", task={"title": "Orphan"})

        assert patched_db.writes == []

    async def test_assignees_notified(self, event_db, notify, sent_messages, fixed_now):
        await task_service.create_task(
            event_id="evt1",
            task={
                "title": "Set up chairs",
                "assignees": [{"name": "Dana", "phone": "0501234567"}, {"name": "Avi", "phone": "0527654321"}],
            },
            now=fixed_now,
        )
        await notify.wait_idle()

        assert sent_messages.phones == ["972501234567", "972527654321"]
        assert "ערב התנדבות" in sent_messages.calls[0]["text"]

    async def test_notification_failure_does_not_fail_creation(self, monkeypatch, event_db, notify, fixed_now):
        async def broken(**kwargs):
            raise RuntimeError("gateway down")

        monkeypatch.setattr("src.interface.whatsapp_sender.send_text_message", broken)

        record = await task_service.create_task(
            event_id="evt1", task={"title": "Set up chairs", "assignees": [{"name": "Dana", "phone": "050"}]}
        )
        await notify.wait_idle()

        assert record["id"]


@pytest.mark.unit
class TestHydrateTask:
    """Tests for loading tasks with repair."""

    async def test_repair_and_due_date_persisted_once(self, event_db, fixed_now):
        event_db.seed(
            "tasks",
            _stored_task(
                "t1",
                title="Send invoice",
                due_date=None,
                status=TaskStatus.DONE,
                required_completions=3,
                remaining_completions=2,
            ),
        )

        task = await task_service.get_task(task_id="t1", now=fixed_now)

        assert task["status"] == TaskStatus.IN_PROGRESS
        assert task["due_date"] == "2030-05-22T10:00"
        assert event_db.writes == [("update", "tasks", "t1")]

        await task_service.get_task(task_id="t1", now=fixed_now)
        assert len(event_db.writes) == 1

    async def test_consistent_task_not_written(self, event_db):
        event_db.seed("tasks", _stored_task("t1"))

        await task_service.get_task(task_id="t1")

        assert event_db.writes == []

    async def test_failed_persist_still_returns_repaired_view(self, monkeypatch, event_db):
        event_db.seed(
            "tasks", _stored_task("t1", status=TaskStatus.DONE, required_completions=2, remaining_completions=1)
        )

        async def locked(**kwargs):
            raise RuntimeError("database is locked")

        monkeypatch.setattr("src.core.db_client.compare_and_set", locked)

        task = await task_service.get_task(task_id="t1")

        assert task["status"] == TaskStatus.IN_PROGRESS

    async def test_raced_repair_returns_view_without_overwriting(self, monkeypatch, event_db):
        event_db.seed(
            "tasks", _stored_task("t1", status=TaskStatus.DONE, required_completions=2, remaining_completions=1)
        )

        async def beaten(**kwargs):
            return False

        monkeypatch.setattr("src.core.db_client.compare_and_set", beaten)

        task = await task_service.get_task(task_id="t1")

        assert task["status"] == TaskStatus.IN_PROGRESS
        assert event_db.writes == []

    async def test_unknown_stored_status_listed_and_repaired(self, event_db):
        event_db.seed("tasks", _stored_task("t1", status="done", remaining_completions=0))
        event_db.seed("tasks", _stored_task("t2", status="waiting"))

        tasks = await task_service.list_event_tasks(event_id="evt1")

        assert [t["status"] for t in tasks] == [TaskStatus.DONE, TaskStatus.TODO]
        stored = await task_service.get_task(task_id="t2")
        assert stored["status"] == TaskStatus.TODO
        assert event_db.writes == [("update", "tasks", "t1"), ("update", "tasks", "t2")]

    async def test_task_without_event(self, patched_db, fixed_now):
        patched_db.seed("tasks", _stored_task("t1", event_id="gone", due_date=None, title="Buy snacks"))

        task = await task_service.get_task(task_id="t1", now=fixed_now)

        assert task["due_date"] == "2030-05-03T10:00"


@pytest.mark.unit
class TestListVisibleTasks:
    """Tests for audience filtering."""

    @pytest.fixture
    def seeded(self, patched_db, event_record):
        def _seed(**event_overrides):
            patched_db.seed("events", {**event_record, **event_overrides})
            patched_db.seed("tasks", _stored_task("team1"))
            patched_db.seed("tasks", _stored_task("vol1", is_volunteer_task=True, volunteer_hours=2))
            patched_db.seed("tasks", _stored_task("vol2", volunteer_hours=1))
            patched_db.seed("tasks", _stored_task("other", event_id="evt2"))

        return _seed

    async def _ids(self, audience):
        return [t["id"] for t in await task_service.list_visible_tasks(event_id="evt1", audience=audience)]

    async def test_audiences(self, seeded):
        seeded()

        assert await self._ids("volunteer") == ["vol1", "vol2"]
        assert await self._ids("team") == ["team1"]
        assert await self._ids("all") == ["team1", "vol1", "vol2"]

    async def test_paused_volunteer_tasks(self, seeded):
        seeded(volunteer_tasks_paused=True)

        assert await self._ids("volunteer") == []
        assert await self._ids("team") == ["team1"]
        assert len(await self._ids("all")) == 3

    async def test_paused_team_tasks(self, seeded):
        seeded(team_tasks_paused=True)

        assert await self._ids("team") == []
        assert await self._ids("volunteer") == ["vol1", "vol2"]

    async def test_unknown_audience(self, seeded):
        seeded()
        with pytest.raises(ValueError):
            await task_service.list_visible_tasks(event_id="evt1", audience="press")


@pytest.mark.unit
class TestToggleTaskAssignee:
    """Tests for toggle_task_assignee."""

    async def test_added_assignee_is_notified_alone(self, event_db, notify, sent_messages):
        event_db.seed("tasks", _stored_task("t1", assignees=[{"name": "Dana", "phone": "0501234567"}]))

        updated = await task_service.toggle_task_assignee(
            task_id="t1", assignee={"name": "Avi", "email": "avi@x.com", "phone": "0527654321"}
        )
        await notify.wait_idle()

        assert [a["name"] for a in updated["assignees"]] == ["Dana", "Avi"]
        assert updated["assignee"] == "Dana"
        assert sent_messages.phones == ["972527654321"]

    async def test_removal_sends_nothing(self, event_db, notify, sent_messages):
        event_db.seed(
            "tasks",
            _stored_task("t1", assignees=[{"name": "Dana", "email": "dana@x.com"}, {"name": "Avi", "user_id": "u2"}]),
        )

        updated = await task_service.toggle_task_assignee(task_id="t1", assignee={"name": "x", "email": "DANA@x.com"})
        await notify.wait_idle()

        assert updated["assignees"] == [{"name": "Avi", "user_id": "u2"}]
        assert updated["assignee"] == "Avi"
        assert updated["assignee_id"] == "u2"
        assert sent_messages.calls == []

    async def test_notify_disabled(self, event_db, notify, sent_messages):
        event_db.seed("tasks", _stored_task("t1"))

        await task_service.toggle_task_assignee(
            task_id="t1", assignee={"name": "Avi", "phone": "0527654321"}, notify=False
        )
        await notify.wait_idle()

        assert sent_messages.calls == []

    async def test_invalid_assignee(self, event_db):
        event_db.seed("tasks", _stored_task("t1"))

        with pytest.raises(ValueError):
            await task_service.toggle_task_assignee(task_id="t1", assignee={"name": ""})
        assert event_db.writes == []


@pytest.mark.unit
class TestEventView:
    """Tests for get_event_view and the status passthroughs."""

    async def test_next_occurrence_for_repeating_event(self, patched_db, event_record, fixed_now):
        patched_db.seed("events", {**event_record, "start_time": "2030-04-10T18:00:00", "recurrence": "WEEKLY"})

        view = await task_service.get_event_view(event_id="evt1", now=fixed_now)

        assert view["next_occurrence"] == "2030-05-01T18:00"
        assert view["title"] == "ערב התנדבות"

    async def test_event_without_start(self, patched_db, event_record):
        patched_db.seed("events", {**event_record, "start_time": None})

        view = await task_service.get_event_view(event_id="evt1")

        assert view["next_occurrence"] is None

    async def test_change_status(self, event_db):
        event_db.seed("tasks", _stored_task("t1", required_completions=2, remaining_completions=2))

        updated = await task_service.change_status(task_id="t1", status="DONE")

        assert (updated["status"], updated["remaining_completions"]) == (TaskStatus.IN_PROGRESS, 1)

    async def test_change_required_completions_rejects_zero(self, event_db):
        event_db.seed("tasks", _stored_task("t1"))

        with pytest.raises(ValueError):
            await task_service.change_required_completions(task_id="t1", required_completions=0)
