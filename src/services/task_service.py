"""Task service for creating, loading and updating event tasks."""

import logging
from datetime import datetime
from typing import Any

from src.core import db_client
from src.core.assignee_set import (
    AssigneeLike,
    added_assignees,
    dump_assignees,
    legacy_assignee_fields,
    sanitize_assignees,
    toggle_assignee,
)
from src.core.config import Constants
from src.core.date_math import (
    compute_due_date_from_mode,
    compute_next_occurrence,
    format_due_date,
    infer_smart_due_date,
)
from src.core.logging import span
from src.domain.create_models import TaskCreate
from src.domain.event import Event
from src.domain.task import TaskAudience, TaskStatus
from src.services import task_state_machine
from src.services.notification_service import dispatcher


logger = logging.getLogger(__name__)


async def get_event(*, event_id: str) -> Event:
    """Get an event by ID.

    Raises:
        db_client.RecordNotFoundError: If the event does not exist
    """
    return Event.model_validate(await db_client.get_record(collection="events", record_id=event_id))


async def _find_event(event_id: str | None) -> Event | None:
    """Event lookup that logs and returns None on any failure."""
    if not event_id:
        return None
    try:
        return await get_event(event_id=event_id)
    except KeyError:
        logger.warning("Event %s not found", event_id)
    except Exception as e:
        logger.warning("Event lookup failed for %s: %s", event_id, e)
    return None


def event_anchor(event: Event | None, *, now: datetime | None = None) -> datetime | None:
    """Anchor for relative due dates: the event's next occurrence, if it has a start."""
    if event is None or event.start_time is None:
        return None
    return compute_next_occurrence(event.start_time, event.recurrence, event.recurrence_end_date, now=now)


async def get_event_view(*, event_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Event record with ``next_occurrence`` resolved for repeating events.

    Raises:
        db_client.RecordNotFoundError: If the event does not exist
    """
    record = await db_client.get_record(collection="events", record_id=event_id)
    anchor = event_anchor(Event.model_validate(record), now=now)
    return {**record, "next_occurrence": format_due_date(anchor) if anchor else None}


def _resolve_due_date(task: TaskCreate, event: Event | None, now: datetime | None) -> str:
    if task.due_date:
        return task.due_date
    anchor = event_anchor(event, now=now)
    if task.due_mode is not None:
        return compute_due_date_from_mode(task.due_mode, task.due_offset_days, task.due_time, anchor=anchor, now=now)
    return format_due_date(infer_smart_due_date(task.title, task.description, anchor, now=now))


async def create_task(
    *,
    event_id: str,
    task: TaskCreate | dict[str, Any],
    now: datetime | None = None,
) -> dict[str, Any]:
    """Create a task for an event and notify its assignees.

    The due date is the explicit value if given, else the relative due mode
    against the event start, else the smart default inferred from the text.
    Notification failures never fail the creation.

    Raises:
        ValueError: If the task data is invalid (nothing is written)
        db_client.RecordNotFoundError: If the event does not exist
    """
    with span("task_service.create_task"):
        data = task if isinstance(task, TaskCreate) else TaskCreate.model_validate(task)
        event = await get_event(event_id=event_id)

        assignees = sanitize_assignees(data.assignees)
        record_data = {
            "event_id": event_id,
            "title": data.title,
            "description": data.description,
            "status": TaskStatus.TODO,
            "priority": data.priority,
            "due_date": _resolve_due_date(data, event, now),
            "required_completions": data.required_completions,
            "remaining_completions": data.required_completions,
            "assignees": dump_assignees(assignees),
            **legacy_assignee_fields(assignees),
            "is_volunteer_task": data.is_volunteer_task,
            "volunteer_hours": data.volunteer_hours,
            "last_message_time": None,
            "last_message_by": None,
            "read_by": [],
        }

        record = await db_client.create_record(collection="tasks", data=record_data)
        logger.info("Created task %s for event %s (due %s)", record["id"], event_id, record["due_date"])

        if assignees:
            queued = dispatcher.enqueue(assignees, record, event)
            logger.info("Queued %d notifications for task %s", queued, record["id"])

        return record


async def hydrate_task(
    record: dict[str, Any],
    *,
    event: Event | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Fill in a missing due date and repair completion state, persisting once.

    The write only lands if the task is unchanged since it was read. A failed
    or raced write is logged and the corrected view is still returned.
    """
    diff: dict[str, Any] = {}
    if not record.get("due_date"):
        anchor = event_anchor(event, now=now)
        inferred = infer_smart_due_date(record.get("title", ""), record.get("description", ""), anchor, now=now)
        diff["due_date"] = format_due_date(inferred)

    diff.update(task_state_machine.repair_completion_state({**record, **diff}))
    if not diff:
        return record

    repaired = {**record, **diff}
    try:
        won = await db_client.compare_and_set(
            collection="tasks",
            record_id=record["id"],
            data=repaired,
            expected_version=record["version"],
        )
    except Exception as e:
        logger.warning("Failed to persist repair for task %s: %s", record.get("id"), e)
        return repaired

    if not won:
        # Someone else wrote the task first; their record is repaired on its next read
        logger.info("Skipped repair of task %s: it changed while loading", record["id"])
        return repaired

    logger.info("Repaired task %s: %s", record["id"], sorted(diff))
    return {**repaired, "version": record["version"] + 1}


async def get_task(*, task_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Get a task by ID, hydrated.

    Raises:
        db_client.RecordNotFoundError: If the task does not exist
    """
    with span("task_service.get_task"):
        record = await db_client.get_record(collection="tasks", record_id=task_id)
        event = await _find_event(record.get("event_id"))
        return await hydrate_task(record, event=event, now=now)


async def list_event_tasks(*, event_id: str, now: datetime | None = None) -> list[dict[str, Any]]:
    """All tasks of an event, hydrated.

    Raises:
        db_client.RecordNotFoundError: If the event does not exist
    """
    with span("task_service.list_event_tasks"):
        event = await get_event(event_id=event_id)
        records = await db_client.list_records(
            collection="tasks",
            filter_query=f'event_id = "{db_client.sanitize_param(event_id)}"',
            per_page=Constants.MAX_PER_PAGE_LIMIT,
        )
        return [await hydrate_task(record, event=event, now=now) for record in records]


async def list_visible_tasks(
    *,
    event_id: str,
    audience: TaskAudience | str = TaskAudience.ALL,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Tasks of an event as seen by an audience.

    Volunteers see volunteer tasks unless they are paused for the event; the
    team sees the other tasks unless those are paused. ``all`` is the
    organizer view and hides nothing.
    """
    with span("task_service.list_visible_tasks"):
        audience = TaskAudience(audience)
        event = await get_event(event_id=event_id)
        tasks = await list_event_tasks(event_id=event_id, now=now)

        def is_volunteer(task: dict[str, Any]) -> bool:
            return bool(task.get("is_volunteer_task")) or task.get("volunteer_hours") is not None

        if audience == TaskAudience.VOLUNTEER:
            return [] if event.volunteer_tasks_paused else [t for t in tasks if is_volunteer(t)]
        if audience == TaskAudience.TEAM:
            return [] if event.team_tasks_paused else [t for t in tasks if not is_volunteer(t)]
        return tasks


async def change_status(*, task_id: str, status: TaskStatus | str) -> dict[str, Any]:
    """Apply a status request (completion-aware) to a task."""
    return await task_state_machine.transition_status(task_id=task_id, status=status)


async def change_required_completions(*, task_id: str, required_completions: int) -> dict[str, Any]:
    """Set how many completions a task needs, restarting its cycle."""
    return await task_state_machine.transition_required_completions(
        task_id=task_id, required_completions=required_completions
    )


async def toggle_task_assignee(
    *,
    task_id: str,
    assignee: AssigneeLike,
    notify: bool = True,
) -> dict[str, Any]:
    """Add or remove an assignee; a newly added assignee is notified.

    Raises:
        ValueError: If the assignee has no usable identity
        db_client.RecordNotFoundError: If the task does not exist
    """
    with span("task_service.toggle_task_assignee"):
        change: dict[str, list] = {}

        def compute(record: dict[str, Any]) -> dict[str, Any]:
            before = sanitize_assignees(record.get("assignees"))
            after = toggle_assignee(before, assignee)
            change.update(before=before, after=after)
            return {"assignees": dump_assignees(after), **legacy_assignee_fields(after)}

        updated = await task_state_machine.apply_task_update(
            task_id=task_id, compute=compute, operation="assignee toggle"
        )

        added = added_assignees(change["before"], change["after"])
        logger.info("Toggled assignee on task %s (%d assignees now)", task_id, len(change["after"]))

        if notify and added:
            event = await _find_event(updated.get("event_id"))
            dispatcher.enqueue(added, updated, event)

        return updated
