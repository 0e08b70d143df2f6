"""Volunteer service: event rosters, registrations and the completion log."""

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Any

from src.core import change_feed, db_client
from src.core.assignee_set import dump_assignees, legacy_assignee_fields, merge_assignees, sanitize_assignees
from src.core.config import Constants
from src.core.logging import span
from src.domain.create_models import VolunteerRegistrationCreate
from src.domain.event import Event
from src.domain.task import Assignee, Task
from src.domain.volunteer import RosterEntry, VolunteerCompletion, VolunteerHoursSummary, VolunteerRegistration
from src.services import phone_directory, task_state_machine
from src.services.notification_service import dispatcher


logger = logging.getLogger(__name__)


ROSTER_SOURCES = ["event_volunteers", "tasks"]


def _clean(value: Any) -> str:
    return "" if value is None else str(value).strip()


def volunteer_identity_key(record: Mapping[str, Any] | Assignee) -> str:
    """Identity of a person-like record: email, else user id or id, else name.

    All parts are trimmed and lowercased; an empty key means the record
    cannot be placed in a roster.
    """
    fields = record.model_dump() if isinstance(record, Assignee) else record
    for candidate in (fields.get("email"), fields.get("user_id") or fields.get("id"), fields.get("name")):
        key = _clean(candidate).lower()
        if key:
            return key
    return ""


def _fill_missing(entry: RosterEntry, *, name: Any, email: Any, phone: Any, user_id: Any) -> None:
    """Copy values into fields that are still empty; populated fields stay."""
    if not entry.name and _clean(name):
        entry.name = _clean(name)
    if not entry.email and _clean(email):
        entry.email = _clean(email).lower()
    if not entry.phone and _clean(phone):
        entry.phone = _clean(phone)
    if not entry.user_id and _clean(user_id):
        entry.user_id = _clean(user_id)


def _entry(key: str, *, name: Any, email: Any, phone: Any, user_id: Any) -> RosterEntry:
    entry = RosterEntry(key=key)
    _fill_missing(entry, name=name, email=email, phone=phone, user_id=user_id)
    return entry


def build_roster(
    registrations: Iterable[VolunteerRegistration | Mapping[str, Any]],
    tasks: Iterable[Task | Mapping[str, Any]],
) -> list[RosterEntry]:
    """Merge volunteer registrations and volunteer-task assignees into one roster.

    Registrations come first and own their fields. Assignees of tasks that
    are volunteer tasks (flagged, or carrying volunteer hours) only fill
    fields that are still empty and add their task id to the entry.
    """
    entries: dict[str, RosterEntry] = {}

    for raw in registrations:
        reg = raw if isinstance(raw, VolunteerRegistration) else VolunteerRegistration.model_validate(dict(raw))
        person = {"email": reg.email, "user_id": reg.user_id, "name": reg.name}
        key = volunteer_identity_key(person)
        if not key:
            logger.debug("Skipping registration %s without identity", reg.id)
            continue
        if key in entries:
            _fill_missing(entries[key], name=reg.name, email=reg.email, phone=reg.phone, user_id=reg.user_id)
            continue
        entries[key] = _entry(key, name=reg.name, email=reg.email, phone=reg.phone, user_id=reg.user_id)
        entries[key].registration_id = reg.id

    for raw in tasks:
        task = raw if isinstance(raw, Task) else Task.model_validate(dict(raw))
        if not task.counts_as_volunteer_task:
            continue
        for person in task.assignees:
            key = volunteer_identity_key(person)
            if not key:
                continue
            if key not in entries:
                entries[key] = _entry(
                    key, name=person.name, email=person.email, phone=person.phone, user_id=person.user_id
                )
            else:
                _fill_missing(
                    entries[key], name=person.name, email=person.email, phone=person.phone, user_id=person.user_id
                )
            if task.id not in entries[key].task_ids:
                entries[key].task_ids.append(task.id)

    return list(entries.values())


async def _list_event_records(collection: str, event_id: str) -> list[dict[str, Any]]:
    return await db_client.list_records(
        collection=collection,
        filter_query=f'event_id = "{db_client.sanitize_param(event_id)}"',
        per_page=Constants.MAX_PER_PAGE_LIMIT,
    )


class VolunteerRoster:
    """Live roster for one event.

    Recomputes whenever a registration or task of its event is written and
    backfills missing phones through the phone directory. Phones found by
    the backfill are cached per identity for the life of the roster.
    """

    def __init__(self, event_id: str) -> None:
        self.event_id = event_id
        self.entries: list[RosterEntry] = []
        self._phone_cache: dict[str, str] = {}
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def is_watching(self) -> bool:
        return self._unsubscribe is not None

    async def start(self) -> list[RosterEntry]:
        """Subscribe to roster sources and compute the first roster."""
        if self._unsubscribe is None:
            self._unsubscribe = change_feed.subscribe(collections=ROSTER_SOURCES, listener=self._on_change)
        return await self.refresh()

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_change(self, collection: str, record_id: str) -> None:
        try:
            record = await db_client.get_record(collection=collection, record_id=record_id)
        except db_client.RecordNotFoundError:
            # Deleted records no longer say which event they belonged to
            record = None
        if record is not None and record.get("event_id") != self.event_id:
            return
        logger.debug("Roster %s invalidated by %s/%s", self.event_id, collection, record_id)
        await self.refresh()

    async def refresh(self) -> list[RosterEntry]:
        """Reload sources, rebuild the roster and backfill phones."""
        with span("volunteer_service.refresh_roster"):
            registrations = await _list_event_records("event_volunteers", self.event_id)
            tasks = await _list_event_records("tasks", self.event_id)
            entries = build_roster(registrations, tasks)
            await self._backfill_phones(entries)
            self.entries = entries
            return entries

    async def _backfill_phones(self, entries: list[RosterEntry]) -> None:
        for entry in entries:
            if entry.phone:
                continue
            cached = self._phone_cache.get(entry.key)
            if cached:
                entry.phone = cached
                continue
            try:
                phone = await phone_directory.resolve_phone(
                    Assignee(name=entry.name, email=entry.email, user_id=entry.user_id),
                    event_id=self.event_id,
                )
            except Exception as e:
                logger.warning("Phone backfill failed for %s: %s", entry.key, e)
                continue
            if phone:
                self._phone_cache[entry.key] = phone
                entry.phone = phone


async def get_event_roster(*, event_id: str) -> list[RosterEntry]:
    """One-off roster computation for an event.

    Raises:
        db_client.RecordNotFoundError: If the event does not exist
    """
    await db_client.get_record(collection="events", record_id=event_id)
    return await VolunteerRoster(event_id).refresh()


def roster_assignees(entries: Iterable[RosterEntry]) -> list[Assignee]:
    """Roster entries as assignees, for broadcasting."""
    return [
        Assignee(name=entry.name or entry.key, email=entry.email, phone=entry.phone, user_id=entry.user_id)
        for entry in entries
    ]


async def _selected_volunteer_tasks(event_id: str, task_ids: list[str]) -> list[str]:
    """Check that every selected task is a volunteer task of the event.

    Raises:
        ValueError: If a selected task is unknown, belongs to another event or is a team task
    """
    for task_id in task_ids:
        try:
            task = await db_client.get_record(collection="tasks", record_id=task_id)
        except KeyError:
            msg = f"Selected task {task_id} does not exist"
            raise ValueError(msg) from None
        volunteer_task = bool(task.get("is_volunteer_task")) or task.get("volunteer_hours") is not None
        if task.get("event_id") != event_id or not volunteer_task:
            msg = f"Selected task {task_id} is not a volunteer task of event {event_id}"
            raise ValueError(msg)
    return task_ids


def _capacity_error(event: Event) -> ValueError:
    return ValueError(f"Event {event.id} has reached its volunteer limit ({event.volunteers_count})")


async def _admit_within_capacity(event: Event, record: dict[str, Any]) -> None:
    """Undo a registration that landed beyond the event's limit.

    Registrations are admitted in creation order, so when two sign-ups race
    for the last place the later one is removed.
    """
    if not event.volunteers_count:
        return
    registrations = await db_client.list_records(
        collection="event_volunteers",
        filter_query=f'event_id = "{db_client.sanitize_param(event.id)}"',
        sort="created",
        per_page=Constants.MAX_PER_PAGE_LIMIT,
    )
    admitted = {r["id"] for r in registrations[: event.volunteers_count]}
    if record["id"] not in admitted:
        await db_client.delete_record(collection="event_volunteers", record_id=record["id"])
        logger.info("Registration %s for event %s exceeded the limit and was removed", record["id"], event.id)
        raise _capacity_error(event)


async def _assign_to_task(task_id: str, volunteer: Assignee) -> None:
    def compute(task: dict[str, Any]) -> dict[str, Any]:
        current = sanitize_assignees(task.get("assignees"))
        merged = merge_assignees(current, [volunteer])
        if len(merged) == len(current):
            return {}
        return {"assignees": dump_assignees(merged), **legacy_assignee_fields(merged)}

    await task_state_machine.apply_task_update(task_id=task_id, compute=compute, operation="volunteer sign-up")


async def register_volunteer(*, event_id: str, registration: VolunteerRegistrationCreate) -> dict[str, Any]:
    """Register a volunteer for an event and add them to the tasks they picked.

    An existing registration (same email, user id or name) is returned as is
    and does not count against the event's volunteer limit; its selected
    tasks are still merged. Everything is validated before the first write.

    Raises:
        ValueError: If the event is closed to volunteers or full, or a selected task is not one of its volunteer tasks
        db_client.RecordNotFoundError: If the event does not exist
    """
    with span("volunteer_service.register_volunteer"):
        event = Event.model_validate(await db_client.get_record(collection="events", record_id=event_id))
        if not event.needs_volunteers:
            msg = f"Event {event_id} is not open for volunteer registration"
            raise ValueError(msg)

        data = registration.model_dump()
        data["name"] = data["name"].strip()
        data["email"] = _clean(data.get("email")).lower() or None
        data["phone"] = _clean(data.get("phone")) or None
        key = volunteer_identity_key(data)
        selected = await _selected_volunteer_tasks(event_id, registration.selected_tasks)

        registrations = await _list_event_records("event_volunteers", event_id)
        record = next(
            (
                existing
                for existing in registrations
                if volunteer_identity_key({k: existing.get(k) for k in ("email", "user_id", "name")}) == key
            ),
            None,
        )
        if record is not None:
            logger.info("Volunteer %s already registered for event %s", key, event_id)
        else:
            if event.volunteers_count and len(registrations) >= event.volunteers_count:
                raise _capacity_error(event)
            record = await db_client.create_record(collection="event_volunteers", data={**data, "event_id": event_id})
            await _admit_within_capacity(event, record)
            logger.info("Registered volunteer %s for event %s", key, event_id)

        volunteer = Assignee(name=data["name"], email=data["email"], user_id=data.get("user_id"))
        for task_id in selected:
            await _assign_to_task(task_id, volunteer)

        return record


async def record_volunteer_completion(*, task_id: str, email: str, name: str = "") -> dict[str, Any]:
    """Log that a volunteer completed a task, pending approval.

    A second completion by the same volunteer for the same task returns the
    existing log entry.

    Raises:
        ValueError: If the email is empty or the task is not a volunteer task
        db_client.RecordNotFoundError: If the task does not exist
    """
    with span("volunteer_service.record_volunteer_completion"):
        email = _clean(email).lower()
        if not email:
            msg = "Volunteer email must not be empty"
            raise ValueError(msg)

        task = Task.model_validate(await db_client.get_record(collection="tasks", record_id=task_id))
        if not task.counts_as_volunteer_task:
            msg = f"Task {task_id} is not a volunteer task"
            raise ValueError(msg)

        existing = await db_client.get_first_record(
            collection="volunteer_completions",
            filter_query=f'email = "{db_client.sanitize_param(email)}" && task_id = "{db_client.sanitize_param(task_id)}"',
        )
        if existing:
            logger.info("Completion for %s on task %s already logged", email, task_id)
            return existing

        record = await db_client.create_record(
            collection="volunteer_completions",
            data={
                "email": email,
                "name": name.strip(),
                "event_id": task.event_id,
                "task_id": task.id,
                "task_title": task.title,
                "volunteer_hours": task.volunteer_hours,
                "completed_at": datetime.now().isoformat(),
                "approved": False,
                "approved_at": None,
            },
        )
        logger.info("Logged volunteer completion %s for task %s", email, task_id)
        return record


async def remove_volunteer_completion(*, task_id: str, email: str) -> int:
    """Delete a volunteer's completion logs for a task.

    Returns:
        Number of log entries removed
    """
    with span("volunteer_service.remove_volunteer_completion"):
        records = await db_client.list_records(
            collection="volunteer_completions",
            filter_query=(
                f'email = "{db_client.sanitize_param(_clean(email).lower())}" '
                f'&& task_id = "{db_client.sanitize_param(task_id)}"'
            ),
            per_page=Constants.MAX_PER_PAGE_LIMIT,
        )
        for record in records:
            await db_client.delete_record(collection="volunteer_completions", record_id=record["id"])

        logger.info("Removed %d completion logs for %s on task %s", len(records), email, task_id)
        return len(records)


async def _claim_completion(completion_id: str) -> VolunteerCompletion:
    """Mark a completion approved, failing if it already is (including by a concurrent approval)."""
    for _ in range(Constants.CONDITIONAL_WRITE_MAX_ATTEMPTS):
        record = await db_client.get_record(collection="volunteer_completions", record_id=completion_id)
        completion = VolunteerCompletion.model_validate(record)
        if completion.approved:
            msg = f"Volunteer completion {completion_id} is already approved"
            raise ValueError(msg)

        won = await db_client.compare_and_set(
            collection="volunteer_completions",
            record_id=completion_id,
            data={**record, "approved": True, "approved_at": datetime.now().isoformat()},
            expected_version=record["version"],
        )
        if won:
            return completion

    msg = f"Volunteer completion {completion_id} changed during every approval attempt"
    raise db_client.DatabaseError(msg)


async def approve_volunteer_completion(*, completion_id: str) -> dict[str, Any]:
    """Approve a logged completion and count it against the task.

    The completion is claimed first, so only one approval of it can reach
    the task. If the task update fails the claim is released again.

    Returns:
        Dict with the updated ``completion`` and ``task`` records

    Raises:
        ValueError: If the completion was already approved
        db_client.RecordNotFoundError: If the completion or its task does not exist
    """
    with span("volunteer_service.approve_volunteer_completion"):
        completion = await _claim_completion(completion_id)

        try:
            task = await task_state_machine.transition_volunteer_approval(task_id=completion.task_id)
        except Exception:
            logger.warning("Task update failed; releasing approval of completion %s", completion_id)
            await db_client.update_record(
                collection="volunteer_completions",
                record_id=completion_id,
                data={"approved": False, "approved_at": None},
            )
            raise

        updated = await db_client.get_record(collection="volunteer_completions", record_id=completion_id)
        logger.info("Approved volunteer completion %s for task %s", completion_id, completion.task_id)
        return {"completion": updated, "task": task}


async def volunteer_hours_summary(*, email: str) -> VolunteerHoursSummary:
    """Approved and pending volunteer hours for one person."""
    with span("volunteer_service.volunteer_hours_summary"):
        email = _clean(email).lower()
        records = await db_client.list_records(
            collection="volunteer_completions",
            filter_query=f'email = "{db_client.sanitize_param(email)}"',
            per_page=Constants.MAX_PER_PAGE_LIMIT,
        )
        completions = [VolunteerCompletion.model_validate(r) for r in records]
        approved = [c for c in completions if c.approved]
        pending = [c for c in completions if not c.approved]

        return VolunteerHoursSummary(
            email=email,
            approved_hours=sum(c.volunteer_hours or 0 for c in approved),
            pending_hours=sum(c.volunteer_hours or 0 for c in pending),
            approved_count=len(approved),
            pending_count=len(pending),
        )


async def broadcast_to_event_volunteers(*, event_id: str, message: str) -> int:
    """Queue a WhatsApp message to everyone on an event's roster.

    Returns:
        Number of messages queued

    Raises:
        db_client.RecordNotFoundError: If the event does not exist
    """
    with span("volunteer_service.broadcast_to_event_volunteers"):
        event = await db_client.get_record(collection="events", record_id=event_id)
        entries = await VolunteerRoster(event_id).refresh()
        queued = dispatcher.broadcast(roster_assignees(entries), message, event=event)

        logger.info("Queued broadcast to %d of %d volunteers for event %s", queued, len(entries), event_id)
        return queued
