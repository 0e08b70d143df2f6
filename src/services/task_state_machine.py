"""Pure completion-state transitions for tasks, plus functions that apply them.

The pure functions take a task record (or model) and return a diff: a dict
of the fields that change. An empty diff means nothing to write.
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any

from src.core import db_client
from src.core.config import Constants
from src.core.logging import span
from src.domain.task import Task, TaskStatus


logger = logging.getLogger(__name__)

TaskLike = Task | Mapping[str, Any]


def _fields(task: TaskLike) -> Mapping[str, Any]:
    if isinstance(task, Task):
        return task.model_dump()
    return task


def _required(task: Mapping[str, Any]) -> int:
    try:
        value = int(task.get("required_completions") or 1)
    except (TypeError, ValueError):
        return 1
    return max(value, 1)


def _remaining(task: Mapping[str, Any], required: int) -> int:
    """Remaining completions, defaulting to ``required`` when absent."""
    value = task.get("remaining_completions")
    if value is None:
        return required
    try:
        return int(value)
    except (TypeError, ValueError):
        return required


def _status(task: Mapping[str, Any]) -> TaskStatus:
    """Stored status, read leniently: case is ignored and unknown values count as TODO."""
    raw = task.get("status")
    if not raw:
        return TaskStatus.TODO
    try:
        return TaskStatus(str(raw).strip().upper())
    except ValueError:
        logger.warning("Task %s has unknown status %r; treating it as TODO", task.get("id"), raw)
        return TaskStatus.TODO


def _is_volunteer(task: Mapping[str, Any]) -> bool:
    return bool(task.get("is_volunteer_task")) or task.get("volunteer_hours") is not None


def _diff(task: Mapping[str, Any], **changes: Any) -> dict[str, Any]:
    return {field: value for field, value in changes.items() if task.get(field) != value}


def apply_status_change(task: TaskLike, requested: TaskStatus | str) -> dict[str, Any]:
    """Compute the effect of a user requesting a new status.

    Single-completion tasks take the requested status as is, with the
    counter following it. Requesting DONE on a multi-completion task counts
    one completion instead: non-volunteer tasks decrement and only reach DONE
    at zero, volunteer tasks stay IN_PROGRESS until approvals bring them to
    zero.
    """
    fields = _fields(task)
    requested = TaskStatus(requested)
    required = _required(fields)

    if required == 1:
        remaining = 0 if requested == TaskStatus.DONE else 1
        return _diff(fields, status=requested, remaining_completions=remaining)

    remaining = _remaining(fields, required)
    if requested != TaskStatus.DONE:
        return _diff(fields, status=requested)

    if _is_volunteer(fields):
        status = TaskStatus.DONE if remaining <= 0 else TaskStatus.IN_PROGRESS
        return _diff(fields, status=status)

    remaining = max(remaining - 1, 0)
    status = TaskStatus.IN_PROGRESS if remaining > 0 else TaskStatus.DONE
    return _diff(fields, status=status, remaining_completions=remaining)


def mark_complete(task: TaskLike) -> dict[str, Any]:
    """Record one completion signal (a request for DONE)."""
    return apply_status_change(task, TaskStatus.DONE)


def repair_completion_state(task: TaskLike) -> dict[str, Any]:
    """Bring stored counters and status back in line.

    Counters are clamped into ``0 <= remaining <= required`` and a DONE task
    that still needs completions is moved back to IN_PROGRESS. A missing
    counter on a DONE task is read as fully completed. A status outside the
    enum is rewritten: ``"done"`` becomes DONE, anything unknown TODO.
    Applying the returned diff and repairing again yields an empty diff.
    """
    fields = _fields(task)
    status = _status(fields)
    required = _required(fields)

    if required == 1:
        remaining = 0 if status == TaskStatus.DONE else 1
    elif fields.get("remaining_completions") is None and status == TaskStatus.DONE:
        remaining = 0
    else:
        remaining = min(max(_remaining(fields, required), 0), required)

    if status == TaskStatus.DONE and required > 1 and remaining > 0:
        status = TaskStatus.IN_PROGRESS

    return _diff(fields, status=status, required_completions=required, remaining_completions=remaining)


def update_required_completions(task: TaskLike, required_completions: int) -> dict[str, Any]:
    """Restart the completion cycle with a new required count.

    Raises:
        ValueError: If the count is not a positive integer
    """
    if isinstance(required_completions, bool) or not isinstance(required_completions, int) or required_completions < 1:
        msg = f"required_completions must be a positive integer, got {required_completions!r}"
        raise ValueError(msg)

    fields = _fields(task)
    status = _status(fields)
    if status == TaskStatus.DONE:
        status = TaskStatus.IN_PROGRESS
    return _diff(
        fields,
        status=status,
        required_completions=required_completions,
        remaining_completions=required_completions,
    )


def approve_volunteer_completion(task: TaskLike) -> dict[str, Any]:
    """Count one approved volunteer completion; DONE when none remain.

    Raises:
        ValueError: If the task is not a volunteer task
    """
    fields = _fields(task)
    if not _is_volunteer(fields):
        msg = f"Task {fields.get('id')} is not a volunteer task"
        raise ValueError(msg)

    required = _required(fields)
    remaining = max(min(_remaining(fields, required), required) - 1, 0)
    status = TaskStatus.DONE if remaining == 0 else TaskStatus.IN_PROGRESS
    return _diff(fields, status=status, remaining_completions=remaining)


async def apply_task_update(
    *,
    task_id: str,
    compute: Callable[[dict[str, Any]], dict[str, Any]],
    operation: str,
) -> dict[str, Any]:
    """Read a task, compute a diff and write it only if nobody wrote in between.

    ``compute`` gets the current record and returns the fields to change. A
    lost race re-reads the task and computes again, so concurrent requests
    each see the other's result.

    Raises:
        db_client.RecordNotFoundError: If the task does not exist
        db_client.DatabaseError: If the task kept changing on every attempt
    """
    for attempt in range(1, Constants.CONDITIONAL_WRITE_MAX_ATTEMPTS + 1):
        task = await db_client.get_record(collection="tasks", record_id=task_id)
        diff = compute(task)
        if not diff:
            return task

        won = await db_client.compare_and_set(
            collection="tasks",
            record_id=task_id,
            data={**task, **diff},
            expected_version=task["version"],
        )
        if won:
            return await db_client.get_record(collection="tasks", record_id=task_id)

        logger.debug("Task %s changed during %s (attempt %d), retrying", task_id, operation, attempt)

    msg = f"Task {task_id} changed during every {operation} attempt"
    raise db_client.DatabaseError(msg)


async def transition_status(*, task_id: str, status: TaskStatus | str) -> dict[str, Any]:
    """Apply a requested status change to a stored task."""
    with span("task_state_machine.transition_status"):
        requested = TaskStatus(status)
        updated = await apply_task_update(
            task_id=task_id,
            compute=lambda task: apply_status_change(task, requested),
            operation="status change",
        )

        logger.info(
            "Task %s status requested=%s now=%s remaining=%s",
            task_id,
            requested,
            updated.get("status"),
            updated.get("remaining_completions"),
        )
        return updated


async def transition_required_completions(*, task_id: str, required_completions: int) -> dict[str, Any]:
    """Change a stored task's required completions and restart its cycle."""
    with span("task_state_machine.transition_required_completions"):
        updated = await apply_task_update(
            task_id=task_id,
            compute=lambda task: update_required_completions(task, required_completions),
            operation="required completions change",
        )

        logger.info("Task %s required completions set to %d", task_id, required_completions)
        return updated


async def transition_volunteer_approval(*, task_id: str) -> dict[str, Any]:
    """Apply one approved volunteer completion to a stored task."""
    with span("task_state_machine.transition_volunteer_approval"):
        updated = await apply_task_update(
            task_id=task_id,
            compute=approve_volunteer_completion,
            operation="volunteer approval",
        )

        logger.info(
            "Task %s volunteer completion approved, remaining=%s",
            task_id,
            updated.get("remaining_completions"),
        )
        return updated
