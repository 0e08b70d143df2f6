"""Centralized message templates for WhatsApp notifications.

All user-facing message strings are defined here so wording can be changed
in one place. Messages are Hebrew, matching the organization's volunteers.
"""

from src.domain.event import Event
from src.domain.task import Task, TaskPriority


PRIORITY_LABELS = {
    TaskPriority.LOW: "נמוכה",
    TaskPriority.NORMAL: "רגילה",
    TaskPriority.HIGH: "גבוהה",
    TaskPriority.CRITICAL: "דחופה",
}


def _format_due(due_date: str | None) -> str:
    """Render ``YYYY-MM-DDTHH:MM`` as ``DD/MM/YYYY HH:MM``."""
    if not due_date:
        return ""
    date_part, _, time_part = due_date.partition("T")
    pieces = date_part.split("-")
    if len(pieces) != 3:
        return due_date
    year, month, day = pieces
    rendered = f"{day}/{month}/{year}"
    return f"{rendered} {time_part[:5]}" if time_part else rendered


def task_assigned(
    *,
    recipient_name: str,
    task: Task,
    event: Event | None = None,
    base_url: str = "",
) -> str:
    """Notification for a person newly assigned to a task.

    Lines whose value is missing are left out.
    """
    base = base_url.rstrip("/")
    lines = [
        f"שלום {recipient_name} \U0001f44b" if recipient_name else "שלום \U0001f44b",
        f"שובצת למשימה: *{task.title}*",
        f"\U0001f4c5 אירוע: {event.title}" if event and event.title else "",
        f"⏰ תאריך יעד: {_format_due(task.due_date)}" if task.due_date else "",
        f"⚡ עדיפות: {PRIORITY_LABELS.get(task.priority, task.priority)}",
        f"\U0001f4dd {task.description.strip()}" if task.description.strip() else "",
        f"\U0001f517 למשימה: {base}/tasks/{task.id}" if base else "",
        f"\U0001f517 לאירוע: {base}/events/{event.id}" if base and event else "",
    ]
    return "\n".join(line for line in lines if line)


def broadcast(*, message: str, event: Event | None = None) -> str:
    """Free-text broadcast, prefixed with the event name when known."""
    if event and event.title:
        return f"\U0001f4e2 {event.title}\n\n{message.strip()}"
    return message.strip()
