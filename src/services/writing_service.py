"""Writing service: WhatsApp message formatting and event summaries."""

import logging
import re
from collections import Counter

from src.agents.writing_agent import build_format_prompt, build_summary_prompt, get_format_agent, get_summary_agent
from src.core.config import settings
from src.core.logging import span
from src.domain.event import Event
from src.domain.task import TaskStatus
from src.domain.volunteer import RosterEntry
from src.models.service_models import EventSummary, FormattedMessage
from src.services import task_service, volunteer_service


logger = logging.getLogger(__name__)

_URL_PATTERN = re.compile(r"(?:https?://|www\.)\S+", re.IGNORECASE)

STATUS_LABELS = {
    TaskStatus.DONE: "הושלמו",
    TaskStatus.IN_PROGRESS: "בתהליך",
    TaskStatus.TODO: "ממתינות",
    TaskStatus.STUCK: "תקועות",
}


def strip_urls(text: str) -> str:
    """Remove links and the spaces they leave behind, line by line."""
    lines = (re.sub(r"[ \t]{2,}", " ", _URL_PATTERN.sub("", line)).strip() for line in text.splitlines())
    return "\n".join(lines).strip()


async def format_whatsapp_message(*, text: str) -> FormattedMessage:
    """Dress a message up with bold and emojis for a WhatsApp group.

    Links are removed first. The plain text is returned (``fallback``) when
    no API key is configured, the model call fails or it answers with
    nothing.

    Raises:
        ValueError: If the text is empty
    """
    with span("writing_service.format_whatsapp_message"):
        if not text or not text.strip():
            msg = "Text is required"
            raise ValueError(msg)

        plain = strip_urls(text)
        if not settings.openrouter_api_key:
            logger.warning("OpenRouter API key missing; sending the message unformatted")
            return FormattedMessage(text=plain, fallback=True)

        try:
            result = await get_format_agent().run(build_format_prompt(plain))
        except Exception as e:
            logger.error("Message formatting failed", extra={"error": str(e)})
            return FormattedMessage(text=plain, fallback=True)

        formatted = strip_urls(str(result.output or ""))
        if not formatted:
            return FormattedMessage(text=plain, fallback=True)
        return FormattedMessage(text=formatted)


def local_summary(event: Event, tasks: list[dict], roster: list[RosterEntry]) -> str:
    """Short Hebrew summary built without the model."""
    counts = Counter(str(task.get("status")) for task in tasks)
    breakdown = ", ".join(
        f"{counts[status]} {label}" for status, label in STATUS_LABELS.items() if counts[status]
    )
    lines = [f"סיכום האירוע: {event.title or 'ללא כותרת'}"]
    if event.start_time:
        lines.append(f"מועד: {event.start_time.strftime('%d.%m.%Y %H:%M')}")
    if event.location:
        lines.append(f"מיקום: {event.location}")
    lines.append(f"משימות: {len(tasks)}" + (f" ({breakdown})" if breakdown else ""))
    lines.append(f"מתנדבים: {len(roster)}")
    lines.extend(f"- {entry.name or entry.key}" for entry in roster)
    return "\n".join(lines)


async def summarize_event(*, event_id: str) -> EventSummary:
    """Summarize an event with its tasks and volunteer roster.

    Without an API key, or when the model fails or answers with nothing, a
    short summary is built locally (``fallback``).

    Raises:
        ValueError: If the event id is empty
        db_client.RecordNotFoundError: If the event does not exist
    """
    with span("writing_service.summarize_event"):
        if not event_id or not event_id.strip():
            msg = "Event ID is required"
            raise ValueError(msg)

        event = await task_service.get_event(event_id=event_id)
        tasks = await task_service.list_event_tasks(event_id=event_id)
        roster = await volunteer_service.get_event_roster(event_id=event_id)

        def fallback() -> EventSummary:
            return EventSummary(
                event_id=event_id,
                event_title=event.title,
                summary=local_summary(event, tasks, roster),
                fallback=True,
            )

        if not settings.openrouter_api_key:
            logger.warning("OpenRouter API key missing; summarizing event %s locally", event_id)
            return fallback()

        try:
            result = await get_summary_agent().run(build_summary_prompt(event, tasks, roster))
        except Exception as e:
            logger.error("Event summary failed", extra={"event_id": event_id, "error": str(e)})
            return fallback()

        summary = str(result.output or "").strip()
        if not summary:
            return fallback()
        return EventSummary(event_id=event_id, event_title=event.title, summary=summary)
