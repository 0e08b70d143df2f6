"""Agent instances for WhatsApp message formatting and event summaries."""

import logging
from collections.abc import Iterable
from typing import Any

from pydantic_ai import Agent
from pydantic_ai.models.openrouter import OpenRouterModel, OpenRouterModelSettings
from pydantic_ai.providers.openrouter import OpenRouterProvider

from src.core.config import settings
from src.domain.event import Event
from src.domain.volunteer import RosterEntry


logger = logging.getLogger(__name__)


FORMAT_INSTRUCTIONS = (
    "You format Hebrew WhatsApp group messages for an event team. "
    "Return only the formatted message, with no preamble or closing remarks."
)

SUMMARY_INSTRUCTIONS = (
    "אתה עוזר מקצועי שמסכם אירועים בעברית. "
    "הסיכומים שלך מקיפים ומפורטים ולא מפספסים אף פרט."
)


def build_format_prompt(text: str) -> str:
    """Formatting rules followed by the message to format."""
    return f"""
Format the following Hebrew text as an engaging WhatsApp group message.

Rules:
1. Keep the original words exactly. Only add emojis and asterisks for bold.
2. Bold (*text*) only the key details such as names, dates, times and places. Bold at least one of them.
3. Add a few tasteful emojis without overloading the message.
4. Leave out any URLs or links.
5. Keep the text right-to-left friendly.

Text:
"{text}"
""".strip()


def _task_lines(tasks: Iterable[dict[str, Any]]) -> list[str]:
    lines = []
    for number, task in enumerate(tasks, start=1):
        assignees = ", ".join(a.get("name", "") for a in task.get("assignees") or []) or "לא שויך"
        lines.append(
            f"משימה {number}: {task.get('title', '')}\n"
            f"- תיאור: {task.get('description') or 'אין'}\n"
            f"- סטטוס: {task.get('status', '')}\n"
            f"- עדיפות: {task.get('priority') or 'NORMAL'}\n"
            f"- אחראים: {assignees}\n"
            f"- דדליין: {task.get('due_date') or 'לא הוגדר'}\n"
            f"- השלמות שנותרו: {task.get('remaining_completions')}"
        )
    return lines


def _volunteer_lines(roster: Iterable[RosterEntry]) -> list[str]:
    return [
        f"מתנדב {number}: {entry.name or entry.key}\n"
        f"- אימייל: {entry.email or ''}\n"
        f"- טלפון: {entry.phone or ''}\n"
        f"- משימות: {len(entry.task_ids)}"
        for number, entry in enumerate(roster, start=1)
    ]


def build_summary_prompt(event: Event, tasks: list[dict[str, Any]], roster: list[RosterEntry]) -> str:
    """Everything known about an event, laid out for a full Hebrew summary."""
    start = event.start_time.strftime("%d.%m.%Y %H:%M") if event.start_time else "לא הוגדר"
    sections = [
        "צור סיכום מקיף ומובנה של האירוע הבא. כלול כל משימה עם האחראים, הסטטוס והמועד, "
        "והדגש מי עושה מה.",
        "=== פרטי האירוע ===\n"
        f"שם: {event.title or 'ללא כותרת'}\n"
        f"מיקום: {event.location or 'לא הוגדר'}\n"
        f"תאריך התחלה: {start}\n"
        f"חזרתיות: {event.recurrence}",
        f"=== משימות ({len(tasks)}) ===",
        *_task_lines(tasks),
        f"=== מתנדבים ({len(roster)}) ===",
        *_volunteer_lines(roster),
    ]
    return "\n\n".join(sections)


class _AgentState:
    """Singleton state for the writing agents."""

    formatter: Agent[None, str] | None = None
    summarizer: Agent[None, str] | None = None


def _create_agent(instructions: str, model_settings: OpenRouterModelSettings) -> Agent[None, str]:
    api_key = settings.require_credential("openrouter_api_key", "OpenRouter API key")
    model = OpenRouterModel(
        model_name=settings.model_id,
        provider=OpenRouterProvider(api_key=api_key),
        settings=model_settings,
    )
    return Agent(model=model, instructions=instructions, retries=0)


def get_format_agent() -> Agent[None, str]:
    """Get or create the message formatting agent.

    Raises:
        ValueError: If the OpenRouter API key is not configured
    """
    if _AgentState.formatter is None:
        _AgentState.formatter = _create_agent(FORMAT_INSTRUCTIONS, OpenRouterModelSettings(temperature=0.8))
        logger.info("Format agent created", extra={"model_id": settings.model_id})
    return _AgentState.formatter


def get_summary_agent() -> Agent[None, str]:
    """Get or create the event summary agent.

    Raises:
        ValueError: If the OpenRouter API key is not configured
    """
    if _AgentState.summarizer is None:
        _AgentState.summarizer = _create_agent(
            SUMMARY_INSTRUCTIONS, OpenRouterModelSettings(temperature=0.3, max_tokens=4000)
        )
        logger.info("Summary agent created", extra={"model_id": settings.model_id})
    return _AgentState.summarizer
