"""Deadline service: AI-suggested due-date offsets relative to the event day."""

import logging
import re
from datetime import datetime

from src.agents.deadline_agent import build_prompt, get_deadline_agent
from src.core.config import Constants, settings
from src.core.logging import span
from src.models.service_models import DeadlineSuggestion


logger = logging.getLogger(__name__)


FALLBACK_REASONING = "ברירת מחדל - שבוע לפני האירוע"


def clamp_offset(offset_days: int) -> int:
    """Keep an offset within the supported window around the event."""
    return max(Constants.DEADLINE_OFFSET_MIN_DAYS, min(Constants.DEADLINE_OFFSET_MAX_DAYS, offset_days))


def parse_offset(reply: str) -> int | None:
    """First signed integer in a model reply, or None."""
    match = re.search(r"([-+]?\d+)", reply or "")
    return int(match.group(1)) if match else None


def describe_offset(offset_days: int) -> str:
    """Human-readable Hebrew description of an offset."""
    if offset_days == 0:
        return "ביום האירוע"
    direction = "לפני" if offset_days < 0 else "אחרי"
    return f"{abs(offset_days)} ימים {direction} האירוע"


def _fallback() -> DeadlineSuggestion:
    return DeadlineSuggestion(
        offset_days=Constants.DEADLINE_OFFSET_DEFAULT_DAYS,
        reasoning=FALLBACK_REASONING,
        fallback=True,
    )


async def suggest_deadline_offset(
    *,
    task_title: str,
    task_description: str = "",
    event_title: str = "",
    event_date: datetime | None = None,
) -> DeadlineSuggestion:
    """Ask the model how many days from the event a task should be due.

    Falls back to a week before the event when no API key is configured, the
    model call fails or the reply holds no number.

    Raises:
        ValueError: If the task title is empty
    """
    with span("deadline_service.suggest_deadline_offset"):
        if not task_title or not task_title.strip():
            msg = "Task title is required"
            raise ValueError(msg)

        if not settings.openrouter_api_key:
            logger.warning("OpenRouter API key missing; using default deadline offset")
            return _fallback()

        prompt = build_prompt(
            task_title=task_title.strip(),
            task_description=task_description,
            event_title=event_title,
            event_date=event_date,
        )
        try:
            result = await get_deadline_agent().run(prompt)
        except Exception as e:
            logger.error("Deadline suggestion failed", extra={"error": str(e)})
            return _fallback()

        offset = parse_offset(str(result.output))
        if offset is None:
            logger.warning("Deadline reply had no number: %r", result.output)
            return _fallback()

        offset = clamp_offset(offset)
        return DeadlineSuggestion(offset_days=offset, reasoning=describe_offset(offset))
