"""Agent instance for due-date offset suggestions.

The agent answers with a bare integer: how many days before (negative) or
after (positive) the event a task should be done.
"""

import logging
from datetime import datetime

from pydantic_ai import Agent
from pydantic_ai.models.openrouter import OpenRouterModel, OpenRouterModelSettings
from pydantic_ai.providers.openrouter import OpenRouterProvider

from src.core.config import settings


logger = logging.getLogger(__name__)


INSTRUCTIONS = (
    "אתה מומחה בתכנון זמנים לאירועים. החזר רק מספר שלם שמייצג כמה ימים לפני (שלילי) "
    "או אחרי (חיובי) האירוע המשימה צריכה להתבצע. אל תוסיף שום טקסט נוסף!"
)


def build_prompt(
    *,
    task_title: str,
    task_description: str = "",
    event_title: str = "",
    event_date: datetime | None = None,
) -> str:
    """User prompt describing the event, the task and the expected answer."""
    event_date_text = event_date.strftime("%d.%m.%Y") if event_date else "לא מוגדר"
    return f"""
תפקידך להציע כמה ימים לפני או אחרי האירוע משימה צריכה להתבצע.

פרטי האירוע:
- שם האירוע: {event_title or "ללא שם"}
- תאריך האירוע: {event_date_text}

המשימה החדשה:
- כותרת: {task_title}
- תיאור: {task_description or "אין"}

הנחיות זמן לדוגמה:
- תכנון/עיצוב: -14 עד -21
- הזמנת ציוד/אולם: -21 עד -28
- קידום ושיווק: -7 עד -14
- תיאום טכני: -7
- בדיקות אחרונות: -2 עד -3
- במהלך האירוע: 0
- דיווח/סיכום: +1 עד +3

החזר רק מספר שלם, לדוגמה: -7 או 0 או +2. אם לא בטוח, העדף -7.
""".strip()


class _AgentState:
    """Singleton state for agent instance."""

    instance: Agent[None, str] | None = None


def _create_agent() -> Agent[None, str]:
    """Create the agent instance (called once, on first use)."""
    api_key = settings.require_credential("openrouter_api_key", "OpenRouter API key")
    provider = OpenRouterProvider(api_key=api_key)

    model = OpenRouterModel(
        model_name=settings.model_id,
        provider=provider,
        settings=OpenRouterModelSettings(temperature=0.3, max_tokens=10),
    )
    return Agent(model=model, instructions=INSTRUCTIONS, retries=0)


def get_deadline_agent() -> Agent[None, str]:
    """Get or create the deadline agent.

    Raises:
        ValueError: If the OpenRouter API key is not configured
    """
    if _AgentState.instance is None:
        _AgentState.instance = _create_agent()
        logger.info("Deadline agent created", extra={"model_id": settings.model_id})
    return _AgentState.instance
