"""Due-date and recurrence utilities.

All date-times handled here are naive local time. Timezone-aware inputs are
converted to local time and stripped of their tzinfo first, and every
function takes an optional ``now`` so callers and tests control the clock.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta

from dateutil.relativedelta import relativedelta

from src.core.config import Constants
from src.domain.create_models import DueDateMode
from src.domain.event import Recurrence


DUE_DATE_FORMAT = "%Y-%m-%dT%H:%M"


def to_local_naive(value: datetime) -> datetime:
    """Drop tzinfo after converting an aware datetime to local time."""
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def format_due_date(value: datetime) -> str:
    """Format as a naive local due date string (no timezone suffix)."""
    return to_local_naive(value).strftime(DUE_DATE_FORMAT)


def parse_due_date(value: str | None) -> datetime | None:
    """Parse a stored due date; returns None for empty or unparsable values."""
    if not value:
        return None
    try:
        return to_local_naive(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def parse_time_of_day(time_str: str | None, *, default: str = Constants.DEFAULT_DUE_TIME) -> time:
    """Parse HH:MM, falling back to ``default`` on anything malformed."""
    for candidate in (time_str, default):
        if not candidate:
            continue
        parts = candidate.strip().split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            continue
        hour, minute = int(parts[0]), int(parts[1])
        if 0 <= hour <= 23 and 0 <= minute <= 59:
            return time(hour, minute)
    return time(9, 0)


def _advance(candidate: datetime, recurrence: Recurrence) -> datetime:
    if recurrence == Recurrence.WEEKLY:
        return candidate + timedelta(days=Constants.WEEKLY_INTERVAL_DAYS)
    if recurrence == Recurrence.BIWEEKLY:
        return candidate + timedelta(days=Constants.BIWEEKLY_INTERVAL_DAYS)
    if recurrence == Recurrence.MONTHLY:
        return candidate + relativedelta(months=1)
    return candidate


def compute_next_occurrence(
    base_date: datetime | None,
    recurrence: Recurrence | str,
    recurrence_end: datetime | None = None,
    *,
    now: datetime | None = None,
) -> datetime | None:
    """Advance a repeating event's date to its next occurrence at or after now.

    Advancing stops after RECURRENCE_MAX_ITERATIONS steps even if the
    candidate is still in the past. A candidate beyond ``recurrence_end`` is
    clamped to the end date only while the end date itself is not past;
    otherwise the future candidate is kept.
    """
    if not isinstance(base_date, datetime):
        return base_date
    recurrence = Recurrence(recurrence)
    if recurrence == Recurrence.NONE:
        return base_date

    current = to_local_naive(now or datetime.now())
    candidate = to_local_naive(base_date)
    guard = 0
    while candidate < current and guard < Constants.RECURRENCE_MAX_ITERATIONS:
        candidate = _advance(candidate, recurrence)
        guard += 1

    if recurrence_end is not None:
        end = to_local_naive(recurrence_end)
        if candidate > end and end >= current:
            candidate = end

    return candidate


def compute_due_date_from_mode(
    mode: DueDateMode | str,
    offset_days: int,
    time_str: str | None,
    *,
    anchor: datetime | None = None,
    now: datetime | None = None,
) -> str:
    """Due date relative to the event day.

    ``event_day`` ignores the offset; ``offset`` shifts by whole calendar days
    (negative is before the event). The time of day comes from ``time_str``.
    Without an event start the current time is the anchor.
    """
    mode = DueDateMode(mode)
    days = 0 if mode == DueDateMode.EVENT_DAY else int(offset_days)
    base = to_local_naive(anchor or now or datetime.now())
    result = datetime.combine(base.date(), parse_time_of_day(time_str)) + timedelta(days=days)
    return format_due_date(result)


@dataclass(frozen=True)
class DueDateRule:
    """One bucket of the smart due-date policy: keywords and how to place the date."""

    name: str
    keywords: tuple[str, ...]
    place: Callable[[datetime, bool], datetime]

    def matches(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)


def _days_at(days: int, hour: int, minute: int = 0) -> Callable[[datetime, bool], datetime]:
    def place(anchor: datetime, _anchor_time_known: bool) -> datetime:
        return (anchor + timedelta(days=days)).replace(hour=hour, minute=minute, second=0, microsecond=0)

    return place


def _hours_before(hours: int) -> Callable[[datetime, bool], datetime]:
    def place(anchor: datetime, _anchor_time_known: bool) -> datetime:
        return anchor - timedelta(hours=hours)

    return place


def _at_anchor(anchor: datetime, anchor_time_known: bool) -> datetime:
    if anchor_time_known:
        return anchor
    return anchor.replace(hour=Constants.DEFAULT_ANCHOR_HOUR, minute=0, second=0, microsecond=0)


# Checked in order; the first rule whose keywords appear in the task text wins.
DUE_DATE_RULES: tuple[DueDateRule, ...] = (
    DueDateRule(
        name="marketing",
        keywords=("שיווק", "פרסום", "קידום", "פוסט", "מודעה", "אינסטגרם", "פייסבוק",
                  "marketing", "promo", "publicity", "social media", "flyer"),
        place=_days_at(-5, 12),
    ),
    DueDateRule(
        name="volunteers",
        keywords=("מתנדב", "גיוס", "volunteer", "recruit"),
        place=_days_at(-3, 11),
    ),
    DueDateRule(
        name="logistics",
        keywords=("לוגיסטיקה", "הקמה", "הקמת", "ציוד", "סידור", "הובלה", "שולחנות", "כיסאות",
                  "logistics", "setup", "set up", "equipment", "venue"),
        place=_hours_before(6),
    ),
    DueDateRule(
        name="reminders",
        keywords=("תזכורת", "להזכיר", "reminder", "remind"),
        place=_hours_before(4),
    ),
    DueDateRule(
        name="billing",
        keywords=("חשבונית", "חשבוניות", "תשלום", "חיוב", "invoice", "billing", "payment"),
        place=_days_at(2, 10),
    ),
    DueDateRule(
        name="summary",
        keywords=("סיכום", "דוח", 'דו"ח', "summary", "report", "recap"),
        place=_days_at(1, 9, 30),
    ),
)

DEFAULT_DUE_DATE_RULE = DueDateRule(name="default", keywords=(), place=_at_anchor)


def match_due_date_rule(title: str, description: str = "") -> DueDateRule:
    """Return the first rule matching the task text, or the default rule."""
    text = f"{title or ''} {description or ''}".lower()
    for rule in DUE_DATE_RULES:
        if rule.matches(text):
            return rule
    return DEFAULT_DUE_DATE_RULE


def infer_smart_due_date(
    title: str,
    description: str = "",
    event_start: datetime | None = None,
    *,
    now: datetime | None = None,
) -> datetime:
    """Pick a default due date from the task text and the event start.

    Without an event start the anchor is 48 hours from now with an unknown
    time of day. A result already in the past moves to two hours from now.
    """
    current = to_local_naive(now or datetime.now())
    if event_start is not None:
        anchor = to_local_naive(event_start)
        anchor_time_known = True
    else:
        anchor = current + timedelta(hours=Constants.SMART_DUE_FALLBACK_HOURS)
        anchor_time_known = False

    candidate = match_due_date_rule(title, description).place(anchor, anchor_time_known)
    if candidate < current:
        candidate = current + timedelta(hours=Constants.SMART_DUE_PAST_PUSH_HOURS)
    return candidate
