"""Domain models and DTOs."""

from src.domain.create_models import DueDateMode, TaskCreate, VolunteerRegistrationCreate
from src.domain.event import Event, Recurrence
from src.domain.task import Assignee, Task, TaskAudience, TaskPriority, TaskStatus
from src.domain.update_models import (
    AssigneeToggle,
    BroadcastRequest,
    DeadlineSuggestionRequest,
    DueDatePreviewRequest,
    RequiredCompletionsUpdate,
    StatusUpdate,
    VolunteerCompletionRequest,
)
from src.domain.volunteer import RosterEntry, VolunteerCompletion, VolunteerHoursSummary, VolunteerRegistration


__all__ = [
    "Assignee",
    "AssigneeToggle",
    "BroadcastRequest",
    "DeadlineSuggestionRequest",
    "DueDateMode",
    "DueDatePreviewRequest",
    "Event",
    "Recurrence",
    "RequiredCompletionsUpdate",
    "RosterEntry",
    "StatusUpdate",
    "Task",
    "TaskAudience",
    "TaskCreate",
    "TaskPriority",
    "TaskStatus",
    "VolunteerCompletion",
    "VolunteerCompletionRequest",
    "VolunteerHoursSummary",
    "VolunteerRegistration",
    "VolunteerRegistrationCreate",
]
