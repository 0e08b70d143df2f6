"""Update models for database operations."""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from src.domain.create_models import DueDateMode
from src.domain.task import Assignee, TaskStatus


class StatusUpdate(BaseModel):
    """Requested status change for a task."""

    status: TaskStatus


class RequiredCompletionsUpdate(BaseModel):
    """New completion count; restarts the completion cycle."""

    required_completions: int

    @field_validator("required_completions")
    @classmethod
    def validate_required_completions(cls, v: int) -> int:
        """Completion count must be a positive integer."""
        if v < 1:
            raise ValueError("required_completions must be a positive integer")
        return v


class AssigneeToggle(BaseModel):
    """Add the assignee if absent, remove it if present."""

    assignee: Assignee
    notify: bool = Field(default=True, description="Send a WhatsApp message when the assignee is added")


class VolunteerCompletionRequest(BaseModel):
    """A volunteer marking a task done."""

    email: str
    name: str = ""


class BroadcastRequest(BaseModel):
    """Free-text WhatsApp message to an event's volunteers."""

    message: str

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        """Broadcasts need text."""
        if not v.strip():
            raise ValueError("Broadcast message must not be empty")
        return v.strip()


class DueDatePreviewRequest(BaseModel):
    """Preview of a relative due date for the task form."""

    mode: DueDateMode = DueDateMode.OFFSET
    offset_days: int = 0
    time: str = "09:00"
    event_start: datetime | None = None


class DeadlineSuggestionRequest(BaseModel):
    """Input for the AI deadline suggestion."""

    task_title: str
    task_description: str = ""
    event_title: str = ""
    event_date: datetime | None = None


class FormatMessageRequest(BaseModel):
    """Input for WhatsApp message formatting."""

    text: str


class EventSummaryRequest(BaseModel):
    """Input for an AI event summary."""

    event_id: str
