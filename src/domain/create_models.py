"""Pydantic models for creating records in database."""

import re
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator, model_validator

from src.domain.task import Assignee, TaskPriority


class DueDateMode(StrEnum):
    """How a due date is derived from the event start."""

    EVENT_DAY = "event_day"
    OFFSET = "offset"


class TaskCreate(BaseModel):
    """Pydantic model for creating a task record.

    Exactly one due-date source is used: an explicit ``due_date``, else a
    ``due_mode`` with offset and time, else smart inference from the text.
    """

    title: str = Field(..., description="Task title")
    description: str = Field(default="", description="Detailed task description")
    priority: TaskPriority = Field(default=TaskPriority.NORMAL, description="Priority")
    due_date: str | None = Field(default=None, description="Explicit naive local due date (YYYY-MM-DDTHH:MM)")
    due_mode: DueDateMode | None = Field(default=None, description="Relative due-date mode")
    due_offset_days: int = Field(default=0, description="Days after (positive) or before (negative) the event")
    due_time: str = Field(default="09:00", description="Time of day for relative due dates (HH:MM)")
    required_completions: int = Field(default=1, description="Completions needed before DONE")
    assignees: list[Assignee] = Field(default_factory=list, description="Initial assignees")
    is_volunteer_task: bool = Field(default=False, description="Whether volunteers perform this task")
    volunteer_hours: float | None = Field(default=None, description="Estimated hours (volunteer tasks only)")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Titles are trimmed and must not be empty."""
        v = v.strip()
        if not v:
            raise ValueError("Task title must not be empty")
        return v

    @field_validator("required_completions")
    @classmethod
    def validate_required_completions(cls, v: int) -> int:
        """Completion count must be a positive integer."""
        if v < 1:
            raise ValueError("required_completions must be a positive integer")
        return v

    @field_validator("due_date")
    @classmethod
    def validate_due_date(cls, v: str | None) -> str | None:
        """Explicit due dates use the naive local format."""
        if v is None or not v.strip():
            return None
        if not re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}$", v.strip()):
            raise ValueError("due_date must look like YYYY-MM-DDTHH:MM")
        return v.strip()

    @model_validator(mode="after")
    def validate_volunteer_hours(self) -> "TaskCreate":
        """Volunteer tasks need positive hours; other tasks carry none."""
        if self.is_volunteer_task:
            if self.volunteer_hours is None or self.volunteer_hours <= 0:
                raise ValueError("volunteer_hours must be a positive number for volunteer tasks")
        else:
            self.volunteer_hours = None
        return self


class VolunteerRegistrationCreate(BaseModel):
    """Pydantic model for registering a volunteer to an event."""

    name: str = Field(..., description="Volunteer name")
    email: str | None = Field(default=None, description="Volunteer email")
    phone: str | None = Field(default=None, description="Volunteer phone")
    user_id: str | None = Field(default=None, description="User directory id, if registered")
    selected_tasks: list[str] = Field(default_factory=list, description="Volunteer task IDs the volunteer signs up for")

    @model_validator(mode="after")
    def validate_identity(self) -> "VolunteerRegistrationCreate":
        """A registration needs a name and some way to tell volunteers apart."""
        if not self.name.strip():
            raise ValueError("Volunteer name must not be empty")
        self.selected_tasks = list(dict.fromkeys(t.strip() for t in self.selected_tasks if t.strip()))
        return self
