"""Task domain models and enums."""

from enum import StrEnum

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskStatus(StrEnum):
    """Task lifecycle status."""

    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    STUCK = "STUCK"


class TaskPriority(StrEnum):
    """Task priority shown in lists and notifications."""

    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class TaskAudience(StrEnum):
    """Which task set a listing is for."""

    VOLUNTEER = "volunteer"
    TEAM = "team"
    ALL = "all"


class Assignee(BaseModel):
    """A person attached to a task (team member or volunteer)."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(default="", description="Display name")
    user_id: str | None = Field(default=None, description="User directory id, if registered")
    email: str | None = Field(default=None, description="Email address (lowercased when sanitized)")
    phone: str | None = Field(default=None, description="Phone number as entered")


class Task(BaseModel):
    """Task data transfer object.

    Stored records may hold inconsistent completion counters from older
    writes; those are corrected by the repair step on load, so no range
    constraints are enforced here.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Unique task ID from database")
    event_id: str | None = Field(default=None, description="Owning event ID")
    title: str = Field(default="", description="Task title")
    description: str = Field(default="", description="Detailed task description")
    status: TaskStatus = Field(default=TaskStatus.TODO, description="Current lifecycle status")
    priority: TaskPriority = Field(default=TaskPriority.NORMAL, description="Priority")
    due_date: str | None = Field(default=None, description="Naive local due date (YYYY-MM-DDTHH:MM)")
    required_completions: int = Field(default=1, description="Completions needed before DONE")
    remaining_completions: int | None = Field(default=None, description="Completions still outstanding")
    assignees: list[Assignee] = Field(default_factory=list, description="Ordered, deduplicated assignees")
    assignee: str | None = Field(default=None, description="Legacy: first assignee name")
    assignee_id: str | None = Field(default=None, description="Legacy: first assignee user id or email")
    is_volunteer_task: bool = Field(default=False, description="Whether volunteers perform this task")
    volunteer_hours: float | None = Field(default=None, description="Estimated volunteer hours")
    last_message_time: str | None = Field(default=None, description="Timestamp of the last chat message")
    last_message_by: str | None = Field(default=None, description="Author of the last chat message")
    read_by: list[str] = Field(default_factory=list, description="Users who read the last message")

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        """Stored statuses are matched case-insensitively; anything unknown reads as TODO."""
        if value is None or isinstance(value, TaskStatus):
            return value or TaskStatus.TODO
        text = str(value).strip().upper()
        return text if text in TaskStatus.__members__ else TaskStatus.TODO

    @property
    def counts_as_volunteer_task(self) -> bool:
        """Volunteer-facing tasks are flagged explicitly or carry volunteer hours."""
        return self.is_volunteer_task or self.volunteer_hours is not None
