"""Volunteer domain models."""

from pydantic import BaseModel, ConfigDict, Field


class VolunteerRegistration(BaseModel):
    """An explicit volunteer sign-up for an event."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Unique registration ID from database")
    event_id: str | None = Field(default=None, description="Event the volunteer registered for")
    name: str = Field(default="", description="Volunteer name")
    email: str | None = Field(default=None, description="Volunteer email")
    phone: str | None = Field(default=None, description="Volunteer phone")
    user_id: str | None = Field(default=None, description="User directory id, if registered")


class RosterEntry(BaseModel):
    """One merged volunteer in an event roster."""

    key: str = Field(..., description="Identity key the entry was merged on")
    name: str = Field(default="", description="Display name")
    email: str | None = Field(default=None, description="Normalized email")
    phone: str | None = Field(default=None, description="Best known phone")
    user_id: str | None = Field(default=None, description="User directory id")
    registration_id: str | None = Field(default=None, description="Registration record, when registered")
    task_ids: list[str] = Field(default_factory=list, description="Volunteer tasks the person is assigned to")


class VolunteerCompletion(BaseModel):
    """A volunteer's claim that they completed a task, pending approval."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Unique completion ID from database")
    email: str = Field(..., description="Volunteer email (lowercased)")
    name: str = Field(default="", description="Volunteer name")
    event_id: str | None = Field(default=None, description="Event of the task")
    task_id: str = Field(..., description="Completed task")
    task_title: str = Field(default="", description="Task title at completion time")
    volunteer_hours: float | None = Field(default=None, description="Hours credited for the task")
    completed_at: str = Field(..., description="When the volunteer marked it done (ISO format)")
    approved: bool = Field(default=False, description="Whether an organizer approved the completion")
    approved_at: str | None = Field(default=None, description="When it was approved (ISO format)")


class VolunteerHoursSummary(BaseModel):
    """Volunteer hours for one person across events."""

    email: str
    approved_hours: float
    pending_hours: float
    approved_count: int
    pending_count: int
