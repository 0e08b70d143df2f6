"""Event domain models and enums."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class Recurrence(StrEnum):
    """How an event repeats."""

    NONE = "NONE"
    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"
    MONTHLY = "MONTHLY"


class Event(BaseModel):
    """Event data transfer object; its start time anchors task due dates."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Unique event ID from database")
    title: str = Field(default="", description="Event name")
    location: str = Field(default="", description="Where the event takes place")
    start_time: datetime | None = Field(default=None, description="Event start (anchor for relative due dates)")
    recurrence: Recurrence = Field(default=Recurrence.NONE, description="Repeat pattern")
    recurrence_end_date: datetime | None = Field(default=None, description="Last date the event repeats")
    volunteer_tasks_paused: bool = Field(default=False, description="Hide volunteer tasks from volunteers")
    team_tasks_paused: bool = Field(default=False, description="Hide team tasks from external consumers")
    needs_volunteers: bool = Field(default=True, description="Whether the event accepts volunteer registrations")
    volunteers_count: int | None = Field(default=None, ge=0, description="Volunteer limit (None or 0: unlimited)")
