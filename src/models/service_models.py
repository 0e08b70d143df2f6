"""Pydantic models for service layer return types.

These models provide type safety at service boundaries, converting database
dictionaries into typed objects with validation.
"""

from pydantic import BaseModel, Field


class NotificationResult(BaseModel):
    """Outcome of one dispatched WhatsApp message."""

    task_id: str | None = None
    recipient_key: str
    phone: str | None = None
    success: bool
    skipped: bool = False
    error: str | None = None


class DeadlineSuggestion(BaseModel):
    """Suggested due-date offset relative to the event day."""

    offset_days: int = Field(..., description="Days after (positive) or before (negative) the event")
    reasoning: str = Field(default="", description="Short human-readable explanation")
    fallback: bool = Field(default=False, description="True when the default offset was used")


class DueDatePreview(BaseModel):
    """Computed due date for a relative due-date form."""

    due_date: str


class FormattedMessage(BaseModel):
    """WhatsApp-ready message text."""

    text: str
    fallback: bool = Field(default=False, description="True when the text was returned unformatted")


class EventSummary(BaseModel):
    """Written summary of an event, its tasks and volunteers."""

    event_id: str
    event_title: str = ""
    summary: str
    fallback: bool = Field(default=False, description="True when the summary was built without the model")
