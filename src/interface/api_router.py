"""HTTP endpoints for events, tasks and volunteers."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from src.core.date_math import compute_due_date_from_mode
from src.core.errors import classify_error_with_response
from src.core.logging import log_with_context
from src.domain.create_models import TaskCreate, VolunteerRegistrationCreate
from src.domain.task import TaskAudience
from src.domain.update_models import (
    AssigneeToggle,
    BroadcastRequest,
    DeadlineSuggestionRequest,
    DueDatePreviewRequest,
    EventSummaryRequest,
    FormatMessageRequest,
    RequiredCompletionsUpdate,
    StatusUpdate,
    VolunteerCompletionRequest,
)
from src.domain.volunteer import RosterEntry, VolunteerHoursSummary
from src.models.service_models import DeadlineSuggestion, DueDatePreview, EventSummary, FormattedMessage
from src.services import deadline_service, task_service, volunteer_service, writing_service


router = APIRouter(tags=["events"])
logger = logging.getLogger(__name__)


def _http_error(exc: Exception) -> HTTPException:
    """Map a service exception to an HTTP error with a structured body."""
    response = classify_error_with_response(exc)
    if response.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        log_with_context(logger, "error", "request_failed", error=str(exc), code=response.code)
    return HTTPException(
        status_code=response.status_code,
        detail={"code": response.code, "message": response.message, "suggestion": response.suggestion},
    )


@router.get("/events/{event_id}")
async def get_event(event_id: str) -> dict[str, Any]:
    """Event with its next occurrence resolved."""
    try:
        return await task_service.get_event_view(event_id=event_id)
    except Exception as e:
        raise _http_error(e) from e


@router.post("/events/{event_id}/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(event_id: str, payload: TaskCreate) -> dict[str, Any]:
    try:
        return await task_service.create_task(event_id=event_id, task=payload)
    except Exception as e:
        raise _http_error(e) from e


@router.get("/events/{event_id}/tasks")
async def list_tasks(event_id: str, audience: TaskAudience = Query(default=TaskAudience.ALL)) -> list[dict[str, Any]]:
    """Tasks of an event; volunteer and team listings honor the event's pause flags."""
    try:
        return await task_service.list_visible_tasks(event_id=event_id, audience=audience)
    except Exception as e:
        raise _http_error(e) from e


@router.get("/tasks/{task_id}")
async def get_task(task_id: str) -> dict[str, Any]:
    try:
        return await task_service.get_task(task_id=task_id)
    except Exception as e:
        raise _http_error(e) from e


@router.patch("/tasks/{task_id}/status")
async def update_status(task_id: str, payload: StatusUpdate) -> dict[str, Any]:
    """Request a status; DONE on multi-completion tasks counts one completion."""
    try:
        return await task_service.change_status(task_id=task_id, status=payload.status)
    except Exception as e:
        raise _http_error(e) from e


@router.put("/tasks/{task_id}/required-completions")
async def update_required_completions(task_id: str, payload: RequiredCompletionsUpdate) -> dict[str, Any]:
    try:
        return await task_service.change_required_completions(
            task_id=task_id, required_completions=payload.required_completions
        )
    except Exception as e:
        raise _http_error(e) from e


@router.post("/tasks/{task_id}/assignees/toggle")
async def toggle_assignee(task_id: str, payload: AssigneeToggle) -> dict[str, Any]:
    try:
        return await task_service.toggle_task_assignee(
            task_id=task_id, assignee=payload.assignee, notify=payload.notify
        )
    except Exception as e:
        raise _http_error(e) from e


@router.post("/tasks/{task_id}/volunteer-completions", status_code=status.HTTP_201_CREATED)
async def record_volunteer_completion(task_id: str, payload: VolunteerCompletionRequest) -> dict[str, Any]:
    try:
        return await volunteer_service.record_volunteer_completion(
            task_id=task_id, email=payload.email, name=payload.name
        )
    except Exception as e:
        raise _http_error(e) from e


@router.delete("/tasks/{task_id}/volunteer-completions")
async def remove_volunteer_completion(task_id: str, email: str = Query(...)) -> dict[str, int]:
    try:
        removed = await volunteer_service.remove_volunteer_completion(task_id=task_id, email=email)
    except Exception as e:
        raise _http_error(e) from e
    return {"removed": removed}


@router.post("/volunteer-completions/{completion_id}/approve")
async def approve_volunteer_completion(completion_id: str) -> dict[str, Any]:
    try:
        return await volunteer_service.approve_volunteer_completion(completion_id=completion_id)
    except Exception as e:
        raise _http_error(e) from e


@router.get("/volunteers/{email}/hours")
async def volunteer_hours(email: str) -> VolunteerHoursSummary:
    try:
        return await volunteer_service.volunteer_hours_summary(email=email)
    except Exception as e:
        raise _http_error(e) from e


@router.get("/events/{event_id}/volunteers")
async def list_volunteers(event_id: str) -> list[RosterEntry]:
    """Merged volunteer roster of an event."""
    try:
        return await volunteer_service.get_event_roster(event_id=event_id)
    except Exception as e:
        raise _http_error(e) from e


@router.post("/events/{event_id}/volunteers", status_code=status.HTTP_201_CREATED)
async def register_volunteer(event_id: str, payload: VolunteerRegistrationCreate) -> dict[str, Any]:
    try:
        return await volunteer_service.register_volunteer(event_id=event_id, registration=payload)
    except Exception as e:
        raise _http_error(e) from e


@router.post("/events/{event_id}/broadcast", status_code=status.HTTP_202_ACCEPTED)
async def broadcast(event_id: str, payload: BroadcastRequest) -> dict[str, int]:
    """Queue a WhatsApp message to the event's volunteers; delivery is asynchronous."""
    try:
        queued = await volunteer_service.broadcast_to_event_volunteers(event_id=event_id, message=payload.message)
    except Exception as e:
        raise _http_error(e) from e
    return {"queued": queued}


@router.post("/due-dates/preview")
async def preview_due_date(payload: DueDatePreviewRequest) -> DueDatePreview:
    try:
        due_date = compute_due_date_from_mode(
            payload.mode, payload.offset_days, payload.time, anchor=payload.event_start
        )
    except Exception as e:
        raise _http_error(e) from e
    return DueDatePreview(due_date=due_date)


@router.post("/ai/suggest-deadline")
async def suggest_deadline(payload: DeadlineSuggestionRequest) -> DeadlineSuggestion:
    try:
        return await deadline_service.suggest_deadline_offset(
            task_title=payload.task_title,
            task_description=payload.task_description,
            event_title=payload.event_title,
            event_date=payload.event_date,
        )
    except Exception as e:
        raise _http_error(e) from e


@router.post("/ai/format-whatsapp")
async def format_whatsapp(payload: FormatMessageRequest) -> FormattedMessage:
    try:
        return await writing_service.format_whatsapp_message(text=payload.text)
    except Exception as e:
        raise _http_error(e) from e


@router.post("/ai/summarize-event")
async def summarize_event(payload: EventSummaryRequest) -> EventSummary:
    try:
        return await writing_service.summarize_event(event_id=payload.event_id)
    except Exception as e:
        raise _http_error(e) from e
