"""Notification service: a rate-limited WhatsApp send queue.

A single worker drains a FIFO of pending messages. Every message waits for
the global send throttle, resolves a phone through the phone directory and
is posted to Green API. Nothing in here raises into the caller; failures are
logged and recorded as NotificationResult entries.
"""

import asyncio
import logging
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from src.core import message_templates
from src.core.assignee_set import AssigneeLike, identity_key, sanitize_assignees
from src.core.config import settings
from src.core.logging import span
from src.core.rate_limiter import GlobalSendThrottle, send_throttle
from src.domain.event import Event
from src.domain.task import Assignee, Task
from src.interface import whatsapp_sender
from src.models.service_models import NotificationResult
from src.services import phone_directory


logger = logging.getLogger(__name__)


RESULT_HISTORY_SIZE = 200


@dataclass(frozen=True)
class PendingNotification:
    """One queued message for one recipient."""

    scope: str
    recipient: Assignee
    recipient_key: str
    task: Task | None = None
    event: Event | None = None
    message: str | None = None

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.scope, self.recipient_key)

    @property
    def event_id(self) -> str | None:
        if self.event is not None:
            return self.event.id
        if self.task is not None:
            return self.task.event_id
        return None


def _as_task(task: Task | Mapping[str, Any]) -> Task:
    if isinstance(task, Task):
        return task
    return Task.model_validate(dict(task))


def _as_event(event: Event | Mapping[str, Any] | None) -> Event | None:
    if event is None or isinstance(event, Event):
        return event
    return Event.model_validate(dict(event))


class NotificationDispatcher:
    """Deduplicating FIFO of outbound messages drained by one worker task."""

    def __init__(self, *, throttle: GlobalSendThrottle | None = None) -> None:
        self._throttle = throttle
        self._queue: deque[PendingNotification] = deque()
        self._in_flight: set[tuple[str, str]] = set()
        self._running = False
        self._worker: asyncio.Task | None = None
        self.results: deque[NotificationResult] = deque(maxlen=RESULT_HISTORY_SIZE)

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def is_running(self) -> bool:
        return self._running

    def _queued_keys(self) -> set[tuple[str, str]]:
        return {item.dedup_key for item in self._queue} | self._in_flight

    def _add(self, items: Iterable[PendingNotification]) -> int:
        known = self._queued_keys()
        added = 0
        for item in items:
            if item.dedup_key in known:
                logger.debug("Skipping duplicate notification %s", item.dedup_key)
                continue
            known.add(item.dedup_key)
            self._queue.append(item)
            added += 1
        if added:
            self._ensure_worker()
        return added

    def enqueue(
        self,
        assignees: Iterable[AssigneeLike] | None,
        task: Task | Mapping[str, Any],
        event: Event | Mapping[str, Any] | None = None,
    ) -> int:
        """Queue a task notification for each assignee.

        Returns:
            Number of newly queued messages (duplicates of pending or
            in-flight messages are not counted)
        """
        try:
            task_model = _as_task(task)
            event_model = _as_event(event)
            items = [
                PendingNotification(
                    scope=f"task:{task_model.id}",
                    recipient=person,
                    recipient_key=identity_key(person),
                    task=task_model,
                    event=event_model,
                )
                for person in sanitize_assignees(assignees)
            ]
            return self._add(items)
        except Exception:
            logger.exception("Failed to enqueue task notifications")
            return 0

    def broadcast(
        self,
        assignees: Iterable[AssigneeLike] | None,
        message: str,
        *,
        event: Event | Mapping[str, Any] | None = None,
    ) -> int:
        """Queue a prebuilt message for each recipient.

        Returns:
            Number of newly queued messages
        """
        try:
            event_model = _as_event(event)
            scope = f"broadcast:{event_model.id if event_model else ''}:{hash(message)}"
            items = [
                PendingNotification(
                    scope=scope,
                    recipient=person,
                    recipient_key=identity_key(person),
                    event=event_model,
                    message=message,
                )
                for person in sanitize_assignees(assignees)
            ]
            return self._add(items)
        except Exception:
            logger.exception("Failed to enqueue broadcast")
            return 0

    def _ensure_worker(self) -> None:
        if self._running:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; %d notifications stay queued", len(self._queue))
            return
        self._running = True
        self._worker = loop.create_task(self._drain())

    async def _drain(self) -> None:
        try:
            while self._queue:
                item = self._queue.popleft()
                self._in_flight.add(item.dedup_key)
                try:
                    result = await self._deliver(item)
                    self.results.append(result)
                except Exception:
                    logger.exception("Notification delivery failed for %s", item.recipient_key)
                finally:
                    self._in_flight.discard(item.dedup_key)
        finally:
            self._running = False
            # Items queued while the loop was exiting need one more pass
            if self._queue:
                self._ensure_worker()

    def _compose(self, item: PendingNotification) -> str:
        if item.message is not None:
            return message_templates.broadcast(message=item.message, event=item.event)
        if item.task is None:
            msg = "Task notification without a task"
            raise ValueError(msg)
        return message_templates.task_assigned(
            recipient_name=item.recipient.name,
            task=item.task,
            event=item.event,
            base_url=settings.app_base_url,
        )

    async def _deliver(self, item: PendingNotification) -> NotificationResult:
        with span("notification_service.deliver"):
            task_id = item.task.id if item.task else None

            config = await whatsapp_sender.load_whatsapp_config()
            if config is None or not config.notify_on_mention:
                logger.info("WhatsApp sending disabled; skipping notification to %s", item.recipient_key)
                return NotificationResult(
                    task_id=task_id,
                    recipient_key=item.recipient_key,
                    success=False,
                    skipped=True,
                    error="WhatsApp not configured",
                )

            throttle = self._throttle or send_throttle
            await throttle.acquire()

            phone = await phone_directory.resolve_phone(item.recipient, event_id=item.event_id)
            normalized = whatsapp_sender.normalize_phone(phone)
            if not normalized:
                logger.info("No phone for %s; notification skipped", item.recipient_key)
                return NotificationResult(
                    task_id=task_id,
                    recipient_key=item.recipient_key,
                    success=False,
                    skipped=True,
                    error="No phone number",
                )

            send_result = await whatsapp_sender.send_text_message(
                to_phone=normalized,
                text=self._compose(item),
                config=config,
            )
            if send_result.success:
                logger.info("Notification sent to %s (task=%s)", normalized, task_id)
            else:
                logger.error("Notification to %s failed: %s", normalized, send_result.error)

            return NotificationResult(
                task_id=task_id,
                recipient_key=item.recipient_key,
                phone=normalized,
                success=send_result.success,
                error=send_result.error,
            )

    async def wait_idle(self) -> None:
        """Wait until the queue is drained and no worker is running."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)


# Global dispatcher instance
dispatcher = NotificationDispatcher()
