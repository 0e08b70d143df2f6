"""In-process change notifications for document store collections.

Writers call publish() after a successful write; subscribers (for example the
volunteer roster) recompute their derived views when a collection they
depend on changes.
"""

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable


logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, str], Awaitable[None]]

_listeners: dict[str, list[ChangeListener]] = defaultdict(list)


def subscribe(*, collections: list[str], listener: ChangeListener) -> Callable[[], None]:
    """Register a listener for writes to the given collections.

    Returns:
        A callable that removes the listener again
    """
    for collection in collections:
        _listeners[collection].append(listener)

    def _unsubscribe() -> None:
        for collection in collections:
            if listener in _listeners[collection]:
                _listeners[collection].remove(listener)

    return _unsubscribe


async def publish(*, collection: str, record_id: str) -> None:
    """Notify every listener of a write; listener failures are logged, never raised."""
    for listener in list(_listeners.get(collection, ())):
        try:
            await listener(collection, record_id)
        except Exception:
            logger.exception("change_listener_failed", extra={"collection": collection, "record_id": record_id})


def clear() -> None:
    """Drop all listeners."""
    _listeners.clear()
