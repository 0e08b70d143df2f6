from src.services import (
    deadline_service,
    notification_service,
    task_service,
    volunteer_service,
)


__all__ = [
    "deadline_service",
    "notification_service",
    "task_service",
    "volunteer_service",
]
