"""Logfire setup and structured logging helpers for eventdesk.

Modules log through ``logging.getLogger(__name__)``. Once configure_logfire()
has run, the root logger forwards every record to Logfire, so ``extra``
fields show up as span attributes next to the request and agent traces.
"""

import logging

import logfire
from fastapi import FastAPI

from src.core.config import settings


SERVICE_NAME = "eventdesk"
SERVICE_VERSION = "0.1.0"

logger = logging.getLogger(__name__)


def _attach_logfire_handler(level: int) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    if not any(isinstance(handler, logfire.LogfireLoggingHandler) for handler in root.handlers):
        root.addHandler(logfire.LogfireLoggingHandler())


def configure_logfire() -> None:
    """Set up Logfire and route standard logging into it.

    Without a token nothing leaves the process. Calling it again (each app
    startup does) keeps a single Logfire handler on the root logger.
    """
    logfire.configure(
        token=settings.logfire_token,
        service_name=SERVICE_NAME,
        service_version=SERVICE_VERSION,
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )
    _attach_logfire_handler(resolve_level(settings.log_level))
    logger.info("Logfire configured", extra={"environment": settings.environment, "level": settings.log_level})


def instrument_app(app: FastAPI) -> None:
    """Trace HTTP requests and agent runs."""
    logfire.instrument_fastapi(app)
    logfire.instrument_pydantic_ai()
    logger.info("Request and agent tracing enabled")


def span(name: str, **attributes: object) -> logfire.LogfireSpan:
    """Span around a service operation, e.g. ``with span("task_service.create_task"):``."""
    return logfire.span(name, **attributes)


def resolve_level(level: str | int) -> int:
    """Numeric level for a name like ``"warning"``; unknown names mean INFO."""
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(level.strip().upper(), logging.INFO)


def log_with_context(logger: logging.Logger, level: str, message: str, **context: object) -> None:
    """Log ``message`` with ``context`` attached as record attributes.

    log_with_context(logger, "error", "request_failed", code="ERR_DATABASE")
    """
    logger.log(resolve_level(level), message, extra=context)
