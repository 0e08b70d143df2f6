"""eventdesk - event, task and volunteer coordination with WhatsApp notifications."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.core.config import Constants, settings
from src.core.db_client import close_connection, init_db, list_records
from src.core.errors import ErrorCode
from src.core.logging import configure_logfire, instrument_app
from src.core.redis_client import redis_client
from src.interface.api_router import router as api_router
from src.services.notification_service import dispatcher


logger = logging.getLogger(__name__)


async def check_redis_connectivity() -> None:
    """Verify Redis connectivity (optional service).

    Only checks if Redis is configured. Logs a warning if unavailable; the
    send throttle then falls back to process-local spacing.
    """
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    try:
        result = await redis_client.ping()
        if result:
            logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
        else:
            logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})
    except Exception as e:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable", "error": str(e)})


def log_optional_integrations() -> None:
    """Log which optional integrations are configured; none of them is required."""
    logger.info(
        "startup_validation",
        extra={
            "whatsapp_env_credentials": bool(settings.whatsapp_id_instance and settings.whatsapp_api_token),
            "openrouter": bool(settings.openrouter_api_key),
            "redis": bool(settings.redis_url),
        },
    )


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    # Configure logging first so validation logs are captured
    configure_logfire()

    await init_db()
    logger.info("Database initialized", extra={"db_path": settings.sqlite_db_path})

    log_optional_integrations()
    await check_redis_connectivity()
    yield
    # Shutdown
    await dispatcher.wait_idle()
    await redis_client.close()
    await close_connection()


app = FastAPI(
    title="eventdesk",
    description="Event, task and volunteer coordination with WhatsApp notifications",
    version="0.1.0",
    lifespan=lifespan,
)

# Trace requests and agent runs with Logfire
instrument_app(app)

# Register routers
app.include_router(api_router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report request body validation failures as 400 with the error taxonomy."""
    messages = "; ".join(str(err.get("msg", "")) for err in exc.errors())
    return JSONResponse(
        status_code=Constants.HTTP_BAD_REQUEST,
        content={
            "detail": {
                "code": ErrorCode.ERR_VALIDATION,
                "message": messages or "Invalid input.",
                "suggestion": "Fix the highlighted fields and submit again.",
            }
        },
    )


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    try:
        await list_records(collection="events", per_page=1)
        database = "ok"
    except Exception as e:
        logger.error("health_check_database_failed", extra={"error": str(e)})
        database = "unavailable"

    overall = "healthy" if database == "ok" else "degraded"
    return JSONResponse(
        content={
            "status": overall,
            "database": database,
            "redis": redis_client.get_health_status(),
            "pending_notifications": dispatcher.pending_count,
        },
        status_code=Constants.HTTP_OK if overall == "healthy" else 503,
    )
