"""Error classification utilities for API responses and soft-failing I/O."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ValidationError

from src.core.config import Constants


class ErrorCategory(Enum):
    """Categories of errors that can occur in eventdesk operations."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    AUTHENTICATION_FAILED = "authentication_failed"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCode:
    """Error codes for specific error conditions."""

    # Input errors
    ERR_VALIDATION = "ERR_VALIDATION"
    ERR_INVALID_STATE_TRANSITION = "ERR_INVALID_STATE_TRANSITION"

    # Lookup errors
    ERR_NOT_FOUND = "ERR_NOT_FOUND"

    # Service errors
    ERR_RATE_LIMIT_EXCEEDED = "ERR_RATE_LIMIT_EXCEEDED"
    ERR_AUTHENTICATION_FAILED = "ERR_AUTHENTICATION_FAILED"
    ERR_NETWORK_ERROR = "ERR_NETWORK_ERROR"

    # Generic errors
    ERR_UNKNOWN = "ERR_UNKNOWN"


class ErrorResponse(BaseModel):
    """Structured error response with user-friendly messaging."""

    code: str
    message: str
    suggestion: str
    severity: ErrorSeverity
    status_code: int = Constants.HTTP_SERVER_ERROR


_ERROR_PATTERNS: dict[
    Literal["rate_limit", "auth", "network"],
    dict[str, list[str] | set[str]],
] = {
    "rate_limit": {
        "phrases": [
            "rate limit",
            "too many requests",
            "throttled",
            "429",
        ],
        "exception_types": set(),
    },
    "auth": {
        "phrases": [
            "authentication failed",
            "unauthorized",
            "invalid token",
            "api key",
            "401",
        ],
        "exception_types": {"AuthenticationError", "PermissionError"},
    },
    "network": {
        "phrases": [
            "connection",
            "timeout",
            "network",
            "503",
            "502",
            "504",
            "unreachable",
        ],
        "exception_types": {"ConnectionError", "TimeoutError", "ConnectError", "ReadTimeout"},
    },
}


def _match_error_pattern(
    *,
    error_str: str,
    exception_type: str,
    pattern_type: Literal["rate_limit", "auth", "network"],
) -> bool:
    """Return True if the error matches the configured pattern type."""
    patterns = _ERROR_PATTERNS[pattern_type]
    return any(phrase in error_str for phrase in patterns["phrases"]) or exception_type in patterns["exception_types"]


def classify_error(exception: Exception) -> ErrorCategory:
    """Return the category of an exception raised by a service call."""
    return _classify(exception)[0]


def _classify(exception: Exception) -> tuple[ErrorCategory, str]:
    error_str = str(exception).lower()
    exception_type = type(exception).__name__

    if isinstance(exception, KeyError) or "not found" in error_str:
        return ErrorCategory.NOT_FOUND, error_str
    if isinstance(exception, ValueError) and ("cannot" in error_str or "invalid state" in error_str):
        return ErrorCategory.INVALID_STATE_TRANSITION, error_str
    if isinstance(exception, ValidationError | ValueError):
        return ErrorCategory.VALIDATION, error_str
    if _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type="rate_limit"):
        return ErrorCategory.RATE_LIMIT_EXCEEDED, error_str
    if _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type="auth"):
        return ErrorCategory.AUTHENTICATION_FAILED, error_str
    if _match_error_pattern(error_str=error_str, exception_type=exception_type, pattern_type="network"):
        return ErrorCategory.NETWORK_ERROR, error_str
    return ErrorCategory.UNKNOWN, error_str


def classify_error_with_response(exception: Exception) -> ErrorResponse:  # noqa: PLR0911
    """Classify an error and return a structured response with recovery suggestions.

    Args:
        exception: The exception raised during execution

    Returns:
        ErrorResponse with code, message, suggestion, severity and HTTP status
    """
    category, _ = _classify(exception)

    if category is ErrorCategory.NOT_FOUND:
        return ErrorResponse(
            code=ErrorCode.ERR_NOT_FOUND,
            message="The requested record was not found.",
            suggestion="Check the id and try again.",
            severity=ErrorSeverity.LOW,
            status_code=Constants.HTTP_NOT_FOUND,
        )

    if category is ErrorCategory.INVALID_STATE_TRANSITION:
        return ErrorResponse(
            code=ErrorCode.ERR_INVALID_STATE_TRANSITION,
            message="This action cannot be performed in the current state.",
            suggestion="Reload the task and try again.",
            severity=ErrorSeverity.LOW,
            status_code=Constants.HTTP_BAD_REQUEST,
        )

    if category is ErrorCategory.VALIDATION:
        return ErrorResponse(
            code=ErrorCode.ERR_VALIDATION,
            message=str(exception) or "Invalid input.",
            suggestion="Fix the highlighted fields and submit again.",
            severity=ErrorSeverity.LOW,
            status_code=Constants.HTTP_BAD_REQUEST,
        )

    if category is ErrorCategory.RATE_LIMIT_EXCEEDED:
        return ErrorResponse(
            code=ErrorCode.ERR_RATE_LIMIT_EXCEEDED,
            message="Too many requests.",
            suggestion="Please wait a moment and try again.",
            severity=ErrorSeverity.MEDIUM,
        )

    if category is ErrorCategory.AUTHENTICATION_FAILED:
        return ErrorResponse(
            code=ErrorCode.ERR_AUTHENTICATION_FAILED,
            message="Service authentication failed.",
            suggestion="Check the integration credentials in settings.",
            severity=ErrorSeverity.CRITICAL,
        )

    if category is ErrorCategory.NETWORK_ERROR:
        return ErrorResponse(
            code=ErrorCode.ERR_NETWORK_ERROR,
            message="Network error occurred.",
            suggestion="Please check your connection and try again.",
            severity=ErrorSeverity.MEDIUM,
        )

    return ErrorResponse(
        code=ErrorCode.ERR_UNKNOWN,
        message="An unexpected error occurred.",
        suggestion="Please try again later. If the problem persists, contact support.",
        severity=ErrorSeverity.MEDIUM,
    )
