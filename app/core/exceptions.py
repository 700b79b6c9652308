"""Custom exceptions and FastAPI exception handlers.

Aggregation failures are all-or-nothing: any error raised while building a
dashboard snapshot surfaces as exactly one of these exceptions, and the
handlers below render it as an RFC 7807 problem response.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from app.core.logging import get_logger
from app.core.problem_details import (
    ERROR_TYPES,
    ProblemDetailResponse,
    problem_response,
)

logger = get_logger(__name__)


# =============================================================================
# Exception Classes
# =============================================================================


class AnalyticsError(Exception):
    """Base exception for application errors.

    Each subclass maps to an RFC 7807 problem type URI and an HTTP status.
    """

    error_type_uri: str = ERROR_TYPES["INTERNAL_ERROR"]

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application error.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error context.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    @property
    def title(self) -> str:
        """RFC 7807 title - short summary of problem type."""
        return self.code.replace("_", " ").title()


class NotFoundError(AnalyticsError):
    """Resource not found error.

    Use when a requested resource (account, aggregation run) does not exist.
    """

    error_type_uri: str = ERROR_TYPES["NOT_FOUND"]

    def __init__(
        self,
        message: str = "Resource not found",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details=details,
        )


class InvalidRangeError(AnalyticsError):
    """The requested period is unusable.

    Raised when the end date precedes the start date, or when the period is
    longer than the configured maximum.
    """

    error_type_uri: str = ERROR_TYPES["INVALID_RANGE"]

    def __init__(
        self,
        message: str = "Invalid date range",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="INVALID_RANGE",
            status_code=400,
            details=details,
        )


class DataFetchFailedError(AnalyticsError):
    """A read against one of the external datasets failed.

    The failing dataset is kept on ``dataset`` so the caller can tell the
    user which part of the dashboard could not be loaded.
    """

    error_type_uri: str = ERROR_TYPES["DATA_FETCH_FAILED"]

    def __init__(
        self,
        dataset: str,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.dataset = dataset
        super().__init__(
            message=message or f"Failed to read dataset '{dataset}'",
            code="DATA_FETCH_FAILED",
            status_code=502,
            details={"dataset": dataset, **(details or {})},
        )


class AggregationTimeoutError(AnalyticsError):
    """The aggregation did not finish within the caller-side timeout."""

    error_type_uri: str = ERROR_TYPES["AGGREGATION_TIMEOUT"]

    def __init__(
        self,
        message: str = "Dashboard aggregation timed out",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="AGGREGATION_TIMEOUT",
            status_code=504,
            details=details,
        )


# =============================================================================
# Exception Handlers (RFC 7807)
# =============================================================================


async def analytics_exception_handler(
    _request: Request,
    exc: AnalyticsError,
) -> ProblemDetailResponse:
    """Handle AnalyticsError exceptions with RFC 7807 Problem Details.

    Args:
        _request: FastAPI request object.
        exc: The raised exception.

    Returns:
        RFC 7807 Problem Detail response.
    """
    logger.error(
        "app.error_handled",
        error=exc.message,
        error_type=type(exc).__name__,
        error_code=exc.code,
        status_code=exc.status_code,
        details=exc.details,
    )

    return problem_response(
        status=exc.status_code,
        title=exc.title,
        detail=exc.message,
        error_code=exc.code,
        dataset=getattr(exc, "dataset", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> ProblemDetailResponse:
    """Handle request validation errors with RFC 7807 Problem Details.

    Args:
        request: FastAPI request object.
        exc: Pydantic validation error.

    Returns:
        RFC 7807 Problem Detail response with field-level errors.
    """
    field_errors: list[dict[str, str]] = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field_path = ".".join(str(part) for part in loc if part != "body")
        field_errors.append(
            {
                "field": field_path,
                "message": str(error.get("msg", "Validation failed")),
                "type": str(error.get("type", "unknown")),
            }
        )

    logger.warning(
        "app.validation_error",
        error_count=len(field_errors),
        path=str(request.url.path),
        fields=[e["field"] for e in field_errors],
    )

    return problem_response(
        status=422,
        title="Validation Error",
        detail=f"Request validation failed with {len(field_errors)} error(s). "
        "Check the 'errors' field for details.",
        error_code="VALIDATION_ERROR",
        errors=field_errors,
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> ProblemDetailResponse:
    """Handle unexpected exceptions with RFC 7807 Problem Details.

    Args:
        request: FastAPI request object.
        exc: The raised exception.

    Returns:
        RFC 7807 Problem Detail response.
    """
    logger.error(
        "app.unhandled_error",
        error=str(exc),
        error_type=type(exc).__name__,
        path=str(request.url.path),
        exc_info=True,
    )

    return problem_response(
        status=500,
        title="Internal Server Error",
        detail="An unexpected error occurred. Please try again later or "
        "contact support with the request_id.",
        error_code="INTERNAL_ERROR",
    )


# =============================================================================
# Handler Registration
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers with the FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.add_exception_handler(AnalyticsError, analytics_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler,  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
