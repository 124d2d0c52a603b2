"""
Error Handling Middleware

Provides consistent, informative error responses across the API.

Features:
- Standardized error response format
- Correlation IDs for log tracking
- Sanitized responses (hides internal details in production)
- Custom exception classes for the scheduling error taxonomy

Usage:
    from pattern_recall.middleware.error_handling import setup_error_handling, NotFoundError

    setup_error_handling(app, debug=settings.DEBUG)

    raise NotFoundError("No active card for this question")

Error taxonomy:
    - NotFoundError: submit/skip/suspend target has no card record
    - GradingError: grading collaborator failed; card left untouched
    - PersistenceError: card commit failed; computed state discarded
    - ReplenishError: content draw failed; swallowed by the replenisher
    - ValidationError: invalid learner configuration input

Caveat: BaseHTTPMiddleware cannot catch exceptions raised after the
response body starts streaming (not an issue for JSON APIs).
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


# =============================================================================
# Error Response Schema
# =============================================================================


class ErrorResponse(BaseModel):
    """Standardized error response."""

    error: str  # Error code (e.g., "not_found")
    message: str  # Human-readable message
    error_id: str  # For log correlation
    details: Optional[dict] = None
    timestamp: datetime


# =============================================================================
# Custom Exceptions
# =============================================================================


class ServiceError(Exception):
    """
    Base exception for service errors.

    Provides consistent error handling with:
    - HTTP status code
    - Error code for categorization
    - Optional details for debugging

    Example:
        raise ServiceError("Database connection failed", status_code=503)
    """

    status_code: int = 500
    error_code: str = "service_error"

    def __init__(
        self,
        message: str,
        status_code: int = None,
        error_code: str = None,
        details: dict = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code
        if error_code:
            self.error_code = error_code
        self.details = details


class NotFoundError(ServiceError):
    """
    Resource not found error.

    Raised when a submit/skip/suspend target has no card record. Cards are
    never created implicitly: the learner has to draw the card first.
    """

    status_code = 404
    error_code = "not_found"


class GradingError(ServiceError):
    """
    Grading collaborator error.

    Raised when the answer could not be scored (provider error, timeout,
    unparseable output). Retryable. The card record is not modified.
    """

    status_code = 503
    error_code = "grading_failed"


class PersistenceError(ServiceError):
    """
    Persistence collaborator error.

    Raised when committing a scheduling result fails.
    """

    status_code = 500
    error_code = "persistence_failed"


class ReplenishError(ServiceError):
    """
    Content draw error.

    Raised when a new problem could not be drawn for a learner. The queue
    replenisher handles it; it never reaches the API.
    """

    status_code = 500
    error_code = "replenish_failed"


class ValidationError(ServiceError):
    """
    Data validation error.

    Raised when input data fails validation.
    """

    status_code = 422
    error_code = "validation_error"


# =============================================================================
# Error Handling Middleware
# =============================================================================


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware.

    - Catches unhandled exceptions
    - Logs with correlation ID
    - Returns consistent error format
    - Hides internal details in production
    """

    def __init__(self, app, debug: bool = False):
        """
        Initialize middleware.

        Args:
            app: FastAPI/Starlette application
            debug: Whether to include stack traces in responses
        """
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        """Process request and handle any errors."""
        error_id = str(uuid4())[:8]

        try:
            response = await call_next(request)
            return response

        except HTTPException:
            # Let FastAPI handle HTTP exceptions
            raise

        except ServiceError as e:
            logger.error(
                f"[{error_id}] {e.error_code}: {e.message}",
                extra={
                    "error_id": error_id,
                    "error_code": e.error_code,
                    "path": request.url.path,
                    "method": request.method,
                    "details": e.details,
                },
            )
            return service_error_response(e, error_id, debug=self.debug)

        except Exception as e:
            logger.error(
                f"[{error_id}] Unhandled error: {type(e).__name__}: {e}",
                extra={
                    "error_id": error_id,
                    "path": request.url.path,
                    "method": request.method,
                    "traceback": traceback.format_exc(),
                },
            )

            content = {
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "error_id": error_id,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }

            if self.debug:
                content["details"] = {
                    "exception": type(e).__name__,
                    "message": str(e),
                    "traceback": traceback.format_exc(),
                }

            return JSONResponse(status_code=500, content=content)


# =============================================================================
# Setup Function
# =============================================================================


def setup_error_handling(app: FastAPI, debug: bool = False) -> None:
    """
    Configure error handling on the FastAPI app.

    Registers an exception handler for ServiceError (so route-level raises
    produce the standard body) and the catch-all middleware.

    Args:
        app: FastAPI application instance
        debug: Whether to include stack traces in responses
    """

    async def _handle_service_error(request: Request, exc: ServiceError):
        error_id = str(uuid4())[:8]
        logger.error(
            f"[{error_id}] {exc.error_code}: {exc.message}",
            extra={
                "error_id": error_id,
                "error_code": exc.error_code,
                "path": request.url.path,
                "method": request.method,
            },
        )
        return service_error_response(exc, error_id, debug=debug)

    app.add_exception_handler(ServiceError, _handle_service_error)
    app.add_middleware(ErrorHandlingMiddleware, debug=debug)
    logger.info(f"Error handling middleware enabled (debug={debug})")


# =============================================================================
# Helper Functions
# =============================================================================


def service_error_response(
    error: ServiceError,
    error_id: str,
    debug: bool = False,
) -> JSONResponse:
    """Render a ServiceError in the standardized error format."""
    body = ErrorResponse(
        error=error.error_code,
        message=error.message,
        error_id=error_id,
        details=error.details if debug else None,
        timestamp=datetime.now(timezone.utc),
    )
    return JSONResponse(status_code=error.status_code, content=body.model_dump(mode="json"))
