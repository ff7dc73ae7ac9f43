"""Error handling middleware for consistent JSON error responses.

All errors are converted to one JSON structure:
- error: Machine-readable error code
- message: Human-readable description
- detail: Optional additional information
- request_id: Correlation ID for debugging

Token protocol errors raised by the services map directly onto this
structure using their own code and HTTP status.
"""

import logging
from collections.abc import Callable
from typing import Any

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from qslconfirm.api.middleware.request_id import get_request_id
from qslconfirm.services.errors import TokenProtocolError

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API-layer errors with structured details."""

    def __init__(
        self,
        error: str,
        message: str,
        status_code: int = 400,
        detail: dict[str, Any] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            error: Machine-readable error code (e.g., "not_found").
            message: Human-readable error description.
            status_code: HTTP status code to return.
            detail: Optional additional details.
        """
        self.error = error
        self.message = message
        self.status_code = status_code
        self.detail = detail
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found error (404)."""

    def __init__(
        self, resource: str, identifier: str, detail: dict[str, Any] | None = None
    ) -> None:
        super().__init__(
            error="not_found",
            message=f"{resource} not found: {identifier}",
            status_code=404,
            detail=detail,
        )


class AuthenticationError(APIError):
    """Authentication error (401)."""

    def __init__(
        self, message: str = "Authentication required", detail: dict[str, Any] | None = None
    ) -> None:
        super().__init__(
            error="unauthorized",
            message=message,
            status_code=401,
            detail=detail,
        )


def build_error_response(
    error: str,
    message: str,
    status_code: int,
    detail: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build a standardized error response.

    Args:
        error: Machine-readable error code.
        message: Human-readable description.
        status_code: HTTP status code.
        detail: Optional additional details.

    Returns:
        JSONResponse with consistent error structure.
    """
    body: dict[str, Any] = {
        "error": error,
        "message": message,
    }

    request_id = get_request_id()
    if request_id:
        body["request_id"] = request_id

    if detail:
        body["detail"] = detail

    return JSONResponse(status_code=status_code, content=body)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware that catches exceptions and returns consistent JSON errors.

    Handles:
    - TokenProtocolError: issuance/confirmation failures from the services
    - APIError and subclasses: API-layer errors
    - HTTPException: FastAPI's built-in HTTP errors
    - ValidationError: Pydantic validation failures
    - OperationalError: database unreachable (503)
    - Generic exceptions: unexpected errors (logged, returns 500)
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        try:
            return await call_next(request)
        except TokenProtocolError as exc:
            logger.info(
                "Token protocol error: %s",
                exc.code,
                extra={"path": request.url.path, "status_code": exc.status_code},
            )
            return build_error_response(
                error=exc.code,
                message=exc.message,
                status_code=exc.status_code,
                detail=exc.to_detail(),
            )
        except APIError as exc:
            return build_error_response(
                error=exc.error,
                message=exc.message,
                status_code=exc.status_code,
                detail=exc.detail,
            )
        except HTTPException as exc:
            return build_error_response(
                error="http_error",
                message=str(exc.detail),
                status_code=exc.status_code,
            )
        except ValidationError as exc:
            return build_error_response(
                error="validation_error",
                message="Request validation failed",
                status_code=422,
                detail={"errors": exc.errors()},
            )
        except OperationalError:
            logger.exception(
                "Database unavailable while processing request: %s %s",
                request.method,
                request.url.path,
            )
            return build_error_response(
                error="database_unavailable",
                message="Database is unavailable",
                status_code=503,
            )
        except Exception:
            logger.exception(
                "Unexpected error processing request: %s %s",
                request.method,
                request.url.path,
            )
            return build_error_response(
                error="internal_error",
                message="An internal error occurred",
                status_code=500,
            )
