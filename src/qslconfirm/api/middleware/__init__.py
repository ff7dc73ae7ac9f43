"""QSL Confirm API middleware components.

This module provides middleware for:
- Request ID tracking for log correlation
- Consistent error response formatting
"""

from qslconfirm.api.middleware.errors import (
    APIError,
    AuthenticationError,
    ErrorHandlerMiddleware,
    NotFoundError,
    build_error_response,
)
from qslconfirm.api.middleware.request_id import RequestIDMiddleware, get_request_id

__all__ = [
    "APIError",
    "AuthenticationError",
    "ErrorHandlerMiddleware",
    "NotFoundError",
    "RequestIDMiddleware",
    "build_error_response",
    "get_request_id",
]
