"""QSL Confirm API service.

FastAPI application providing:
- Public token inspection and confirmation for card recipients
- Admin endpoints for issuance, revocation and the confirmation log
- Health endpoints for container orchestration

This module provides the app factory pattern for creating configured
FastAPI instances suitable for testing and production deployment.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from qslconfirm.api.middleware import ErrorHandlerMiddleware, RequestIDMiddleware
from qslconfirm.api.routers import admin_router, confirm_router, health_router
from qslconfirm.core.settings import get_settings
from qslconfirm.services.signer import TokenSigner

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from qslconfirm.core.config import Settings

logger = logging.getLogger(__name__)

API_TITLE = "QSL Confirm API"
API_DESCRIPTION = """
Confirmation of received QSL cards via single-use signed tokens.

## Namespaces

- **/api/confirm** - Token inspection and confirmation (public)
- **/api/admin/** - Token issuance, revocation and logs (X-Admin-Key)
- **/api/health/** - Database readiness

## Documentation

- OpenAPI spec: `/api/openapi.json`
- Swagger UI: `/api/docs`
- ReDoc: `/api/redoc`
"""


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:  # noqa: ARG001
    yield
    from qslconfirm.db import close_database

    await close_database()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    The token signer is built here, so a missing or short secret stops the
    application before it serves a request.

    Args:
        settings: Optional Settings instance. If not provided, settings are
            loaded from the environment.

    Returns:
        Configured FastAPI application ready to serve requests.

    Example:
        app = create_app()

        # For testing
        test_settings = Settings(token=TokenSettings(secret="x" * 32))
        app = create_app(test_settings)
    """
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=settings.app_version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=_lifespan,
    )

    app.state.settings = settings
    app.state.signer = TokenSigner.from_settings(settings.token)

    _add_middleware(app, settings)
    _include_routers(app)

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Liveness check for container orchestration."""
        return {"status": "healthy"}

    logger.info(
        "QSL Confirm API application created (version=%s, environment=%s)",
        settings.app_version,
        settings.environment.value,
    )
    return app


def _add_middleware(app: FastAPI, settings: Settings) -> None:
    """Add middleware to the application.

    Starlette wraps middleware in reverse order of registration, so the
    request ID middleware added last runs outermost and its ID is visible
    to the error handler.
    """
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)

    allowed_origins = ["http://localhost:3000", "http://localhost:8000"]
    if settings.is_production:
        allowed_origins = [settings.token.base_url]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )


def _include_routers(app: FastAPI) -> None:
    app.include_router(confirm_router, prefix="/api")
    app.include_router(admin_router, prefix="/api")
    app.include_router(health_router, prefix="/api")
