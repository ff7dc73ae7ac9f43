"""FastAPI dependencies shared by the routers.

Services are built per request on top of the request's database session;
the signer is built once per application so a bad secret stops startup.
"""

from __future__ import annotations

import hmac
import ipaddress
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: TC002 - resolved by FastAPI at runtime

from qslconfirm.api.middleware.errors import APIError, AuthenticationError
from qslconfirm.core.config import Settings  # noqa: TC001 - resolved by FastAPI at runtime
from qslconfirm.core.settings import get_settings
from qslconfirm.services.audit_log import ActorContext, ConfirmationLogWriter
from qslconfirm.services.confirmation import ConfirmationService
from qslconfirm.services.errors import TokenProtocolError
from qslconfirm.services.issuer import TokenIssuer
from qslconfirm.services.signer import TokenSigner
from qslconfirm.services.store import SQLTokenStore, TokenStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

ADMIN_KEY_HEADER = "X-Admin-Key"
ADMIN_ACTOR = "admin-api-key"


# -----------------------------------------------------------------------------
# Database session
# -----------------------------------------------------------------------------


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Get database session.

    Uses the application's async session factory.
    """
    from qslconfirm.db import get_async_session

    async with get_async_session() as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


@asynccontextmanager
async def keep_attempt_log(db: AsyncSession) -> AsyncIterator[None]:
    """Commit the unit of work, including when a token protocol error is raised.

    Services write the confirmation log entry before raising, and that
    entry must survive the failed attempt. Any other exception leaves the
    transaction to be rolled back by the session dependency.
    """
    try:
        yield
    except TokenProtocolError:
        await db.commit()
        raise
    await db.commit()


# -----------------------------------------------------------------------------
# Settings and services
# -----------------------------------------------------------------------------


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with, else the cached environment settings."""
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


AppSettings = Annotated[Settings, Depends(get_app_settings)]


def get_signer(request: Request, settings: AppSettings) -> TokenSigner:
    signer = getattr(request.app.state, "signer", None)
    if signer is None:
        signer = TokenSigner.from_settings(settings.token)
        request.app.state.signer = signer
    return signer


Signer = Annotated[TokenSigner, Depends(get_signer)]


def get_store(db: DbSession) -> TokenStore:
    return SQLTokenStore(db)


Store = Annotated[TokenStore, Depends(get_store)]


def get_issuer(store: Store, signer: Signer, settings: AppSettings) -> TokenIssuer:
    return TokenIssuer(store, signer, settings.token)


def get_confirmation_service(
    store: Store, signer: Signer, settings: AppSettings
) -> ConfirmationService:
    return ConfirmationService(store, signer, settings.token)


def get_log_writer(store: Store) -> ConfirmationLogWriter:
    return ConfirmationLogWriter(store)


Issuer = Annotated[TokenIssuer, Depends(get_issuer)]
Confirmations = Annotated[ConfirmationService, Depends(get_confirmation_service)]
LogWriter = Annotated[ConfirmationLogWriter, Depends(get_log_writer)]


# -----------------------------------------------------------------------------
# Client context
# -----------------------------------------------------------------------------


def _valid_ip(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def get_client_ip(request: Request) -> str | None:
    """Extract the client IP address.

    Prefers the first X-Forwarded-For hop, then X-Real-IP, then the socket
    peer. Values that are not IP addresses are ignored.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip = _valid_ip(forwarded.split(",")[0])
        if ip:
            return ip
    ip = _valid_ip(request.headers.get("X-Real-IP"))
    if ip:
        return ip
    if request.client:
        return _valid_ip(request.client.host)
    return None


def get_actor(request: Request) -> ActorContext:
    return ActorContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


Actor = Annotated[ActorContext, Depends(get_actor)]


# -----------------------------------------------------------------------------
# Admin authentication
# -----------------------------------------------------------------------------


async def require_admin(
    request: Request,
    settings: AppSettings,
    x_admin_key: Annotated[str | None, Header()] = None,
) -> ActorContext:
    """Check the X-Admin-Key header against the configured admin key.

    Returns:
        Actor context for the administrator.

    Raises:
        APIError: 503 when no admin key is configured.
        AuthenticationError: 401 when the key is missing or wrong.
    """
    configured = settings.admin_api_key
    if configured is None:
        raise APIError(
            error="admin_disabled",
            message="Admin API is disabled; no admin key is configured",
            status_code=503,
        )

    if not x_admin_key or not hmac.compare_digest(
        x_admin_key.encode("utf-8"),
        configured.get_secret_value().encode("utf-8"),
    ):
        logger.warning(
            "Rejected admin request",
            extra={"path": request.url.path, "client_ip": get_client_ip(request)},
        )
        raise AuthenticationError(f"Valid {ADMIN_KEY_HEADER} header required")

    return ActorContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        admin=ADMIN_ACTOR,
    )


AdminActor = Annotated[ActorContext, Depends(require_admin)]
