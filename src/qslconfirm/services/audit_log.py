"""Append-only confirmation log.

Every issuance, inspection, confirmation attempt and revocation leaves one
entry in ``confirmation_logs``. Entries are only ever inserted; this module
exposes no update or delete path.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from qslconfirm.db.models.tokens import ConfirmationLog

if TYPE_CHECKING:
    from collections.abc import Callable

    from qslconfirm.db.models.base import ConfirmationEvent
    from qslconfirm.services.store import TokenStore

logger = logging.getLogger(__name__)

# Keys that must never reach the log even if a caller passes them
_REDACTED_KEYS = frozenset({"pin", "secret"})


@dataclass(frozen=True, slots=True)
class ActorContext:
    """Who is acting, as far as the HTTP layer can tell.

    Attributes:
        ip_address: Client IP address, if known.
        user_agent: Client user agent, if known.
        admin: Identifier of the administrator for admin-side operations.
    """

    ip_address: str | None = None
    user_agent: str | None = None
    admin: str | None = None


ANONYMOUS = ActorContext()


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_json_safe(v) for v in value]
    return value


def sanitize_meta(meta: dict[str, Any] | None) -> dict[str, Any]:
    """Make metadata JSON-serializable and drop sensitive keys."""
    if not meta:
        return {}
    return {k: _json_safe(v) for k, v in meta.items() if k not in _REDACTED_KEYS}


class ConfirmationLogWriter:
    """Writes and reads confirmation log entries through the token store.

    Example:
        writer = ConfirmationLogWriter(store)
        await writer.record(
            ConfirmationEvent.SCANNED,
            token_id=token.token_id,
            meta={"result": "invalid_signature"},
            actor=ActorContext(ip_address="192.0.2.10"),
        )
    """

    def __init__(
        self,
        store: TokenStore,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the writer.

        Args:
            store: Storage collaborator that persists entries.
            clock: Source of the entry timestamp; defaults to UTC now.
        """
        self._store = store
        self._clock = clock or (lambda: datetime.now(UTC))

    async def record(
        self,
        event: ConfirmationEvent,
        *,
        token_id: uuid.UUID | None,
        meta: dict[str, Any] | None = None,
        actor: ActorContext | None = None,
    ) -> ConfirmationLog:
        """Append one entry.

        Args:
            event: Lifecycle event being recorded.
            token_id: Token the event concerns; None for unknown tokens.
            meta: Event details. PIN values are stripped.
            actor: Client context of the caller.

        Returns:
            The persisted log entry.
        """
        actor = actor or ANONYMOUS
        entry = ConfirmationLog(
            log_id=uuid.uuid4(),
            created_at=self._clock(),
            token_id=token_id,
            event=event,
            meta=sanitize_meta(meta),
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
        )
        entry = await self._store.append_log(entry)

        logger.info(
            "Confirmation log entry written",
            extra={
                "event": event.value,
                "token_id": str(token_id) if token_id else None,
                "result": entry.meta.get("result") if entry.meta else None,
            },
        )
        return entry

    async def list_for_token(
        self,
        token_id: uuid.UUID,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ConfirmationLog]:
        """Entries for one token, newest first."""
        return await self._store.list_logs(token_id=token_id, limit=limit, offset=offset)

    async def list_recent(
        self,
        *,
        event: ConfirmationEvent | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ConfirmationLog]:
        """Most recent entries across all tokens, optionally for one event type."""
        return await self._store.list_logs(event=event, limit=limit, offset=offset)
