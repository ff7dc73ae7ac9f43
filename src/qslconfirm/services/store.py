"""Storage collaborator for tokens, records and the confirmation log.

The issuance and confirmation services depend only on the TokenStore
protocol. SQLTokenStore implements it on a SQLAlchemy async session and
pushes the race-sensitive rules down to the database:

- one token per record: UNIQUE(qsl_tokens.record_id); a losing insert
  surfaces as AlreadyIssuedError.
- unique token strings: UNIQUE(qsl_tokens.token); a losing insert surfaces
  as TokenCollisionError so the issuer can draw again.
- one confirmation per token: a conditional UPDATE
  (``... WHERE used = false AND revoked_at IS NULL``) whose affected row
  count tells the caller whether it won.

The store flushes but never commits; transaction boundaries belong to the
caller.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import inspect, select, update
from sqlalchemy.exc import IntegrityError

from qslconfirm.db.models.base import ConfirmationEvent, ConfirmationSource, TokenState
from qslconfirm.db.models.records import QsoRecord
from qslconfirm.db.models.tokens import ConfirmationLog, QslToken
from qslconfirm.services.errors import (
    AlreadyIssuedError,
    SchemaNotReadyError,
    TokenCollisionError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.engine import Connection
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

REQUIRED_TABLES = ("qso_records", "qsl_tokens", "confirmation_logs")


@dataclass(frozen=True, slots=True)
class UsageFields:
    """Values written by the single successful confirmation.

    Attributes:
        used_at: Confirmation time.
        used_by: Callsign or email the recipient gave, if any.
        used_ip: Client IP address.
        user_agent: Client user agent.
        source: Submission channel declared by the client.
        message: Free-text message left by the recipient.
    """

    used_at: datetime
    used_by: str | None
    used_ip: str | None
    user_agent: str | None
    source: ConfirmationSource
    message: str | None


class TokenStore(Protocol):
    """Persistence operations the token services rely on."""

    async def check_schema(self) -> None: ...

    async def find_record(self, record_id: str) -> QsoRecord | None: ...

    async def find_token_by_record(self, record_id: str) -> QslToken | None: ...

    async def find_token_by_string(self, token: str) -> QslToken | None: ...

    async def get_token(self, token_id: UUID) -> QslToken | None: ...

    async def insert_token(self, token: QslToken) -> QslToken: ...

    async def atomic_mark_used(self, token_id: UUID, fields: UsageFields) -> int: ...

    async def atomic_revoke(
        self,
        token_id: UUID,
        *,
        revoked_at: datetime,
        revoked_by: str | None,
        reason: str | None,
    ) -> int: ...

    async def append_log(self, entry: ConfirmationLog) -> ConfirmationLog: ...

    async def list_logs(
        self,
        *,
        token_id: UUID | None = None,
        event: ConfirmationEvent | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ConfirmationLog]: ...

    async def list_tokens(
        self,
        *,
        state: TokenState | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[QslToken]: ...

    async def mark_record_mailed(self, record_id: str, at: datetime) -> None: ...

    async def mark_record_confirmed(self, record_id: str, at: datetime) -> None: ...

    def savepoint(self) -> AsyncIterator[None]: ...


def _missing_tables(sync_conn: Connection) -> list[str]:
    inspector = inspect(sync_conn)
    return [name for name in REQUIRED_TABLES if not inspector.has_table(name)]


class SQLTokenStore:
    """TokenStore backed by a SQLAlchemy async session.

    Example:
        async with get_async_session() as session:
            store = SQLTokenStore(session)
            issuer = TokenIssuer(store, signer, token_settings)
            issued = await issuer.issue("Q-1")
            await session.commit()
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize the store.

        Args:
            session: SQLAlchemy async session for database operations.
        """
        self._session = session

    async def check_schema(self) -> None:
        """Verify the required tables exist.

        Raises:
            SchemaNotReadyError: If any required table is missing.
        """
        conn = await self._session.connection()
        missing = await conn.run_sync(_missing_tables)
        if missing:
            raise SchemaNotReadyError(missing)

    async def find_record(self, record_id: str) -> QsoRecord | None:
        return await self._session.get(QsoRecord, record_id)

    async def find_token_by_record(self, record_id: str) -> QslToken | None:
        query = select(QslToken).where(QslToken.record_id == record_id)
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def find_token_by_string(self, token: str) -> QslToken | None:
        """Look up a token by its canonical string."""
        query = select(QslToken).where(QslToken.token == token)
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def get_token(self, token_id: UUID) -> QslToken | None:
        """Load a token, re-reading the row even if it is already in the session."""
        query = (
            select(QslToken)
            .where(QslToken.token_id == token_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def insert_token(self, token: QslToken) -> QslToken:
        """Insert a new token inside a savepoint.

        Raises:
            AlreadyIssuedError: If another token for the record won the race.
            TokenCollisionError: If the token string is already taken.
        """
        try:
            async with self._session.begin_nested():
                self._session.add(token)
                await self._session.flush()
        except IntegrityError as e:
            if await self.find_token_by_record(token.record_id) is not None:
                raise AlreadyIssuedError(token.record_id) from e
            if await self.find_token_by_string(token.token) is not None:
                raise TokenCollisionError(token.token) from e
            raise
        return token

    async def atomic_mark_used(self, token_id: UUID, fields: UsageFields) -> int:
        """Consume the token if, and only if, it is still pending.

        Returns:
            Number of rows updated (0 means another caller won).
        """
        stmt = (
            update(QslToken)
            .where(QslToken.token_id == token_id)
            .where(QslToken.used.is_(False))
            .where(QslToken.revoked_at.is_(None))
            .values(
                used=True,
                used_at=fields.used_at,
                used_by=fields.used_by,
                used_ip=fields.used_ip,
                user_agent=fields.user_agent,
                source=fields.source,
                message=fields.message,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def atomic_revoke(
        self,
        token_id: UUID,
        *,
        revoked_at: datetime,
        revoked_by: str | None,
        reason: str | None,
    ) -> int:
        """Revoke the token if it is still pending.

        Returns:
            Number of rows updated.
        """
        stmt = (
            update(QslToken)
            .where(QslToken.token_id == token_id)
            .where(QslToken.used.is_(False))
            .where(QslToken.revoked_at.is_(None))
            .values(revoked_at=revoked_at, revoked_by=revoked_by, revoke_reason=reason)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def append_log(self, entry: ConfirmationLog) -> ConfirmationLog:
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def list_logs(
        self,
        *,
        token_id: UUID | None = None,
        event: ConfirmationEvent | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ConfirmationLog]:
        """List log entries, newest first."""
        query = select(ConfirmationLog).order_by(ConfirmationLog.created_at.desc())
        if token_id is not None:
            query = query.where(ConfirmationLog.token_id == token_id)
        if event is not None:
            query = query.where(ConfirmationLog.event == event)
        query = query.limit(limit).offset(offset)

        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def list_tokens(
        self,
        *,
        state: TokenState | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[QslToken]:
        """List tokens, newest issuance first, optionally filtered by state."""
        query = select(QslToken).order_by(QslToken.issued_at.desc())
        if state is TokenState.CONFIRMED:
            query = query.where(QslToken.used.is_(True))
        elif state is TokenState.REVOKED:
            query = query.where(QslToken.revoked_at.is_not(None))
        elif state is TokenState.PENDING:
            query = query.where(QslToken.used.is_(False)).where(QslToken.revoked_at.is_(None))
        query = query.limit(limit).offset(offset)

        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def mark_record_mailed(self, record_id: str, at: datetime) -> None:
        stmt = (
            update(QsoRecord)
            .where(QsoRecord.record_id == record_id)
            .values(mailed=True, mailed_at=at)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    async def mark_record_confirmed(self, record_id: str, at: datetime) -> None:
        stmt = (
            update(QsoRecord)
            .where(QsoRecord.record_id == record_id)
            .values(confirmed=True, confirmed_at=at)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """Isolate one unit of batch work; failures roll back only that unit."""
        async with self._session.begin_nested():
            yield
