"""In-memory TokenStore used by service and API tests.

Mirrors the SQL store's guarantees: one token per record, one successful
conditional update per token, and append-only logs. Reads can yield to the
event loop so concurrent coroutines interleave the way separate database
sessions would.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from uuid import UUID

from qslconfirm.db.models import (
    ConfirmationEvent,
    ConfirmationLog,
    QslToken,
    QsoRecord,
    TokenState,
)
from qslconfirm.services.errors import (
    AlreadyIssuedError,
    SchemaNotReadyError,
    TokenCollisionError,
)
from qslconfirm.services.store import UsageFields


class FrozenClock:
    """Controllable clock for services that accept a clock callable."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class InMemoryTokenStore:
    """TokenStore backed by dictionaries."""

    def __init__(self, records: list[QsoRecord] | None = None, *, yield_on_read: bool = False):
        self.records: dict[str, QsoRecord] = {r.record_id: r for r in records or []}
        self.tokens: dict[UUID, QslToken] = {}
        self.logs: list[ConfirmationLog] = []
        self.missing_tables: list[str] = []
        self.yield_on_read = yield_on_read

    async def _pause(self) -> None:
        if self.yield_on_read:
            await asyncio.sleep(0)

    def add_record(self, record: QsoRecord) -> QsoRecord:
        self.records[record.record_id] = record
        return record

    def add_token(self, token: QslToken) -> QslToken:
        self.tokens[token.token_id] = token
        return token

    def logs_for(self, token_id: UUID | None) -> list[ConfirmationLog]:
        return [entry for entry in self.logs if entry.token_id == token_id]

    def events(self) -> list[ConfirmationEvent]:
        return [entry.event for entry in self.logs]

    # TokenStore protocol

    async def check_schema(self) -> None:
        if self.missing_tables:
            raise SchemaNotReadyError(self.missing_tables)

    async def find_record(self, record_id: str) -> QsoRecord | None:
        await self._pause()
        return self.records.get(record_id)

    async def find_token_by_record(self, record_id: str) -> QslToken | None:
        await self._pause()
        return next((t for t in self.tokens.values() if t.record_id == record_id), None)

    async def find_token_by_string(self, token: str) -> QslToken | None:
        await self._pause()
        return next((t for t in self.tokens.values() if t.token == token), None)

    async def get_token(self, token_id: UUID) -> QslToken | None:
        await self._pause()
        return self.tokens.get(token_id)

    async def insert_token(self, token: QslToken) -> QslToken:
        # Check-and-insert without an await in between, like a UNIQUE constraint
        if any(t.record_id == token.record_id for t in self.tokens.values()):
            raise AlreadyIssuedError(token.record_id)
        if any(t.token == token.token for t in self.tokens.values()):
            raise TokenCollisionError(token.token)
        self.tokens[token.token_id] = token
        return token

    async def atomic_mark_used(self, token_id: UUID, fields: UsageFields) -> int:
        token = self.tokens.get(token_id)
        if token is None or token.used or token.revoked_at is not None:
            return 0
        token.used = True
        token.used_at = fields.used_at
        token.used_by = fields.used_by
        token.used_ip = fields.used_ip
        token.user_agent = fields.user_agent
        token.source = fields.source
        token.message = fields.message
        return 1

    async def atomic_revoke(
        self,
        token_id: UUID,
        *,
        revoked_at: datetime,
        revoked_by: str | None,
        reason: str | None,
    ) -> int:
        token = self.tokens.get(token_id)
        if token is None or token.used or token.revoked_at is not None:
            return 0
        token.revoked_at = revoked_at
        token.revoked_by = revoked_by
        token.revoke_reason = reason
        return 1

    async def append_log(self, entry: ConfirmationLog) -> ConfirmationLog:
        self.logs.append(entry)
        return entry

    async def list_logs(
        self,
        *,
        token_id: UUID | None = None,
        event: ConfirmationEvent | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ConfirmationLog]:
        entries = list(reversed(self.logs))
        if token_id is not None:
            entries = [e for e in entries if e.token_id == token_id]
        if event is not None:
            entries = [e for e in entries if e.event == event]
        return entries[offset : offset + limit]

    async def list_tokens(
        self,
        *,
        state: TokenState | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[QslToken]:
        tokens = sorted(self.tokens.values(), key=lambda t: t.issued_at, reverse=True)
        if state is not None:
            tokens = [t for t in tokens if t.state is state]
        return tokens[offset : offset + limit]

    async def mark_record_mailed(self, record_id: str, at: datetime) -> None:
        record = self.records.get(record_id)
        if record is not None:
            record.mailed = True
            record.mailed_at = at

    async def mark_record_confirmed(self, record_id: str, at: datetime) -> None:
        record = self.records.get(record_id)
        if record is not None:
            record.confirmed = True
            record.confirmed_at = at

    @asynccontextmanager
    async def savepoint(self):
        tokens = dict(self.tokens)
        log_count = len(self.logs)
        try:
            yield
        except Exception:
            self.tokens = tokens
            del self.logs[log_count:]
            raise


class LostRaceStore(InMemoryTokenStore):
    """Store where another session confirms the token just before our write."""

    def __init__(self, *args, winner_used_at: datetime, **kwargs):
        super().__init__(*args, **kwargs)
        self.winner_used_at = winner_used_at

    async def atomic_mark_used(self, token_id: UUID, fields: UsageFields) -> int:
        token = self.tokens[token_id]
        token.used = True
        token.used_at = self.winner_used_at
        token.used_by = "WINNER"
        return 0
