"""Tests for the confirmation log writer.

Tests cover:
- Entry fields (event, token link, actor context, timestamp)
- Metadata sanitization (JSON-safe values, PIN never stored)
- Listing per token and across tokens
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from qslconfirm.db.models import ConfirmationEvent, ConfirmationSource
from qslconfirm.services.audit_log import ActorContext, ConfirmationLogWriter, sanitize_meta
from tests.fakes import FrozenClock, InMemoryTokenStore

NOW = datetime(2026, 5, 1, 8, 30, tzinfo=UTC)


@pytest.fixture
def log_store() -> InMemoryTokenStore:
    return InMemoryTokenStore()


@pytest.fixture
def writer(log_store) -> ConfirmationLogWriter:
    return ConfirmationLogWriter(log_store, clock=FrozenClock(NOW))


class TestSanitizeMeta:
    """Tests for metadata sanitization."""

    def test_empty(self):
        assert sanitize_meta(None) == {}

    def test_converts_values_to_json_types(self):
        token_id = uuid4()
        meta = sanitize_meta(
            {
                "at": NOW,
                "token_id": token_id,
                "source": ConfirmationSource.QR,
                "nested": {"when": [NOW]},
            }
        )
        assert meta == {
            "at": NOW.isoformat(),
            "token_id": str(token_id),
            "source": "qr",
            "nested": {"when": [NOW.isoformat()]},
        }

    def test_drops_pin(self):
        assert sanitize_meta({"pin": "482913", "result": "invalid_pin"}) == {
            "result": "invalid_pin"
        }


class TestRecord:
    """Tests for ConfirmationLogWriter.record."""

    @pytest.mark.asyncio
    async def test_record_persists_entry(self, writer, log_store):
        token_id = uuid4()
        actor = ActorContext(ip_address="203.0.113.7", user_agent="Mozilla/5.0")

        entry = await writer.record(
            ConfirmationEvent.SCANNED,
            token_id=token_id,
            meta={"result": "valid"},
            actor=actor,
        )

        assert log_store.logs == [entry]
        assert entry.log_id is not None
        assert entry.created_at == NOW
        assert entry.token_id == token_id
        assert entry.event == ConfirmationEvent.SCANNED
        assert entry.meta == {"result": "valid"}
        assert entry.ip_address == "203.0.113.7"
        assert entry.user_agent == "Mozilla/5.0"

    @pytest.mark.asyncio
    async def test_record_without_token_or_actor(self, writer):
        entry = await writer.record(ConfirmationEvent.SCANNED, token_id=None)

        assert entry.token_id is None
        assert entry.ip_address is None
        assert entry.meta == {}


class TestListing:
    """Tests for listing entries."""

    @pytest.mark.asyncio
    async def test_list_for_token_newest_first(self, writer):
        token_id = uuid4()
        first = await writer.record(ConfirmationEvent.GENERATED, token_id=token_id)
        await writer.record(ConfirmationEvent.SCANNED, token_id=uuid4())
        second = await writer.record(ConfirmationEvent.CONFIRMED, token_id=token_id)

        assert await writer.list_for_token(token_id) == [second, first]

    @pytest.mark.asyncio
    async def test_list_recent_filters_by_event(self, writer):
        await writer.record(ConfirmationEvent.GENERATED, token_id=uuid4())
        scanned = await writer.record(ConfirmationEvent.SCANNED, token_id=None)

        assert await writer.list_recent(event=ConfirmationEvent.SCANNED) == [scanned]

    @pytest.mark.asyncio
    async def test_list_recent_paginates(self, writer):
        entries = [await writer.record(ConfirmationEvent.SCANNED, token_id=None) for _ in range(5)]

        page = await writer.list_recent(limit=2, offset=1)
        assert page == [entries[3], entries[2]]
