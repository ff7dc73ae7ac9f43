"""Tests for token issuance.

Tests cover:
- Single issuance (token shape, signature, PIN, URL, expiry)
- Side effects (record mailed, generated log entry)
- Refusals (unknown record, already issued, concurrent issuance)
- Batch issuance with partial failures
- Token string collisions
"""

import asyncio
from datetime import timedelta
from urllib.parse import parse_qs, urlsplit

import pytest
from sqlalchemy.exc import IntegrityError

from qslconfirm.db.models import ConfirmationEvent
from qslconfirm.services.alphabet import TOKEN_ALPHABET, format_token
from qslconfirm.services.errors import (
    AlreadyIssuedError,
    RecordNotFoundError,
    TokenSpaceExhaustedError,
)
from qslconfirm.services.issuer import TokenIssuer, build_confirmation_url, truncate_to_millis
from tests.factories import TEST_BASE_URL, TEST_NOW, create_record, create_token
from tests.fakes import InMemoryTokenStore


class TestHelpers:
    """Tests for URL building and time truncation."""

    def test_build_confirmation_url(self):
        url = build_confirmation_url("https://qsl.example.org/", "ABCD-2345-EF", "a-b_c")
        assert url == "https://qsl.example.org/confirm?token=ABCD-2345-EF&sig=a-b_c"

    def test_build_confirmation_url_encodes_values(self):
        url = build_confirmation_url("https://qsl.example.org", "A B", "x&y")
        assert parse_qs(urlsplit(url).query) == {"token": ["A B"], "sig": ["x&y"]}

    def test_truncate_to_millis(self):
        assert truncate_to_millis(TEST_NOW).microsecond == 123000


class TestIssue:
    """Tests for TokenIssuer.issue."""

    @pytest.mark.asyncio
    async def test_issue_returns_signed_token(self, issuer, signer, store):
        issued = await issuer.issue("Q-1")

        assert len(issued.token) == 10
        assert set(issued.token) <= set(TOKEN_ALPHABET)
        assert issued.display_token == format_token(issued.token)
        assert issued.record_id == "Q-1"
        assert signer.verify(issued.token, issued.signature, "Q-1", issued.issued_at)
        assert issued.token_id in store.tokens

    @pytest.mark.asyncio
    async def test_issued_at_is_millisecond_precision(self, issuer, store):
        issued = await issuer.issue("Q-1")

        assert issued.issued_at == truncate_to_millis(TEST_NOW)
        assert store.tokens[issued.token_id].issued_at == issued.issued_at

    @pytest.mark.asyncio
    async def test_default_expiry(self, issuer):
        issued = await issuer.issue("Q-1")
        assert issued.expires_at == issued.issued_at + timedelta(days=365)

    @pytest.mark.asyncio
    async def test_custom_expiry(self, issuer):
        issued = await issuer.issue("Q-1", expiry_days=30)
        assert issued.expires_at == issued.issued_at + timedelta(days=30)

    @pytest.mark.asyncio
    async def test_no_pin_by_default(self, issuer, store):
        issued = await issuer.issue("Q-1")

        assert issued.pin is None
        assert store.tokens[issued.token_id].requires_pin is False

    @pytest.mark.asyncio
    async def test_pin_when_requested(self, issuer, store):
        issued = await issuer.issue("Q-1", use_pin=True)

        assert issued.pin is not None
        assert len(issued.pin) == 6
        assert issued.pin.isdigit()
        assert store.tokens[issued.token_id].pin == issued.pin

    @pytest.mark.asyncio
    async def test_pin_by_default_setting(self, store, signer, token_settings, clock):
        settings = token_settings.model_copy(update={"pin_by_default": True})
        issuer = TokenIssuer(store, signer, settings, clock=clock)

        issued = await issuer.issue("Q-1")
        assert issued.pin is not None

    @pytest.mark.asyncio
    async def test_confirmation_url_never_contains_pin(self, issuer):
        issued = await issuer.issue("Q-1", use_pin=True)

        query = parse_qs(urlsplit(issued.confirmation_url).query)
        assert issued.confirmation_url.startswith(f"{TEST_BASE_URL}/confirm?")
        assert query == {"token": [issued.display_token], "sig": [issued.signature]}
        assert issued.pin not in issued.confirmation_url

    @pytest.mark.asyncio
    async def test_marks_record_mailed(self, issuer, store):
        issued = await issuer.issue("Q-1")

        record = store.records["Q-1"]
        assert record.mailed is True
        assert record.mailed_at == issued.issued_at

    @pytest.mark.asyncio
    async def test_logs_generated_event(self, issuer, store, actor):
        issued = await issuer.issue("Q-1", actor=actor)

        [entry] = store.logs
        assert entry.event == ConfirmationEvent.GENERATED
        assert entry.token_id == issued.token_id
        assert entry.meta == {"record_id": "Q-1", "callsign_worked": "DL1ABC", "batch": False}
        assert entry.ip_address == "192.0.2.10"

    @pytest.mark.asyncio
    async def test_unknown_record(self, issuer, store):
        with pytest.raises(RecordNotFoundError) as exc_info:
            await issuer.issue("Q-404")

        assert exc_info.value.record_id == "Q-404"
        assert store.tokens == {}
        assert store.logs == []

    @pytest.mark.asyncio
    async def test_second_issuance_refused(self, issuer, store):
        first = await issuer.issue("Q-1")

        with pytest.raises(AlreadyIssuedError):
            await issuer.issue("Q-1")

        assert list(store.tokens) == [first.token_id]
        assert len(store.logs) == 1

    @pytest.mark.asyncio
    async def test_concurrent_issuance_creates_one_token(self, signer, token_settings, clock):
        store = InMemoryTokenStore([create_record("Q-1")], yield_on_read=True)
        issuer = TokenIssuer(store, signer, token_settings, clock=clock)

        results = await asyncio.gather(
            issuer.issue("Q-1"),
            issuer.issue("Q-1"),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, AlreadyIssuedError)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert len(store.tokens) == 1

    @pytest.mark.asyncio
    async def test_lookup_and_describe_rebuild_printed_values(self, issuer):
        issued = await issuer.issue("Q-1", use_pin=True)

        row = await issuer.lookup("Q-1")
        assert issuer.describe(row) == issued

    @pytest.mark.asyncio
    async def test_lookup_without_token(self, issuer):
        assert await issuer.lookup("Q-2") is None

    @pytest.mark.asyncio
    async def test_lookup_unknown_record(self, issuer):
        with pytest.raises(RecordNotFoundError):
            await issuer.lookup("Q-404")


class TestIssueBatch:
    """Tests for TokenIssuer.issue_batch."""

    @pytest.mark.asyncio
    async def test_batch_issues_each_record(self, issuer, store):
        report = await issuer.issue_batch(["Q-1", "Q-2"])

        assert (report.total, report.succeeded, report.failed) == (2, 2, 0)
        assert [r.record_id for r in report.results] == ["Q-1", "Q-2"]
        assert all(r.issued is not None for r in report.results)
        assert len(store.tokens) == 2

    @pytest.mark.asyncio
    async def test_batch_continues_after_failures(self, issuer, store):
        await issuer.issue("Q-1")

        report = await issuer.issue_batch(["Q-1", "Q-404", "Q-2"])

        assert (report.total, report.succeeded, report.failed) == (3, 1, 2)
        by_id = {r.record_id: r for r in report.results}
        assert by_id["Q-1"].error_code == "already_issued"
        assert by_id["Q-404"].error_code == "record_not_found"
        assert by_id["Q-2"].ok is True
        assert by_id["Q-2"].issued.record_id == "Q-2"

    @pytest.mark.asyncio
    async def test_batch_log_entries_are_flagged(self, issuer, store):
        await issuer.issue_batch(["Q-1", "Q-2"])

        assert [e.meta["batch"] for e in store.logs] == [True, True]

    @pytest.mark.asyncio
    async def test_batch_duplicate_ids_issue_once(self, issuer, store):
        report = await issuer.issue_batch(["Q-2", "Q-2"])

        assert [r.ok for r in report.results] == [True, False]
        assert len(store.tokens) == 1


    @pytest.mark.asyncio
    async def test_batch_isolates_database_errors(self, signer, token_settings, clock):
        store = BrokenInsertStore(
            [create_record("Q-1"), create_record("Q-2", callsign_worked="JA1XYZ")],
            broken_record="Q-1",
        )
        issuer = TokenIssuer(store, signer, token_settings, clock=clock)

        report = await issuer.issue_batch(["Q-1", "Q-2"])

        assert [r.ok for r in report.results] == [False, True]
        assert report.results[0].error_code == "database_error"
        assert [t.record_id for t in store.tokens.values()] == ["Q-2"]
        assert store.records["Q-1"].mailed is False

    @pytest.mark.asyncio
    async def test_batch_reports_exhausted_token_space(self, issuer, store, monkeypatch):
        store.add_token(create_token(record_id="Q-9", token="ZZZZ2345EF"))
        draws = iter(["ZZZZ2345EF"] * 5 + ["HJKL6789MN"])
        monkeypatch.setattr("qslconfirm.services.issuer.generate_token", lambda _: next(draws))

        report = await issuer.issue_batch(["Q-1", "Q-2"])

        assert report.results[0].error_code == "token_unavailable"
        assert report.results[1].ok is True
        assert report.results[1].issued.token == "HJKL6789MN"


class BrokenInsertStore(InMemoryTokenStore):
    """Store whose insert fails at the database level for one record."""

    def __init__(self, *args, broken_record: str, **kwargs):
        super().__init__(*args, **kwargs)
        self.broken_record = broken_record

    async def insert_token(self, token):
        if token.record_id == self.broken_record:
            raise IntegrityError("INSERT INTO qsl_tokens", {}, Exception("connection reset"))
        return await super().insert_token(token)


class TestTokenCollisions:
    """Tests for redrawing token strings that are already taken."""

    @pytest.mark.asyncio
    async def test_collision_draws_again(self, issuer, store, monkeypatch):
        store.add_token(create_token(record_id="Q-9", token="ZZZZ2345EF"))
        draws = iter(["ZZZZ2345EF", "HJKL6789MN"])
        monkeypatch.setattr("qslconfirm.services.issuer.generate_token", lambda _: next(draws))

        issued = await issuer.issue("Q-1")

        assert issued.token == "HJKL6789MN"
        assert len(store.tokens) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, issuer, store, monkeypatch):
        store.add_token(create_token(record_id="Q-9", token="ZZZZ2345EF"))
        monkeypatch.setattr(
            "qslconfirm.services.issuer.generate_token", lambda _: "ZZZZ2345EF"
        )

        with pytest.raises(TokenSpaceExhaustedError) as exc_info:
            await issuer.issue("Q-1")

        assert exc_info.value.attempts == 5
        assert exc_info.value.code == "token_unavailable"
        assert store.records["Q-1"].mailed is False
        assert ConfirmationEvent.GENERATED not in store.events()
