"""Token issuance for QSO records.

Issuing a token is the moment a card goes in the mail: the record gets
exactly one token, a signature binding it to the record and issuance time,
an optional PIN to print on the card, and a confirmation URL for the QR
code. The PIN is returned to the caller once and never placed in the URL.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from sqlalchemy.exc import SQLAlchemyError

from qslconfirm.db.models.base import ConfirmationEvent
from qslconfirm.db.models.tokens import QslToken
from qslconfirm.services.alphabet import format_token, generate_pin, generate_token
from qslconfirm.services.audit_log import ActorContext, ConfirmationLogWriter
from qslconfirm.services.errors import (
    AlreadyIssuedError,
    RecordNotFoundError,
    TokenCollisionError,
    TokenProtocolError,
    TokenSpaceExhaustedError,
)
from qslconfirm.services.expiry import as_utc, compute_expires_at

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from qslconfirm.core.config import TokenSettings
    from qslconfirm.services.signer import TokenSigner
    from qslconfirm.services.store import TokenStore

logger = logging.getLogger(__name__)

# Token strings drawn per issuance before giving up on collisions
MAX_TOKEN_ATTEMPTS = 5

# Batch error code for a record whose database work failed
BATCH_DATABASE_ERROR = "database_error"


def truncate_to_millis(moment: datetime) -> datetime:
    """Drop sub-millisecond precision so the stored value signs identically."""
    moment = as_utc(moment)
    return moment.replace(microsecond=moment.microsecond - moment.microsecond % 1000)


def build_confirmation_url(base_url: str, display_token: str, signature: str) -> str:
    """Build the link printed as a QR code on the card."""
    query = urlencode({"token": display_token, "sig": signature})
    return f"{base_url.rstrip('/')}/confirm?{query}"


@dataclass(frozen=True, slots=True)
class IssuedToken:
    """A freshly issued token, as handed to the sender for printing.

    Attributes:
        token_id: Primary key of the stored token.
        record_id: Record the token belongs to.
        token: Canonical token string.
        display_token: Token grouped for printing (ABCD-EFGH-JK).
        signature: Signature over the token binding.
        pin: PIN to print on the card, if step-up is enabled.
        confirmation_url: URL for the QR code.
        issued_at: Issuance time (signed, millisecond precision).
        expires_at: Expiry time.
    """

    token_id: uuid.UUID
    record_id: str
    token: str
    display_token: str
    signature: str
    pin: str | None
    confirmation_url: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class BatchIssueResult:
    """Outcome for one record in a batch."""

    record_id: str
    ok: bool
    issued: IssuedToken | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True, slots=True)
class BatchIssueReport:
    """Outcome of a batch issuance.

    Attributes:
        results: Per-record outcomes, in request order.
    """

    results: list[BatchIssueResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded


class TokenIssuer:
    """Issues one confirmation token per QSO record.

    Uniqueness per record is checked up front for a clean error and again
    by the store's UNIQUE constraint, which decides concurrent issuance.

    Example:
        issuer = TokenIssuer(store, signer, settings.token)
        issued = await issuer.issue("Q-1", use_pin=True)
        print(issued.display_token, issued.pin, issued.confirmation_url)
    """

    def __init__(
        self,
        store: TokenStore,
        signer: TokenSigner,
        settings: TokenSettings,
        *,
        log_writer: ConfirmationLogWriter | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the issuer.

        Args:
            store: Storage collaborator.
            signer: Signer holding the server secret.
            settings: Token policy (lengths, expiry, base URL).
            log_writer: Confirmation log writer; built on the store if omitted.
            clock: Source of the current time; defaults to UTC now.
        """
        self._store = store
        self._signer = signer
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(UTC))
        self._log = log_writer or ConfirmationLogWriter(store, clock=self._clock)

    async def issue(
        self,
        record_id: str,
        *,
        use_pin: bool | None = None,
        expiry_days: int | None = None,
        now: datetime | None = None,
        actor: ActorContext | None = None,
    ) -> IssuedToken:
        """Issue the token for a record.

        Args:
            record_id: Record to issue for.
            use_pin: Whether to generate a PIN; defaults to the configured policy.
            expiry_days: Token lifetime; defaults to the configured policy.
            now: Issuance time; defaults to the clock.
            actor: Administrator context for the log entry.

        Returns:
            The issued token including its one-time PIN.

        Raises:
            RecordNotFoundError: If the record does not exist.
            AlreadyIssuedError: If the record already has a token.
        """
        return await self._issue(
            record_id,
            use_pin=use_pin,
            expiry_days=expiry_days,
            now=now,
            actor=actor,
            batch=False,
        )

    async def issue_batch(
        self,
        record_ids: Sequence[str],
        *,
        use_pin: bool | None = None,
        expiry_days: int | None = None,
        now: datetime | None = None,
        actor: ActorContext | None = None,
    ) -> BatchIssueReport:
        """Issue tokens for several records independently.

        Each record runs in its own savepoint, so a failure rolls back only
        that record's work and never aborts the rest of the batch. Protocol
        errors report their own code; database errors report
        ``database_error``.
        """
        report = BatchIssueReport()
        for record_id in record_ids:
            try:
                async with self._store.savepoint():
                    issued = await self._issue(
                        record_id,
                        use_pin=use_pin,
                        expiry_days=expiry_days,
                        now=now,
                        actor=actor,
                        batch=True,
                    )
            except TokenProtocolError as e:
                report.results.append(
                    BatchIssueResult(
                        record_id=record_id,
                        ok=False,
                        error_code=e.code,
                        error_message=e.message,
                    )
                )
                continue
            except SQLAlchemyError:
                logger.exception(
                    "Database error issuing token in batch",
                    extra={"record_id": record_id},
                )
                report.results.append(
                    BatchIssueResult(
                        record_id=record_id,
                        ok=False,
                        error_code=BATCH_DATABASE_ERROR,
                        error_message="Database error while issuing token",
                    )
                )
                continue
            report.results.append(BatchIssueResult(record_id=record_id, ok=True, issued=issued))

        logger.info(
            "Batch issuance finished",
            extra={
                "total": report.total,
                "succeeded": report.succeeded,
                "failed": report.failed,
            },
        )
        return report

    def describe(self, row: QslToken) -> IssuedToken:
        """Rebuild the printable view of a stored token.

        The signature is recomputed from the stored binding, so the result
        matches what was printed at issuance.
        """
        display = format_token(row.token)
        signature = self._signer.sign(row.token, row.record_id, row.issued_at)
        expires_at = row.expires_at or compute_expires_at(
            row.issued_at, self._settings.default_expiry_days
        )
        return IssuedToken(
            token_id=row.token_id,
            record_id=row.record_id,
            token=row.token,
            display_token=display,
            signature=signature,
            pin=row.pin,
            confirmation_url=build_confirmation_url(self._settings.base_url, display, signature),
            issued_at=row.issued_at,
            expires_at=expires_at,
        )

    async def lookup(self, record_id: str) -> QslToken | None:
        """Return the token issued for a record, if any.

        Raises:
            RecordNotFoundError: If the record does not exist.
        """
        if await self._store.find_record(record_id) is None:
            raise RecordNotFoundError(record_id)
        return await self._store.find_token_by_record(record_id)

    async def _issue(
        self,
        record_id: str,
        *,
        use_pin: bool | None,
        expiry_days: int | None,
        now: datetime | None,
        actor: ActorContext | None,
        batch: bool,
    ) -> IssuedToken:
        record = await self._store.find_record(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)

        if await self._store.find_token_by_record(record_id) is not None:
            raise AlreadyIssuedError(record_id)

        issued_at = truncate_to_millis(now or self._clock())

        if use_pin is None:
            use_pin = self._settings.pin_by_default
        pin = generate_pin(self._settings.pin_length) if use_pin else None

        lifetime = expiry_days if expiry_days is not None else self._settings.default_expiry_days
        expires_at = compute_expires_at(issued_at, lifetime)

        row = await self._insert_fresh_token(
            record_id, pin=pin, issued_at=issued_at, expires_at=expires_at
        )
        token = row.token
        signature = self._signer.sign(token, record_id, issued_at)
        await self._store.mark_record_mailed(record_id, issued_at)

        await self._log.record(
            ConfirmationEvent.GENERATED,
            token_id=row.token_id,
            meta={
                "record_id": record_id,
                "callsign_worked": record.callsign_worked,
                "batch": batch,
            },
            actor=actor,
        )

        display = format_token(token)
        logger.info(
            "Issued confirmation token",
            extra={
                "record_id": record_id,
                "token_id": str(row.token_id),
                "requires_pin": pin is not None,
                "batch": batch,
            },
        )
        return IssuedToken(
            token_id=row.token_id,
            record_id=record_id,
            token=token,
            display_token=display,
            signature=signature,
            pin=pin,
            confirmation_url=build_confirmation_url(self._settings.base_url, display, signature),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    async def _insert_fresh_token(
        self,
        record_id: str,
        *,
        pin: str | None,
        issued_at: datetime,
        expires_at: datetime,
    ) -> QslToken:
        """Insert a token row under a newly drawn string, redrawing on collision.

        Raises:
            AlreadyIssuedError: If a concurrent issuance won the record.
            TokenSpaceExhaustedError: If every drawn string was taken.
        """
        for _ in range(MAX_TOKEN_ATTEMPTS):
            row = QslToken(
                token_id=uuid.uuid4(),
                created_at=issued_at,
                record_id=record_id,
                token=generate_token(self._settings.token_length),
                pin=pin,
                issued_at=issued_at,
                expires_at=expires_at,
                used=False,
            )
            try:
                return await self._store.insert_token(row)
            except TokenCollisionError:
                logger.warning("Token collision, drawing a new token")
        raise TokenSpaceExhaustedError(MAX_TOKEN_ATTEMPTS)
