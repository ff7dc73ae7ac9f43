"""Confirmation state machine for issued tokens.

A token starts PENDING and ends either CONFIRMED (the recipient proved
receipt) or REVOKED (an administrator withdrew it). Both end states are
terminal. Checks run in a fixed order so nothing about the token is
revealed before its signature is verified:

    signature -> revocation -> expiry -> used -> PIN -> atomic update

Every inspect() or confirm() call writes exactly one confirmation log
entry. Successful confirmations are logged as ``confirmed``; every other
outcome, including duplicates, is logged as ``scanned`` with the result
in the entry metadata.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from qslconfirm.db.models.base import ConfirmationEvent, ConfirmationSource
from qslconfirm.services.alphabet import format_token, is_well_formed, normalize_token
from qslconfirm.services.audit_log import ActorContext, ConfirmationLogWriter
from qslconfirm.services.errors import (
    AlreadyRevokedError,
    AlreadyUsedError,
    InvalidPinError,
    InvalidSignatureError,
    TokenExpiredError,
    TokenIdNotFoundError,
    TokenNotFoundError,
    TokenRevokedError,
)
from qslconfirm.services.expiry import as_utc, effective_expiry, is_token_expired
from qslconfirm.services.store import UsageFields

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from qslconfirm.core.config import TokenSettings
    from qslconfirm.db.models.records import QsoRecord
    from qslconfirm.db.models.tokens import QslToken
    from qslconfirm.services.signer import TokenSigner
    from qslconfirm.services.store import TokenStore

logger = logging.getLogger(__name__)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True, slots=True)
class ConfirmationIdentity:
    """What the recipient chose to tell us about themselves.

    Attributes:
        callsign: Recipient callsign.
        email: Recipient email address.
        message: Free-text note to the sender.
    """

    callsign: str | None = None
    email: str | None = None
    message: str | None = None

    @property
    def used_by(self) -> str | None:
        """Callsign if given, otherwise email, otherwise None."""
        callsign = _clean(self.callsign)
        if callsign:
            return callsign.upper()
        return _clean(self.email)


@dataclass(frozen=True, slots=True)
class RecordSummary:
    """QSO details shown to whoever holds a valid token."""

    record_id: str
    callsign_worked: str
    qso_datetime: datetime
    band: str
    mode: str
    frequency: float | None

    @classmethod
    def from_record(cls, record: QsoRecord) -> RecordSummary:
        return cls(
            record_id=record.record_id,
            callsign_worked=record.callsign_worked,
            qso_datetime=record.qso_datetime,
            band=record.band,
            mode=record.mode,
            frequency=record.frequency,
        )


@dataclass(frozen=True, slots=True)
class InspectionResult:
    """Read-only view of a token for the confirmation page.

    Attributes:
        token: Display form of the token.
        used: Whether the token was already used.
        used_at: When it was used, if it was.
        requires_pin: Whether confirming needs the PIN from the card.
        expires_at: Effective expiry time.
        record: Summary of the acknowledged QSO.
    """

    token: str
    used: bool
    used_at: datetime | None
    requires_pin: bool
    expires_at: datetime
    record: RecordSummary | None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class ConfirmationResult:
    """Outcome of the one successful confirmation of a token."""

    token_id: UUID
    record_id: str
    token: str
    confirmed_at: datetime
    used_by: str | None
    source: ConfirmationSource


@dataclass(frozen=True, slots=True)
class RevocationResult:
    """Outcome of an administrative revocation."""

    token_id: UUID
    record_id: str
    revoked_at: datetime
    revoked_by: str | None
    reason: str | None


class ConfirmationService:
    """Verifies and consumes confirmation tokens.

    Example:
        service = ConfirmationService(store, signer, settings.token)
        view = await service.inspect("ABCD-EFGH-JK", sig, actor=actor)
        if view.requires_pin:
            ...
        result = await service.confirm(
            "ABCD-EFGH-JK",
            sig,
            pin="482913",
            identity=ConfirmationIdentity(callsign="DL1ABC"),
            actor=actor,
        )
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
        """Initialize the service.

        Args:
            store: Storage collaborator.
            signer: Signer holding the server secret.
            settings: Token policy (token length, default expiry).
            log_writer: Confirmation log writer; built on the store if omitted.
            clock: Source of the current time; defaults to UTC now.
        """
        self._store = store
        self._signer = signer
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(UTC))
        self._log = log_writer or ConfirmationLogWriter(store, clock=self._clock)

    # -------------------------------------------------------------------------
    # Recipient operations
    # -------------------------------------------------------------------------

    async def inspect(
        self,
        token: str,
        signature: str,
        *,
        actor: ActorContext | None = None,
        now: datetime | None = None,
    ) -> InspectionResult:
        """Validate a token for display without changing its state.

        Raises:
            TokenNotFoundError: No stored token matches.
            InvalidSignatureError: Signature does not match.
            TokenRevokedError: Token was revoked.
            TokenExpiredError: Token is past its expiry.
        """
        now = as_utc(now or self._clock())
        row = await self._verified_token(token, signature, action="inspect", actor=actor, now=now)

        record = await self._store.find_record(row.record_id)
        await self._scanned(
            row,
            "valid",
            action="inspect",
            actor=actor,
            extra={"used": row.used},
        )
        return InspectionResult(
            token=format_token(row.token),
            used=row.used,
            used_at=row.used_at,
            requires_pin=row.requires_pin,
            expires_at=self._expiry_of(row),
            record=RecordSummary.from_record(record) if record is not None else None,
        )

    async def confirm(
        self,
        token: str,
        signature: str,
        *,
        pin: str | None = None,
        identity: ConfirmationIdentity | None = None,
        source: ConfirmationSource = ConfirmationSource.MANUAL,
        actor: ActorContext | None = None,
        now: datetime | None = None,
    ) -> ConfirmationResult:
        """Consume the token as proof of receipt.

        At most one call succeeds per token, even under concurrent
        submissions: the final write only applies while the token is
        still unused and unrevoked.

        Args:
            token: Token in canonical or display form.
            signature: Signature from the confirmation URL.
            pin: PIN from the card, when the token requires one.
            identity: Recipient-supplied callsign, email and message.
            source: Submission channel declared by the client.
            actor: Client context.
            now: Confirmation time; defaults to the clock.

        Returns:
            The confirmation outcome.

        Raises:
            TokenNotFoundError: No stored token matches.
            InvalidSignatureError: Signature does not match.
            TokenRevokedError: Token was revoked.
            TokenExpiredError: Token is past its expiry.
            AlreadyUsedError: Token was already used (carries used_at).
            InvalidPinError: PIN missing or wrong.
        """
        now = as_utc(now or self._clock())
        identity = identity or ConfirmationIdentity()
        row = await self._verified_token(token, signature, action="confirm", actor=actor, now=now)

        if row.used:
            await self._scanned(
                row,
                AlreadyUsedError.code,
                action="confirm",
                actor=actor,
                extra={"duplicate": True, "used_at": row.used_at},
            )
            raise AlreadyUsedError(row.used_at)

        if row.pin and not _pin_matches(pin, row.pin):
            await self._scanned(row, InvalidPinError.code, action="confirm", actor=actor)
            raise InvalidPinError()

        actor = actor or ActorContext()
        fields = UsageFields(
            used_at=now,
            used_by=identity.used_by,
            used_ip=actor.ip_address,
            user_agent=actor.user_agent,
            source=source,
            message=_clean(identity.message),
        )
        if await self._store.atomic_mark_used(row.token_id, fields) == 0:
            await self._lost_race(row.token_id, actor=actor)

        await self._log.record(
            ConfirmationEvent.CONFIRMED,
            token_id=row.token_id,
            meta={
                "token": row.token,
                "callsign": _clean(identity.callsign),
                "email": _clean(identity.email),
                "message": fields.message,
                "source": source,
            },
            actor=actor,
        )
        await self._store.mark_record_confirmed(row.record_id, now)

        logger.info(
            "QSL card confirmed",
            extra={
                "token_id": str(row.token_id),
                "record_id": row.record_id,
                "source": source.value,
            },
        )
        return ConfirmationResult(
            token_id=row.token_id,
            record_id=row.record_id,
            token=format_token(row.token),
            confirmed_at=now,
            used_by=fields.used_by,
            source=source,
        )

    # -------------------------------------------------------------------------
    # Administrative operations
    # -------------------------------------------------------------------------

    async def revoke(
        self,
        token_id: UUID,
        *,
        reason: str | None = None,
        actor: ActorContext | None = None,
        now: datetime | None = None,
    ) -> RevocationResult:
        """Withdraw a pending token so it can no longer be confirmed.

        Raises:
            TokenIdNotFoundError: Unknown token id.
            AlreadyUsedError: Token was confirmed already.
            AlreadyRevokedError: Token was revoked already.
        """
        now = as_utc(now or self._clock())
        actor = actor or ActorContext()

        row = await self._store.get_token(token_id)
        if row is None:
            raise TokenIdNotFoundError(token_id)
        _ensure_revocable(row)

        reason = _clean(reason)
        affected = await self._store.atomic_revoke(
            token_id,
            revoked_at=now,
            revoked_by=actor.admin,
            reason=reason,
        )
        if affected == 0:
            current = await self._store.get_token(token_id)
            if current is None:
                raise TokenIdNotFoundError(token_id)
            _ensure_revocable(current)

        await self._log.record(
            ConfirmationEvent.REVOKED,
            token_id=token_id,
            meta={"reason": reason, "revoked_by": actor.admin},
            actor=actor,
        )
        logger.info(
            "Token revoked",
            extra={"token_id": str(token_id), "record_id": row.record_id},
        )
        return RevocationResult(
            token_id=token_id,
            record_id=row.record_id,
            revoked_at=now,
            revoked_by=actor.admin,
            reason=reason,
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _expiry_of(self, row: QslToken) -> datetime:
        return effective_expiry(row.issued_at, row.expires_at, self._settings.default_expiry_days)

    async def _verified_token(
        self,
        token: str,
        signature: str,
        *,
        action: str,
        actor: ActorContext | None,
        now: datetime,
    ) -> QslToken:
        """Load the token and run the checks shared by inspect and confirm."""
        normalized = normalize_token(token or "")

        row = None
        if is_well_formed(normalized, self._settings.token_length):
            row = await self._store.find_token_by_string(normalized)
        if row is None:
            await self._log.record(
                ConfirmationEvent.SCANNED,
                token_id=None,
                meta={"result": TokenNotFoundError.code, "action": action, "token": normalized},
                actor=actor,
            )
            raise TokenNotFoundError()

        if not self._signer.verify(row.token, signature or "", row.record_id, row.issued_at):
            await self._scanned(
                row,
                InvalidSignatureError.code,
                action=action,
                actor=actor,
                extra={"signature": signature},
            )
            raise InvalidSignatureError()

        # A used token is reported as used even if it was revoked afterwards
        if row.revoked_at is not None and not row.used:
            await self._scanned(row, TokenRevokedError.code, action=action, actor=actor)
            raise TokenRevokedError(row.revoked_at)

        if is_token_expired(
            row.issued_at, row.expires_at, now, self._settings.default_expiry_days
        ):
            await self._scanned(row, TokenExpiredError.code, action=action, actor=actor)
            raise TokenExpiredError(self._expiry_of(row))

        return row

    async def _lost_race(self, token_id: UUID, *, actor: ActorContext) -> None:
        """Report the state that beat this confirmation to the write."""
        current = await self._store.get_token(token_id)
        if current is not None and current.revoked_at is not None and not current.used:
            await self._scanned(current, TokenRevokedError.code, action="confirm", actor=actor)
            raise TokenRevokedError(current.revoked_at)

        used_at = current.used_at if current is not None else None
        await self._log.record(
            ConfirmationEvent.SCANNED,
            token_id=token_id,
            meta={
                "result": AlreadyUsedError.code,
                "action": "confirm",
                "duplicate": True,
                "used_at": used_at,
            },
            actor=actor,
        )
        logger.info("Concurrent confirmation lost the race", extra={"token_id": str(token_id)})
        raise AlreadyUsedError(used_at)

    async def _scanned(
        self,
        row: QslToken,
        result: str,
        *,
        action: str,
        actor: ActorContext | None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        meta: dict[str, Any] = {"result": result, "action": action, "token": row.token}
        if extra:
            meta.update(extra)
        await self._log.record(
            ConfirmationEvent.SCANNED,
            token_id=row.token_id,
            meta=meta,
            actor=actor,
        )


def _pin_matches(given: str | None, expected: str) -> bool:
    if given is None:
        return False
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def _ensure_revocable(row: QslToken) -> None:
    if row.used:
        raise AlreadyUsedError(row.used_at)
    if row.revoked_at is not None:
        raise AlreadyRevokedError(row.token_id)


__all__ = [
    "ConfirmationIdentity",
    "ConfirmationResult",
    "ConfirmationService",
    "InspectionResult",
    "RecordSummary",
    "RevocationResult",
]
