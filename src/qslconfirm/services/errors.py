"""Error taxonomy for token issuance and confirmation.

Every non-fatal failure is a TokenProtocolError subclass carrying a
machine-readable code and the HTTP status the API layer maps it to.
Services raise these only after the attempt has been written to the
confirmation log. Configuration problems are fatal and live in
qslconfirm.core.config.ConfigurationError instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID


class TokenProtocolError(Exception):
    """Base exception for issuance and confirmation failures."""

    code: ClassVar[str] = "token_error"
    status_code: ClassVar[int] = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_detail(self) -> dict[str, Any] | None:
        """Extra fields safe to return to the caller."""
        return None


# ---------------------------------------------------------------------------
# Issuance
# ---------------------------------------------------------------------------


class RecordNotFoundError(TokenProtocolError):
    """Raised when a token is requested for an unknown record."""

    code = "record_not_found"
    status_code = 404

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Record {record_id} not found")


class AlreadyIssuedError(TokenProtocolError):
    """Raised when the record already owns a token.

    Not retryable with the same record id.
    """

    code = "already_issued"
    status_code = 409

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"A token already exists for record {record_id}")


class TokenCollisionError(TokenProtocolError):
    """Raised by the store when the drawn token string is already taken.

    The issuer draws a new string and retries.
    """

    code = "token_collision"
    status_code = 409

    def __init__(self, token: str) -> None:
        self.token = token
        super().__init__("Token string already in use")


class TokenSpaceExhaustedError(TokenProtocolError):
    """Raised when no unused token string could be drawn."""

    code = "token_unavailable"
    status_code = 503

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Could not draw an unused token after {attempts} attempts")


# ---------------------------------------------------------------------------
# Confirmation
# ---------------------------------------------------------------------------


class TokenNotFoundError(TokenProtocolError):
    """Raised when a submitted token string matches no stored token."""

    code = "token_not_found"
    status_code = 404

    def __init__(self) -> None:
        super().__init__("Invalid token")


class InvalidSignatureError(TokenProtocolError):
    """Raised when the signature does not match the stored token binding.

    The message never says which signed input was wrong.
    """

    code = "invalid_signature"
    status_code = 403

    def __init__(self) -> None:
        super().__init__("Invalid signature")


class TokenExpiredError(TokenProtocolError):
    """Raised when the token is past its expiry."""

    code = "expired"
    status_code = 410

    def __init__(self, expired_at: datetime) -> None:
        self.expired_at = expired_at
        super().__init__("Token has expired")

    def to_detail(self) -> dict[str, Any]:
        return {"expired_at": self.expired_at.isoformat()}


class AlreadyUsedError(TokenProtocolError):
    """Raised when the token was already used for a confirmation.

    Carries the original confirmation time so a legitimate recipient can
    recognise their own earlier confirmation.
    """

    code = "already_used"
    status_code = 409

    def __init__(self, used_at: datetime | None) -> None:
        self.used_at = used_at
        super().__init__("Token has already been used")

    def to_detail(self) -> dict[str, Any]:
        return {"used_at": self.used_at.isoformat() if self.used_at else None}


class InvalidPinError(TokenProtocolError):
    """Raised when a PIN-protected token is confirmed without the right PIN."""

    code = "invalid_pin"
    status_code = 403

    def __init__(self) -> None:
        super().__init__("Invalid PIN")


class TokenRevokedError(TokenProtocolError):
    """Raised when the token was revoked by an administrator."""

    code = "revoked"
    status_code = 410

    def __init__(self, revoked_at: datetime) -> None:
        self.revoked_at = revoked_at
        super().__init__("Token has been revoked")

    def to_detail(self) -> dict[str, Any]:
        return {"revoked_at": self.revoked_at.isoformat()}


class AlreadyRevokedError(TokenProtocolError):
    """Raised when revoking a token that is already revoked."""

    code = "already_revoked"
    status_code = 409

    def __init__(self, token_id: UUID) -> None:
        self.token_id = token_id
        super().__init__(f"Token {token_id} is already revoked")


class TokenIdNotFoundError(TokenProtocolError):
    """Raised when an administrative operation names an unknown token id."""

    code = "token_not_found"
    status_code = 404

    def __init__(self, token_id: UUID) -> None:
        self.token_id = token_id
        super().__init__(f"Token {token_id} not found")


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class SchemaNotReadyError(TokenProtocolError):
    """Raised by the storage collaborator when required tables are missing."""

    code = "schema_not_ready"
    status_code = 503

    def __init__(self, missing_tables: list[str]) -> None:
        self.missing_tables = missing_tables
        super().__init__(f"Database schema not ready; missing tables: {', '.join(missing_tables)}")

    def to_detail(self) -> dict[str, Any]:
        return {"missing_tables": self.missing_tables}
