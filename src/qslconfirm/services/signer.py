"""HMAC binding of a token to its record and issuance time.

The signature covers ``normalized_token|record_id|issued_at_epoch_millis``
so that a token string cannot be replayed against another record, and a
stored issued_at cannot be altered without invalidating the signature.
The HMAC-SHA256 digest is truncated and encoded as unpadded URL-safe
base64 so it fits comfortably in a printed QR code.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from qslconfirm.core.config import MIN_SECRET_LENGTH, ConfigurationError
from qslconfirm.services.alphabet import normalize_token

if TYPE_CHECKING:
    from qslconfirm.core.config import TokenSettings

logger = logging.getLogger(__name__)

DEFAULT_SIGNATURE_BYTES = 12
PAYLOAD_SEPARATOR = "|"

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def epoch_millis(moment: datetime) -> int:
    """Milliseconds since the Unix epoch; naive datetimes are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def build_payload(token: str, record_id: str, issued_at: datetime) -> str:
    """Build the canonical signed payload string."""
    return PAYLOAD_SEPARATOR.join(
        (normalize_token(token), record_id, str(epoch_millis(issued_at)))
    )


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes | None:
    try:
        padded = value + "=" * (-len(value) % 4)
        return base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, ValueError):
        return None


class TokenSigner:
    """Signs and verifies token bindings with a server-held secret.

    The secret is checked when the signer is constructed, so a missing or
    short secret stops the application at startup instead of failing the
    first request.

    Example:
        signer = TokenSigner(secret)
        sig = signer.sign("ABCD1234EF", "Q-1", issued_at)
        assert signer.verify("ABCD-1234-EF", sig, "Q-1", issued_at)
    """

    def __init__(self, secret: str, *, signature_bytes: int = DEFAULT_SIGNATURE_BYTES) -> None:
        """Initialize the signer.

        Args:
            secret: HMAC key, at least 32 characters.
            signature_bytes: Number of digest bytes kept in the signature.

        Raises:
            ConfigurationError: If the secret is missing or too short.
        """
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ConfigurationError(
                f"Token secret must be set and at least {MIN_SECRET_LENGTH} characters",
                field="token.secret",
            )
        if not 1 <= signature_bytes <= hashlib.sha256().digest_size:
            raise ConfigurationError(
                "Signature length must be between 1 and 32 bytes",
                field="token.signature_bytes",
            )
        self._key = secret.encode("utf-8")
        self._signature_bytes = signature_bytes

    @classmethod
    def from_settings(cls, settings: TokenSettings) -> TokenSigner:
        """Build a signer from the token settings block."""
        return cls(
            settings.secret.get_secret_value(),
            signature_bytes=settings.signature_bytes,
        )

    def _digest(self, token: str, record_id: str, issued_at: datetime) -> bytes:
        payload = build_payload(token, record_id, issued_at)
        mac = hmac.new(self._key, payload.encode("utf-8"), hashlib.sha256)
        return mac.digest()[: self._signature_bytes]

    def sign(self, token: str, record_id: str, issued_at: datetime) -> str:
        """Compute the signature for a token binding.

        Deterministic for fixed inputs.

        Args:
            token: Token in canonical or display form.
            record_id: Identifier of the record the token belongs to.
            issued_at: Issuance time (millisecond precision is signed).

        Returns:
            Unpadded URL-safe base64 signature.
        """
        return _b64url_encode(self._digest(token, record_id, issued_at))

    def verify(
        self,
        token: str,
        signature: str,
        record_id: str,
        issued_at: datetime,
    ) -> bool:
        """Check a presented signature against the recomputed one.

        Undecodable input and length mismatches are reported as a plain
        mismatch before the constant-time comparison runs.

        Returns:
            True only if the signature matches exactly.
        """
        if not signature:
            return False

        provided = _b64url_decode(signature)
        if provided is None:
            return False

        expected = self._digest(token, record_id, issued_at)
        if len(provided) != len(expected):
            return False

        return hmac.compare_digest(provided, expected)
