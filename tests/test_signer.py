"""Tests for the token signer.

Tests cover:
- Determinism and payload format
- Forgery resistance (any changed input fails)
- Malformed signature handling
- Secret validation at construction
"""

import base64
import hashlib
import hmac
from datetime import UTC, datetime, timedelta

import pytest

from qslconfirm.core.config import ConfigurationError
from qslconfirm.services.signer import TokenSigner, build_payload, epoch_millis

SECRET = "s" * 32
ISSUED_AT = datetime(2026, 4, 1, 12, 0, 0, 123000, tzinfo=UTC)


@pytest.fixture
def signer() -> TokenSigner:
    return TokenSigner(SECRET)


class TestPayload:
    """Tests for the signed payload."""

    def test_epoch_millis(self):
        assert epoch_millis(datetime(1970, 1, 1, 0, 0, 1, tzinfo=UTC)) == 1000

    def test_epoch_millis_treats_naive_as_utc(self):
        naive = datetime(2026, 4, 1, 12, 0, 0)
        assert epoch_millis(naive) == epoch_millis(naive.replace(tzinfo=UTC))

    def test_payload_uses_normalized_token(self):
        payload = build_payload("abcd-2345-ef", "Q-1", ISSUED_AT)
        assert payload == f"ABCD2345EF|Q-1|{epoch_millis(ISSUED_AT)}"

    def test_signature_matches_reference_hmac(self, signer):
        """Signature is truncated HMAC-SHA256 in unpadded URL-safe base64."""
        payload = build_payload("ABCD2345EF", "Q-1", ISSUED_AT).encode()
        digest = hmac.new(SECRET.encode(), payload, hashlib.sha256).digest()[:12]
        expected = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()

        assert signer.sign("ABCD2345EF", "Q-1", ISSUED_AT) == expected
        assert len(expected) == 16


class TestSignAndVerify:
    """Tests for sign/verify behavior."""

    def test_sign_is_deterministic(self, signer):
        assert signer.sign("ABCD2345EF", "Q-1", ISSUED_AT) == signer.sign(
            "ABCD2345EF", "Q-1", ISSUED_AT
        )

    def test_verify_accepts_display_form(self, signer):
        sig = signer.sign("ABCD2345EF", "Q-1", ISSUED_AT)
        assert signer.verify("abcd-2345-ef", sig, "Q-1", ISSUED_AT)

    def test_verify_rejects_other_record(self, signer):
        sig = signer.sign("ABCD2345EF", "Q-1", ISSUED_AT)
        assert not signer.verify("ABCD2345EF", sig, "Q-2", ISSUED_AT)

    def test_verify_rejects_other_token(self, signer):
        sig = signer.sign("ABCD2345EF", "Q-1", ISSUED_AT)
        assert not signer.verify("ABCD2345EG", sig, "Q-1", ISSUED_AT)

    def test_verify_rejects_shifted_issued_at(self, signer):
        sig = signer.sign("ABCD2345EF", "Q-1", ISSUED_AT)
        assert not signer.verify("ABCD2345EF", sig, "Q-1", ISSUED_AT + timedelta(milliseconds=1))

    def test_sub_millisecond_change_does_not_matter(self, signer):
        sig = signer.sign("ABCD2345EF", "Q-1", ISSUED_AT)
        assert signer.verify("ABCD2345EF", sig, "Q-1", ISSUED_AT + timedelta(microseconds=500))

    def test_verify_rejects_other_secret(self, signer):
        sig = TokenSigner("t" * 32).sign("ABCD2345EF", "Q-1", ISSUED_AT)
        assert not signer.verify("ABCD2345EF", sig, "Q-1", ISSUED_AT)

    @pytest.mark.parametrize("bad", ["", "!!!!", "abc", "A" * 40, "a+b/c=="])
    def test_verify_rejects_malformed_signatures(self, signer, bad):
        assert not signer.verify("ABCD2345EF", bad, "Q-1", ISSUED_AT)

    def test_verify_rejects_truncated_signature(self, signer):
        sig = signer.sign("ABCD2345EF", "Q-1", ISSUED_AT)
        assert not signer.verify("ABCD2345EF", sig[:-4], "Q-1", ISSUED_AT)


class TestSecretValidation:
    """The signer refuses unusable secrets at construction."""

    @pytest.mark.parametrize("secret", ["", "short", "x" * 31])
    def test_short_secret_rejected(self, secret):
        with pytest.raises(ConfigurationError) as exc_info:
            TokenSigner(secret)
        assert exc_info.value.field == "token.secret"

    def test_minimum_length_accepted(self):
        TokenSigner("x" * 32)

    def test_invalid_signature_length_rejected(self):
        with pytest.raises(ConfigurationError):
            TokenSigner(SECRET, signature_bytes=64)

    def test_from_settings(self, token_settings):
        signer = TokenSigner.from_settings(token_settings)
        sig = signer.sign("ABCD2345EF", "Q-1", ISSUED_AT)
        assert signer.verify("ABCD2345EF", sig, "Q-1", ISSUED_AT)
