"""Human-writable token alphabet.

Tokens are drawn from digits and uppercase letters without I and O, which
are too easily confused with 1 and 0 when copied off a card by hand.
The canonical form has no separators; the display form groups characters
by four (ABCD-EFGH-JK) purely to make transcription easier.
"""

from __future__ import annotations

import secrets

TOKEN_ALPHABET = "0123456789ABCDEFGHJKLMNPQRSTUVWXYZ"
PIN_ALPHABET = "0123456789"

DEFAULT_TOKEN_LENGTH = 10
DEFAULT_PIN_LENGTH = 6
SEGMENT_SIZE = 4
SEPARATOR = "-"

_ALPHABET_SET = frozenset(TOKEN_ALPHABET)


def _random_string(alphabet: str, length: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_token(length: int = DEFAULT_TOKEN_LENGTH) -> str:
    """Generate a canonical token from a cryptographically secure source."""
    return _random_string(TOKEN_ALPHABET, length)


def generate_pin(length: int = DEFAULT_PIN_LENGTH) -> str:
    """Generate a numeric PIN from a cryptographically secure source."""
    return _random_string(PIN_ALPHABET, length)


def normalize_token(value: str) -> str:
    """Return the canonical form: separators and whitespace removed, uppercased.

    Idempotent, and normalize_token(format_token(t)) == normalize_token(t).
    """
    return "".join(value.split()).replace(SEPARATOR, "").upper()


def format_token(token: str) -> str:
    """Return the display form with a separator every four characters."""
    canonical = normalize_token(token)
    return SEPARATOR.join(
        canonical[i : i + SEGMENT_SIZE] for i in range(0, len(canonical), SEGMENT_SIZE)
    )


def is_well_formed(value: str, length: int = DEFAULT_TOKEN_LENGTH) -> bool:
    """Check that a submitted value could be a token of the given length."""
    canonical = normalize_token(value)
    return len(canonical) == length and all(c in _ALPHABET_SET for c in canonical)
