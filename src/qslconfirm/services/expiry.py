"""Token expiry policy."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

DEFAULT_EXPIRY_DAYS = 365


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def compute_expires_at(issued_at: datetime, days: int = DEFAULT_EXPIRY_DAYS) -> datetime:
    """Expiry time for a token issued at ``issued_at`` with a lifetime in days."""
    return as_utc(issued_at) + timedelta(days=days)


def effective_expiry(
    issued_at: datetime,
    expires_at: datetime | None = None,
    default_days: int = DEFAULT_EXPIRY_DAYS,
) -> datetime:
    """The explicit expiry if stored, otherwise issued_at plus the default lifetime."""
    if expires_at is not None:
        return as_utc(expires_at)
    return compute_expires_at(issued_at, default_days)


def is_token_expired(
    issued_at: datetime,
    expires_at: datetime | None = None,
    now: datetime | None = None,
    default_days: int = DEFAULT_EXPIRY_DAYS,
) -> bool:
    """Check whether a token is past its expiry.

    Args:
        issued_at: When the token was issued.
        expires_at: Explicit expiry, if one was stored.
        now: Reference time; defaults to the current UTC time.
        default_days: Lifetime applied when there is no explicit expiry.

    Returns:
        True if ``now`` is strictly after the effective expiry.
    """
    reference = as_utc(now) if now is not None else datetime.now(UTC)
    return reference > effective_expiry(issued_at, expires_at, default_days)
