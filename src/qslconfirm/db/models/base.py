"""Base model definitions and common types.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Reusable column type annotations
- Enum types shared by the token and log models
"""

import enum
import uuid
from datetime import datetime
from typing import Annotated

from sqlalchemy import DateTime, MetaData, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

type_registry = registry()

# UUID primary key with server-side default generation
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
]

# Timestamp with timezone, defaults to now
TimestampTZ = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), server_default=text("now()")),
]

OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(DateTime(timezone=True), nullable=True),
]


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum values (not member names) so the database sees lowercase labels."""
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Declarative base for all QSL Confirm models."""

    metadata = metadata
    registry = type_registry


# =============================================================================
# Common Enums
# =============================================================================


class ConfirmationEvent(enum.Enum):
    """Lifecycle events recorded in the confirmation log.

    Values:
        GENERATED: Token issued for a record
        SCANNED: Confirmation page opened, or a confirmation attempt that
            did not change state (invalid, expired, duplicate, wrong PIN)
        CONFIRMED: Receipt confirmed; token consumed
        REVOKED: Token invalidated by an administrator before use
    """

    GENERATED = "generated"
    SCANNED = "scanned"
    CONFIRMED = "confirmed"
    REVOKED = "revoked"


class ConfirmationSource(enum.Enum):
    """Channel a confirmation was submitted through, as declared by the client.

    Values:
        QR: Link opened from the QR code printed on the card
        MANUAL: Token typed in by hand
    """

    QR = "qr"
    MANUAL = "manual"


class TokenState(enum.Enum):
    """Derived state of a confirmation token.

    Values:
        PENDING: Issued, not yet used
        CONFIRMED: Used for a successful confirmation (terminal)
        REVOKED: Invalidated by an administrator (terminal)
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVOKED = "revoked"
