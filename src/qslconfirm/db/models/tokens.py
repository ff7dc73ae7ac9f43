"""Confirmation token and confirmation log models.

The token signature is deliberately not a column: it is recomputed from
(token, record_id, issued_at) on every verification, so there is no second
copy that could drift from the signed inputs.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime  # noqa: TC003 - required at runtime for SQLAlchemy
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import INET, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qslconfirm.db.models.base import (
    Base,
    ConfirmationEvent,
    ConfirmationSource,
    OptionalTimestampTZ,
    TimestampTZ,
    TokenState,
    UUIDPrimaryKey,
    enum_values,
)

if TYPE_CHECKING:
    from qslconfirm.db.models.records import QsoRecord


class QslToken(Base):
    """Single-use confirmation token bound to one QSO record."""

    __tablename__ = "qsl_tokens"

    token_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    # UNIQUE: a second issuance for the same record loses at the database
    record_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("qso_records.record_id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    # Canonical (dash-free, uppercase) form
    token: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)

    pin: Mapped[str | None] = mapped_column(String(8), nullable=True)

    # Signed input; never updated after insert
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[OptionalTimestampTZ]

    # Written once by the confirmation transition
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[OptionalTimestampTZ]
    used_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    used_ip: Mapped[str | None] = mapped_column(INET, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[ConfirmationSource | None] = mapped_column(
        Enum(
            ConfirmationSource,
            name="confirmation_source",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=True,
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Written once by administrative revocation
    revoked_at: Mapped[OptionalTimestampTZ]
    revoked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    revoke_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    record: Mapped[QsoRecord] = relationship("QsoRecord", back_populates="token")
    logs: Mapped[list[ConfirmationLog]] = relationship(
        "ConfirmationLog",
        back_populates="qsl_token",
        order_by="ConfirmationLog.created_at",
    )

    __table_args__ = (
        Index("ix_qsl_tokens_used", "used"),
        Index("ix_qsl_tokens_issued_at", "issued_at"),
    )

    @property
    def state(self) -> TokenState:
        """Derived lifecycle state."""
        if self.used:
            return TokenState.CONFIRMED
        if self.revoked_at is not None:
            return TokenState.REVOKED
        return TokenState.PENDING

    @property
    def requires_pin(self) -> bool:
        """Whether confirmation needs the out-of-band PIN."""
        return bool(self.pin)


class ConfirmationLog(Base):
    """Append-only token lifecycle event.

    token_id is NULL only for submissions whose token string matched no
    stored token; those are kept for forensics.
    """

    __tablename__ = "confirmation_logs"

    log_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    token_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("qsl_tokens.token_id", ondelete="RESTRICT"),
        nullable=True,
    )

    event: Mapped[ConfirmationEvent] = mapped_column(
        Enum(
            ConfirmationEvent,
            name="confirmation_event",
            create_constraint=True,
            values_callable=enum_values,
        ),
        nullable=False,
    )

    # Named 'meta' to avoid SQLAlchemy's reserved 'metadata'
    meta: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(INET, nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    qsl_token: Mapped[QslToken | None] = relationship("QslToken", back_populates="logs")

    __table_args__ = (
        Index("ix_confirmation_logs_token_id", "token_id"),
        Index("ix_confirmation_logs_event", "event"),
        Index("ix_confirmation_logs_created_at", "created_at"),
    )
