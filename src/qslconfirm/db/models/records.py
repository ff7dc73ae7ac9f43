"""QSO record model.

A record is the logged radio contact a QSL card acknowledges. Tokens are
issued against records; the record itself is maintained by the logbook side
of the application and only touched here to flag mailing and confirmation.
"""

from __future__ import annotations

from datetime import datetime  # noqa: TC003 - required at runtime for SQLAlchemy
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from qslconfirm.db.models.base import (
    Base,
    OptionalTimestampTZ,
    TimestampTZ,
)

if TYPE_CHECKING:
    from qslconfirm.db.models.tokens import QslToken


class QsoRecord(Base):
    """A logged contact that can receive at most one confirmation token."""

    __tablename__ = "qso_records"

    # Free-form identifier so logbook imports can keep their own keys
    record_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_at: Mapped[TimestampTZ]

    callsign_worked: Mapped[str] = mapped_column(String(32), nullable=False)
    qso_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    band: Mapped[str] = mapped_column(String(16), nullable=False)
    mode: Mapped[str] = mapped_column(String(16), nullable=False)
    frequency: Mapped[float | None] = mapped_column(Float, nullable=True)
    rst_sent: Mapped[str | None] = mapped_column(String(8), nullable=True)
    rst_recv: Mapped[str | None] = mapped_column(String(8), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Set when a token is issued and the card goes in the mail
    mailed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mailed_at: Mapped[OptionalTimestampTZ]

    # Set when the recipient confirms receipt
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confirmed_at: Mapped[OptionalTimestampTZ]

    # Zero or one token per record
    token: Mapped[QslToken | None] = relationship(
        "QslToken",
        back_populates="record",
        uselist=False,
    )

    __table_args__ = (
        Index("ix_qso_records_callsign_worked", "callsign_worked"),
        Index("ix_qso_records_mailed", "mailed"),
    )
