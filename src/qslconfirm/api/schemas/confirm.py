"""Pydantic schemas for the public confirmation endpoints.

The recipient has no account; everything here is reachable by whoever
holds the card. Responses expose the QSO summary only after the token's
signature has been verified.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from qslconfirm.db.models.base import ConfirmationSource


class ConfirmRequest(BaseModel):
    """Request body for confirming receipt of a QSL card."""

    token: str = Field(..., min_length=1, max_length=64, description="Token, with or without dashes")
    signature: str = Field(..., min_length=1, max_length=128, description="Signature from the URL")
    pin: str | None = Field(None, max_length=16, description="PIN printed on the card")
    callsign: str | None = Field(None, max_length=32, description="Recipient callsign")
    email: str | None = Field(None, max_length=255, description="Recipient email")
    message: str | None = Field(None, max_length=2000, description="Note to the sender")
    source: ConfirmationSource = Field(
        ConfirmationSource.MANUAL,
        description="How the token was entered (qr or manual)",
    )


class QsoSummaryResponse(BaseModel):
    """QSO details for the confirmation page."""

    model_config = ConfigDict(from_attributes=True)

    callsign_worked: str
    qso_datetime: datetime
    band: str
    mode: str
    frequency: float | None = None


class InspectResponse(BaseModel):
    """Response for GET /confirm."""

    ok: bool = True
    token: str = Field(..., description="Token in display form")
    used: bool
    used_at: datetime | None = None
    requires_pin: bool
    expires_at: datetime
    qso: QsoSummaryResponse | None = None


class ConfirmResponse(BaseModel):
    """Response for a successful confirmation."""

    ok: bool = True
    token: str
    confirmed_at: datetime
    used_by: str | None = None
    source: ConfirmationSource
