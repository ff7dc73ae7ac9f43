"""Pydantic schemas for the admin endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress, field_validator

from qslconfirm.db.models.base import ConfirmationEvent, ConfirmationSource, TokenState
from qslconfirm.services.alphabet import format_token

MAX_BATCH_SIZE = 500


class IssueTokenRequest(BaseModel):
    """Options for issuing one token. Omitted fields use the configured policy."""

    use_pin: bool | None = Field(None, description="Generate a PIN for step-up")
    expiry_days: int | None = Field(None, ge=1, le=3650, description="Token lifetime in days")


class BatchIssueRequest(IssueTokenRequest):
    """Request body for batch issuance."""

    record_ids: list[str] = Field(..., min_length=1, max_length=MAX_BATCH_SIZE)


class IssuedTokenResponse(BaseModel):
    """Token as handed to the sender for printing.

    The PIN is included because the sender prints it on the card.
    """

    model_config = ConfigDict(from_attributes=True)

    token_id: UUID
    record_id: str
    token: str
    display_token: str
    signature: str
    pin: str | None = None
    confirmation_url: str
    issued_at: datetime
    expires_at: datetime


class TokenDetailResponse(IssuedTokenResponse):
    """Issued token plus its current lifecycle state."""

    state: TokenState
    used_at: datetime | None = None
    used_by: str | None = None
    revoked_at: datetime | None = None


class BatchIssueResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    record_id: str
    ok: bool
    issued: IssuedTokenResponse | None = None
    error_code: str | None = None
    error_message: str | None = None


class BatchIssueResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    succeeded: int
    failed: int
    results: list[BatchIssueResultResponse]


class RevokeRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class RevocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    token_id: UUID
    record_id: str
    revoked_at: datetime
    revoked_by: str | None = None
    reason: str | None = None


class TokenSummaryResponse(BaseModel):
    """Row in the admin token list. Never includes the PIN."""

    model_config = ConfigDict(from_attributes=True)

    token_id: UUID
    record_id: str
    token: str
    state: TokenState
    requires_pin: bool
    issued_at: datetime
    expires_at: datetime | None = None
    used_at: datetime | None = None
    used_by: str | None = None
    source: ConfirmationSource | None = None
    message: str | None = None
    revoked_at: datetime | None = None
    revoke_reason: str | None = None

    @field_validator("token")
    @classmethod
    def display_form(cls, v: str) -> str:
        return format_token(v)


class TokenListResponse(BaseModel):
    items: list[TokenSummaryResponse]
    limit: int
    offset: int


class LogEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    log_id: UUID
    token_id: UUID | None = None
    event: ConfirmationEvent
    meta: dict[str, Any] | None = None
    ip_address: IPvAnyAddress | None = None
    user_agent: str | None = None
    created_at: datetime


class LogListResponse(BaseModel):
    items: list[LogEntryResponse]
    limit: int
    offset: int
