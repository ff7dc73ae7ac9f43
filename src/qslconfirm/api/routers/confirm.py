"""Public confirmation router.

The recipient opens the link from the card's QR code (or types the token
in), sees the QSO it acknowledges, and confirms receipt. Both endpoints
record every attempt in the confirmation log, including failed ones, so
the log entry is committed before the error response is returned.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Query, status

from qslconfirm.api.dependencies import Actor, Confirmations, DbSession, keep_attempt_log
from qslconfirm.api.schemas.confirm import (
    ConfirmRequest,
    ConfirmResponse,
    InspectResponse,
    QsoSummaryResponse,
)
from qslconfirm.services.confirmation import ConfirmationIdentity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/confirm", tags=["confirm"])


@router.get("", response_model=InspectResponse)
async def inspect_token(
    token: Annotated[str, Query(min_length=1, max_length=64)],
    sig: Annotated[str, Query(min_length=1, max_length=128)],
    service: Confirmations,
    db: DbSession,
    actor: Actor,
) -> InspectResponse:
    """Show what a token confirms without consuming it."""
    async with keep_attempt_log(db):
        result = await service.inspect(token, sig, actor=actor)

    qso = None
    if result.record is not None:
        qso = QsoSummaryResponse.model_validate(result.record, from_attributes=True)
    return InspectResponse(
        ok=result.ok,
        token=result.token,
        used=result.used,
        used_at=result.used_at,
        requires_pin=result.requires_pin,
        expires_at=result.expires_at,
        qso=qso,
    )


@router.post("", response_model=ConfirmResponse, status_code=status.HTTP_200_OK)
async def confirm_receipt(
    body: ConfirmRequest,
    service: Confirmations,
    db: DbSession,
    actor: Actor,
) -> ConfirmResponse:
    """Confirm receipt of a QSL card. Succeeds at most once per token."""
    identity = ConfirmationIdentity(
        callsign=body.callsign,
        email=body.email,
        message=body.message,
    )
    async with keep_attempt_log(db):
        result = await service.confirm(
            body.token,
            body.signature,
            pin=body.pin,
            identity=identity,
            source=body.source,
            actor=actor,
        )

    return ConfirmResponse(
        token=result.token,
        confirmed_at=result.confirmed_at,
        used_by=result.used_by,
        source=result.source,
    )
