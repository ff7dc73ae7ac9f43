"""Admin router for token issuance, revocation and log review.

All endpoints require the X-Admin-Key header. Issuance responses include
the PIN because the sender prints it on the card; listings never do.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from qslconfirm.api.dependencies import (
    AdminActor,
    Confirmations,
    DbSession,
    Issuer,
    LogWriter,
    Store,
    keep_attempt_log,
)
from qslconfirm.api.middleware.errors import NotFoundError
from qslconfirm.api.schemas.admin import (
    BatchIssueRequest,
    BatchIssueResponse,
    BatchIssueResultResponse,
    IssuedTokenResponse,
    IssueTokenRequest,
    LogEntryResponse,
    LogListResponse,
    RevocationResponse,
    RevokeRequest,
    TokenDetailResponse,
    TokenListResponse,
    TokenSummaryResponse,
)
from qslconfirm.db.models.base import ConfirmationEvent, TokenState
from qslconfirm.services.errors import TokenIdNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

PageLimit = Annotated[int, Query(ge=1, le=500)]
PageOffset = Annotated[int, Query(ge=0)]


# -----------------------------------------------------------------------------
# Issuance
# -----------------------------------------------------------------------------


@router.post(
    "/records/{record_id}/token",
    response_model=IssuedTokenResponse,
    status_code=status.HTTP_201_CREATED,
)
async def issue_token(
    record_id: str,
    issuer: Issuer,
    db: DbSession,
    admin: AdminActor,
    body: IssueTokenRequest | None = None,
) -> IssuedTokenResponse:
    """Issue the confirmation token for a record."""
    options = body or IssueTokenRequest()
    issued = await issuer.issue(
        record_id,
        use_pin=options.use_pin,
        expiry_days=options.expiry_days,
        actor=admin,
    )
    await db.commit()
    return IssuedTokenResponse.model_validate(issued)


@router.get("/records/{record_id}/token", response_model=TokenDetailResponse)
async def get_record_token(
    record_id: str,
    issuer: Issuer,
    admin: AdminActor,  # noqa: ARG001 - enforces admin authentication
) -> TokenDetailResponse:
    """Show the token issued for a record, with its signature recomputed."""
    row = await issuer.lookup(record_id)
    if row is None:
        raise NotFoundError("token for record", record_id)

    view = issuer.describe(row)
    return TokenDetailResponse(
        **IssuedTokenResponse.model_validate(view).model_dump(),
        state=row.state,
        used_at=row.used_at,
        used_by=row.used_by,
        revoked_at=row.revoked_at,
    )


@router.post("/tokens/batch", response_model=BatchIssueResponse)
async def issue_batch(
    body: BatchIssueRequest,
    issuer: Issuer,
    db: DbSession,
    admin: AdminActor,
) -> BatchIssueResponse:
    """Issue tokens for many records; failures are reported per record."""
    report = await issuer.issue_batch(
        body.record_ids,
        use_pin=body.use_pin,
        expiry_days=body.expiry_days,
        actor=admin,
    )
    await db.commit()
    return BatchIssueResponse(
        total=report.total,
        succeeded=report.succeeded,
        failed=report.failed,
        results=[BatchIssueResultResponse.model_validate(r) for r in report.results],
    )


# -----------------------------------------------------------------------------
# Revocation
# -----------------------------------------------------------------------------


@router.post("/tokens/{token_id}/revoke", response_model=RevocationResponse)
async def revoke_token(
    token_id: UUID,
    service: Confirmations,
    db: DbSession,
    admin: AdminActor,
    body: RevokeRequest | None = None,
) -> RevocationResponse:
    """Revoke a pending token so it can no longer be confirmed."""
    async with keep_attempt_log(db):
        result = await service.revoke(
            token_id,
            reason=body.reason if body else None,
            actor=admin,
        )
    return RevocationResponse.model_validate(result)


# -----------------------------------------------------------------------------
# Listings
# -----------------------------------------------------------------------------


@router.get("/tokens", response_model=TokenListResponse)
async def list_tokens(
    store: Store,
    admin: AdminActor,  # noqa: ARG001 - enforces admin authentication
    token_status: Annotated[TokenState | None, Query(alias="status")] = None,
    limit: PageLimit = 100,
    offset: PageOffset = 0,
) -> TokenListResponse:
    """List tokens, newest first, optionally filtered by state."""
    rows = await store.list_tokens(state=token_status, limit=limit, offset=offset)
    return TokenListResponse(
        items=[TokenSummaryResponse.model_validate(row) for row in rows],
        limit=limit,
        offset=offset,
    )


@router.get("/tokens/{token_id}/logs", response_model=LogListResponse)
async def list_token_logs(
    token_id: UUID,
    store: Store,
    log_writer: LogWriter,
    admin: AdminActor,  # noqa: ARG001 - enforces admin authentication
    limit: PageLimit = 100,
    offset: PageOffset = 0,
) -> LogListResponse:
    """Confirmation log for one token, newest first."""
    if await store.get_token(token_id) is None:
        raise TokenIdNotFoundError(token_id)

    entries = await log_writer.list_for_token(token_id, limit=limit, offset=offset)
    return LogListResponse(
        items=[LogEntryResponse.model_validate(e) for e in entries],
        limit=limit,
        offset=offset,
    )


@router.get("/logs", response_model=LogListResponse)
async def list_logs(
    log_writer: LogWriter,
    admin: AdminActor,  # noqa: ARG001 - enforces admin authentication
    event: ConfirmationEvent | None = None,
    limit: PageLimit = 100,
    offset: PageOffset = 0,
) -> LogListResponse:
    """Recent confirmation log entries across all tokens."""
    entries = await log_writer.list_recent(event=event, limit=limit, offset=offset)
    return LogListResponse(
        items=[LogEntryResponse.model_validate(e) for e in entries],
        limit=limit,
        offset=offset,
    )
