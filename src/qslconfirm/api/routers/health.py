"""Database health router."""

from __future__ import annotations

from fastapi import APIRouter

from qslconfirm.api.dependencies import Store
from qslconfirm.services.store import REQUIRED_TABLES

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/db")
async def database_health(store: Store) -> dict[str, object]:
    """Check the database is reachable and migrated.

    Returns 503 with the missing table names if the schema is not ready.
    """
    await store.check_schema()
    return {"status": "healthy", "tables": list(REQUIRED_TABLES)}
