"""QSL Confirm API routers.

- confirm: public token inspection and confirmation
- admin: token issuance, revocation and log review (admin key)
- health: database readiness
"""

from qslconfirm.api.routers.admin import router as admin_router
from qslconfirm.api.routers.confirm import router as confirm_router
from qslconfirm.api.routers.health import router as health_router

__all__ = [
    "admin_router",
    "confirm_router",
    "health_router",
]
