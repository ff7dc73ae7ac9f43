"""SQLAlchemy ORM models for QSL Confirm.

- base: Common metadata, type definitions and enums
- records: QSO records that tokens are issued against
- tokens: Confirmation tokens and the confirmation log
"""

from qslconfirm.db.models.base import (
    Base,
    ConfirmationEvent,
    ConfirmationSource,
    TokenState,
    metadata,
)
from qslconfirm.db.models.records import QsoRecord
from qslconfirm.db.models.tokens import ConfirmationLog, QslToken

__all__ = [
    "Base",
    "ConfirmationEvent",
    "ConfirmationLog",
    "ConfirmationSource",
    "QslToken",
    "QsoRecord",
    "TokenState",
    "metadata",
]
