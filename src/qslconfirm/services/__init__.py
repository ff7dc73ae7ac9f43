"""QSL Confirm service layer.

This package contains the token protocol and its collaborators:
- Alphabet codec: token/PIN generation and normalization
- TokenSigner: HMAC binding of a token to its record and issuance time
- Expiry policy
- TokenIssuer: one token per record, single and batch issuance
- ConfirmationService: inspect, confirm and revoke
- ConfirmationLogWriter: append-only confirmation log
- TokenStore / SQLTokenStore: storage collaborator
"""

from qslconfirm.services.audit_log import ActorContext, ConfirmationLogWriter
from qslconfirm.services.confirmation import (
    ConfirmationIdentity,
    ConfirmationResult,
    ConfirmationService,
    InspectionResult,
    RecordSummary,
    RevocationResult,
)
from qslconfirm.services.errors import TokenProtocolError
from qslconfirm.services.issuer import (
    BatchIssueReport,
    BatchIssueResult,
    IssuedToken,
    TokenIssuer,
    build_confirmation_url,
)
from qslconfirm.services.signer import TokenSigner
from qslconfirm.services.store import SQLTokenStore, TokenStore, UsageFields

__all__ = [
    "ActorContext",
    "BatchIssueReport",
    "BatchIssueResult",
    "ConfirmationIdentity",
    "ConfirmationLogWriter",
    "ConfirmationResult",
    "ConfirmationService",
    "InspectionResult",
    "IssuedToken",
    "RecordSummary",
    "RevocationResult",
    "SQLTokenStore",
    "TokenIssuer",
    "TokenProtocolError",
    "TokenSigner",
    "TokenStore",
    "UsageFields",
]
