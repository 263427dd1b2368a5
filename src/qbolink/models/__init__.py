"""Domain models for QuickBooks connections and sync outcomes."""

from qbolink.models.credential import (
    AccountMetadata,
    Credential,
    OAuthState,
    TokenPair,
    utcnow,
)
from qbolink.models.outcomes import (
    AccessOutcome,
    CallbackResult,
    ConnectionStatus,
    ConnectResult,
    NeedsConnection,
    ReasonCode,
    SyncReport,
    Usable,
)

__all__ = [
    "AccessOutcome",
    "AccountMetadata",
    "CallbackResult",
    "ConnectResult",
    "ConnectionStatus",
    "Credential",
    "NeedsConnection",
    "OAuthState",
    "ReasonCode",
    "SyncReport",
    "TokenPair",
    "Usable",
    "utcnow",
]
