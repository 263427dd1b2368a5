"""
Outcome types — what the gate, connection flows, and sync batches report back.

Reason codes are a closed set; display text is resolved at the presentation
boundary (see ``qbolink.messages``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

from qbolink.models.credential import Credential


class ReasonCode(str, Enum):
    """Why a user must (re)connect, or why a flow failed."""

    NO_TOKEN = "no_token"
    TOKEN_INACTIVE = "token_inactive"
    REFRESH_TOKEN_EXPIRED = "refresh_token_expired"
    REFRESH_FAILED = "refresh_failed"
    INVALID_STATE = "invalid_state"
    MISSING_PARAMETERS = "missing_parameters"
    OAUTH_ERROR = "oauth_error"
    API_ERROR = "api_error"
    CALLBACK_ERROR = "callback_error"


@dataclass(frozen=True)
class Usable:
    """The gate resolved a credential that can be used right now."""

    credential: Credential


@dataclass(frozen=True)
class NeedsConnection:
    """The user has to go through the OAuth flow again."""

    reason: ReasonCode


AccessOutcome = Union[Usable, NeedsConnection]


@dataclass
class ConnectResult:
    """Result of starting a connection."""

    already_connected: bool
    authorization_url: str | None = None
    state_token: str | None = None
    redirect_to: str | None = None


@dataclass
class CallbackResult:
    """Result of handling the OAuth redirect back from Intuit."""

    success: bool
    redirect_to: str
    credential: Credential | None = None
    reason: ReasonCode | None = None
    detail: str | None = None


@dataclass
class ConnectionStatus:
    """Snapshot of a user's QuickBooks connection."""

    connected: bool = False
    company_name: str | None = None
    realm_id: str | None = None
    access_token_expires_at: datetime | None = None
    refresh_token_expires_at: datetime | None = None
    needs_refresh: bool = False


@dataclass
class SyncReport:
    """Per-batch push summary; failures do not abort the batch."""

    entity_type: str
    pushed: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed
