"""
Error taxonomy for qbolink.

Expected steady-state conditions (expired tokens, missing connection) are
modelled as outcomes by the access gate; the exceptions here are what the
lifecycle manager and sync engine raise when a caller must decide.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from qbolink.models import Credential, ReasonCode


class QBOLinkError(Exception):
    """Base class for all qbolink errors."""


class InvalidStateError(QBOLinkError):
    """The OAuth state is unknown, expired, or already consumed."""


class MissingParametersError(QBOLinkError):
    """The OAuth callback lacked the authorization code or realm id."""


class AlreadyConnectedError(QBOLinkError):
    """The user already holds an active, unexpired credential.

    Informational: callers usually treat this as success.
    """

    def __init__(self, credential: Credential) -> None:
        super().__init__(f"User {credential.user_id} is already connected to QuickBooks")
        self.credential = credential


class RefreshTokenExpiredError(QBOLinkError):
    """The refresh token has passed its expiry; the user must reconnect."""


class NotFoundError(QBOLinkError):
    """A local synced record does not exist."""


class ConnectionRequiredError(QBOLinkError):
    """No usable credential could be resolved for the user."""

    def __init__(self, reason: ReasonCode) -> None:
        super().__init__(f"QuickBooks connection required ({reason.value})")
        self.reason = reason


class RemoteServiceError(QBOLinkError):
    """Any failure reported by (or while talking to) the QuickBooks API.

    Attributes:
        code: Provider error code or HTTP status, when known.
        message: Provider error text. Never shown to end users unless
            detailed errors are enabled.
        status_code: HTTP status of the failed response, if there was one.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        detail: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.detail = detail

    @property
    def is_not_found(self) -> bool:
        """True when the remote side says the object does not exist."""
        return self.status_code == 404 or self.code in {"610", "404"}

    @property
    def is_transient(self) -> bool:
        """True for failures worth retrying on idempotent reads."""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


class AccessTokenExpiredError(RemoteServiceError):
    """QuickBooks rejected the access token (HTTP 401).

    Resolve a fresh credential through the access gate and try again.
    """
