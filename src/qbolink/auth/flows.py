"""
Connection flows — connect, callback, disconnect, status, manual refresh.

This is the surface an HTTP layer (or the CLI) drives. It converts
lifecycle exceptions into result objects carrying a redirect target and a
reason code; display text is left to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from qbolink.auth.gate import AccessGate
from qbolink.auth.lifecycle import TokenLifecycleManager
from qbolink.errors import (
    AlreadyConnectedError,
    ConnectionRequiredError,
    InvalidStateError,
    MissingParametersError,
    RefreshTokenExpiredError,
    RemoteServiceError,
)
from qbolink.models import CallbackResult, ConnectionStatus, ConnectResult, Credential, ReasonCode

logger = logging.getLogger("qbolink.auth.flows")


class ConnectionFlow:
    """High-level connection operations for one application."""

    def __init__(self, manager: TokenLifecycleManager, gate: AccessGate | None = None) -> None:
        self.manager = manager
        self.gate = gate or AccessGate(manager)
        self.config = manager.config

    def connect(self, user_id: str) -> ConnectResult:
        """Start (or short-circuit) the OAuth flow for a user."""
        try:
            url, state = self.manager.begin_authorization(user_id)
        except AlreadyConnectedError:
            logger.info("User %s is already connected to QuickBooks", user_id)
            return ConnectResult(already_connected=True, redirect_to=self.config.success_redirect)
        return ConnectResult(already_connected=False, authorization_url=url, state_token=state, redirect_to=url)

    async def handle_callback(self, params: Mapping[str, Any]) -> CallbackResult:
        """Handle Intuit's redirect: ``code``, ``realmId``, ``state`` and maybe ``error``."""
        error = params.get("error")
        if error:
            description = params.get("error_description") or "Unknown OAuth error"
            logger.warning("QuickBooks returned OAuth error %s: %s", error, description)
            return self._failure(ReasonCode.OAUTH_ERROR, f"OAuth Error: {error} - {description}")

        try:
            credential = await self.manager.complete_authorization(
                params.get("code"),
                params.get("realmId") or params.get("realm_id"),
                params.get("state"),
            )
        except InvalidStateError as e:
            return self._failure(ReasonCode.INVALID_STATE, str(e))
        except MissingParametersError as e:
            return self._failure(ReasonCode.MISSING_PARAMETERS, str(e))
        except RemoteServiceError as e:
            return self._failure(ReasonCode.API_ERROR, f"QuickBooks API error: {e.message}")
        except Exception as e:
            return self._failure(ReasonCode.CALLBACK_ERROR, f"Callback error: {e}", exc=e)

        return CallbackResult(success=True, redirect_to=self.config.success_redirect, credential=credential)

    async def disconnect(self, user_id: str) -> bool:
        """Revoke remotely (best effort), then deactivate locally regardless.

        Holds the user's gate lock, same as a refresh.
        """
        async with self.gate.lock_for(user_id):
            credential = self.manager.tokens.find_active(user_id)
            if credential is None:
                return False
            revoked = await self.manager.revoke(credential)
            if not revoked:
                logger.warning("Remote revocation failed for user %s; deactivating locally", user_id)
            self.manager.tokens.deactivate(credential)
        logger.info("User %s disconnected from QuickBooks", user_id)
        return True

    async def status(self, user_id: str) -> ConnectionStatus:
        """Connection snapshot. Backfills company metadata the callback could not fetch."""
        credential = self.manager.tokens.find_active(user_id)
        if credential is None:
            return ConnectionStatus()

        if credential.company_name is None and not self.manager.is_access_expired(credential):
            credential = await self.manager.fetch_metadata(credential)

        return ConnectionStatus(
            connected=True,
            company_name=credential.company_name,
            realm_id=credential.realm_id,
            access_token_expires_at=credential.access_token_expires_at,
            refresh_token_expires_at=credential.refresh_token_expires_at,
            needs_refresh=self.manager.is_access_expired(credential),
        )

    async def refresh_now(self, user_id: str) -> Credential:
        """Force a refresh of the user's active credential.

        Raises:
            ConnectionRequiredError: No active credential, or it cannot be refreshed.
            RemoteServiceError: Intuit rejected the refresh.
        """
        async with self.gate.lock_for(user_id):
            credential = self.manager.tokens.find_active(user_id)
            if credential is None:
                raise ConnectionRequiredError(ReasonCode.NO_TOKEN)
            try:
                return await self.manager.refresh(credential)
            except RefreshTokenExpiredError:
                self.manager.tokens.deactivate(credential)
                raise ConnectionRequiredError(ReasonCode.REFRESH_TOKEN_EXPIRED) from None

    def _failure(self, reason: ReasonCode, detail: str, exc: Exception | None = None) -> CallbackResult:
        if self.config.errors.log_errors:
            logger.error("QuickBooks callback failed (%s): %s", reason.value, detail, exc_info=exc)
        return CallbackResult(
            success=False,
            redirect_to=self.config.connect_redirect,
            reason=reason,
            detail=detail,
        )
