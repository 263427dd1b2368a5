"""
Token lifecycle manager — authorization, code exchange, refresh, revocation.

Credential state machine::

    NONE -> PENDING (state issued) -> ACTIVE (valid)
         -> ACTIVE (access expired, refresh valid) -> ACTIVE (refreshed) -> ...
         -> INACTIVE (refresh expired | revoked | refresh failed)

INACTIVE is terminal for a stored credential; reconnecting creates a new one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from qbolink.auth.state_store import OAuthStateStore
from qbolink.auth.token_store import TokenStore
from qbolink.clients.base import AccountingClient
from qbolink.config import QBOLinkConfig
from qbolink.errors import (
    AlreadyConnectedError,
    ConnectionRequiredError,
    InvalidStateError,
    MissingParametersError,
    RefreshTokenExpiredError,
    RemoteServiceError,
)
from qbolink.models import Credential, ReasonCode, utcnow

logger = logging.getLogger("qbolink.auth.lifecycle")


class TokenLifecycleManager:
    """Orchestrates the OAuth2 lifecycle of QuickBooks credentials.

    Usage::

        manager = TokenLifecycleManager(client, token_store, state_store, config)
        url, state = manager.begin_authorization(user_id="42")
        # ... user consents, Intuit redirects back with code/realmId/state ...
        credential = await manager.complete_authorization(code, realm_id, state)
    """

    def __init__(
        self,
        client: AccountingClient,
        tokens: TokenStore,
        states: OAuthStateStore,
        config: QBOLinkConfig,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.client = client
        self.tokens = tokens
        self.states = states
        self.config = config
        self._clock = clock

    # ------------------------------------------------------------------
    # Expiry checks
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    def is_access_expired(self, credential: Credential) -> bool:
        return credential.is_access_token_expired(self._clock())

    def is_refresh_expired(self, credential: Credential) -> bool:
        return credential.is_refresh_token_expired(self._clock())

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def build_authorization_url(self, state: str | None = None) -> str:
        """The Intuit consent URL; pure and idempotent."""
        return self.client.authorization_url(state)

    def begin_authorization(self, user_id: str) -> tuple[str, str]:
        """Issue a fresh OAuth state for the user and return (url, state_token).

        Raises:
            AlreadyConnectedError: The user already has a usable credential.
        """
        existing = self.tokens.find_active(user_id)
        if existing and not self.is_access_expired(existing):
            raise AlreadyConnectedError(existing)

        state = self.states.create_for_user(user_id, self.config.oauth.state_ttl_minutes)
        logger.info("Starting QuickBooks authorization for user %s", user_id)
        return self.build_authorization_url(state.state_token), state.state_token

    async def complete_authorization(
        self,
        code: str | None,
        realm_id: str | None,
        state_token: str | None,
    ) -> Credential:
        """Validate the callback, exchange the code, and store the new credential.

        The state is consumed before anything else can fail, so a replayed
        callback is rejected even when the first attempt errored downstream.

        Raises:
            InvalidStateError: Unknown, expired, or already-used state.
            MissingParametersError: ``code`` or ``realm_id`` absent.
            RemoteServiceError: The code exchange was rejected.
        """
        state = self.states.consume(state_token or "")
        if state is None:
            raise InvalidStateError("Invalid or expired OAuth state")

        self.states.cleanup()

        if not code or not realm_id:
            raise MissingParametersError("Missing required OAuth parameters (code or realmId)")

        try:
            pair = await self.client.exchange_code(code, realm_id)
        except RemoteServiceError as e:
            self._log_error("Failed to exchange authorization code", e)
            raise

        now = self._clock()
        if not pair.refresh_token:
            raise RemoteServiceError("QuickBooks did not issue a refresh token", code="invalid_token_response")
        credential = Credential(
            user_id=state.user_id,
            realm_id=realm_id,
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            access_token_expires_at=now + timedelta(
                seconds=pair.expires_in or self.config.tokens.access_token_lifetime
            ),
            refresh_token_expires_at=now + timedelta(
                seconds=pair.refresh_expires_in or self.config.tokens.refresh_token_lifetime
            ),
            is_active=True,
        )

        # Company info is optional: log but don't fail.
        try:
            metadata = await self.client.fetch_account_metadata(credential)
        except Exception as e:
            self._log_error("Failed to retrieve company info", e)
        else:
            credential = credential.model_copy(update={
                "company_name": metadata.company_name,
                "company_email": metadata.company_email,
            })

        saved = self.tokens.create_active(credential)
        logger.info(
            "User %s connected to QuickBooks realm %s%s",
            saved.user_id, saved.realm_id,
            f" ({saved.company_name})" if saved.company_name else "",
        )
        return saved

    # ------------------------------------------------------------------
    # Refresh / revoke
    # ------------------------------------------------------------------

    async def refresh(self, credential: Credential) -> Credential:
        """Exchange the refresh token for a new access token and persist it.

        Raises:
            RefreshTokenExpiredError: The caller must deactivate and reconnect.
            RemoteServiceError: Intuit rejected the refresh; the credential
                has been deactivated.
            ConnectionRequiredError: The credential was deactivated while the
                refresh was in flight; the new tokens were discarded.
        """
        if self.is_refresh_expired(credential):
            raise RefreshTokenExpiredError(
                f"Refresh token for credential {credential.id} expired at "
                f"{credential.refresh_token_expires_at.isoformat()}"
            )

        try:
            pair = await self.client.refresh_token(credential.refresh_token, credential.realm_id)
        except RemoteServiceError as e:
            self._log_error("Failed to refresh QuickBooks access token", e)
            self.tokens.deactivate(credential)
            raise

        updated = credential.apply_tokens(
            pair,
            now=self._clock(),
            access_lifetime=self.config.tokens.access_token_lifetime,
        )
        saved = self.tokens.save_refreshed(updated)
        if saved is None:
            raise ConnectionRequiredError(ReasonCode.TOKEN_INACTIVE)
        logger.info(
            "Refreshed access token for user %s (expires %s)",
            saved.user_id, saved.access_token_expires_at.isoformat(),
        )
        return saved

    async def revoke(self, credential: Credential) -> bool:
        """Best-effort revocation at Intuit. Never raises on remote failure."""
        try:
            return await self.client.revoke(credential.refresh_token, credential.realm_id)
        except RemoteServiceError as e:
            self._log_error("Failed to revoke tokens", e)
            return False

    async def fetch_metadata(self, credential: Credential) -> Credential:
        """Backfill company metadata; returns the credential unchanged on failure."""
        try:
            metadata = await self.client.fetch_account_metadata(credential)
        except Exception as e:
            self._log_error("Failed to retrieve company info", e)
            return credential
        if credential.id is None:
            return credential.model_copy(update={
                "company_name": metadata.company_name,
                "company_email": metadata.company_email,
            })
        saved = self.tokens.update_metadata(credential.id, metadata.company_name, metadata.company_email)
        return saved or credential

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log_error(self, message: str, exc: Exception) -> None:
        if not self.config.errors.log_errors:
            return
        logger.error(
            "%s: %s", message, exc,
            exc_info=exc if self.config.errors.show_detailed_errors else None,
        )
