"""
Access gate — resolve a usable credential at request time.

Given a user, the gate returns ``Usable(credential)`` (refreshing the access
token on demand) or ``NeedsConnection(reason)``. Expiry is an expected
outcome here, never an exception.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from qbolink.auth.lifecycle import TokenLifecycleManager
from qbolink.errors import ConnectionRequiredError, RefreshTokenExpiredError, RemoteServiceError
from qbolink.models import AccessOutcome, Credential, NeedsConnection, ReasonCode, Usable

logger = logging.getLogger("qbolink.auth.gate")


class AccessGate:
    """Per-user check-then-refresh, serialized so concurrent requests for
    the same user never race two refreshes of one credential.

    Waiters re-read the credential after acquiring the lock and so observe
    a refresh that completed while they were queued.
    """

    def __init__(self, manager: TokenLifecycleManager, *, auto_refresh: bool | None = None) -> None:
        self.manager = manager
        self.auto_refresh = (
            manager.config.tokens.auto_refresh if auto_refresh is None else auto_refresh
        )
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def lock_for(self, user_id: str) -> AsyncIterator[None]:
        """Hold the user's token lock. Locks are dropped once nobody holds or awaits them."""
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._holders[user_id] = self._holders.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[user_id] -= 1
            if not self._holders[user_id]:
                del self._holders[user_id]
                del self._locks[user_id]

    async def resolve(self, user_id: str) -> AccessOutcome:
        async with self.lock_for(user_id):
            return await self._resolve_locked(user_id)

    async def _resolve_locked(self, user_id: str) -> AccessOutcome:
        tokens = self.manager.tokens

        credential = tokens.find_active(user_id)
        if credential is None:
            return NeedsConnection(ReasonCode.NO_TOKEN)

        if not credential.is_active:
            return NeedsConnection(ReasonCode.TOKEN_INACTIVE)

        if self.manager.is_refresh_expired(credential):
            tokens.deactivate(credential)
            logger.info("Refresh token expired for user %s; reconnection required", user_id)
            return NeedsConnection(ReasonCode.REFRESH_TOKEN_EXPIRED)

        if self.manager.is_access_expired(credential):
            if not self.auto_refresh:
                return NeedsConnection(ReasonCode.REFRESH_FAILED)
            try:
                credential = await self.manager.refresh(credential)
            except RefreshTokenExpiredError:
                tokens.deactivate(credential)
                return NeedsConnection(ReasonCode.REFRESH_TOKEN_EXPIRED)
            except RemoteServiceError:
                # refresh() already deactivated the credential and logged.
                return NeedsConnection(ReasonCode.REFRESH_FAILED)
            except ConnectionRequiredError as e:
                return NeedsConnection(e.reason)

        return Usable(credential)

    async def require(self, user_id: str) -> Credential:
        """Like ``resolve`` but raises ``ConnectionRequiredError`` instead of returning an outcome."""
        outcome = await self.resolve(user_id)
        if isinstance(outcome, NeedsConnection):
            raise ConnectionRequiredError(outcome.reason)
        return outcome.credential
