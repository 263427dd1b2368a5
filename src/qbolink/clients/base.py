"""
Accounting client — the narrow interface the core consumes.

The lifecycle manager and sync engine only ever talk to an
``AccountingClient``; ``QuickBooksClient`` is the production implementation
and tests substitute an in-memory fake.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from qbolink.models import AccountMetadata, Credential, TokenPair

RemoteEntity = dict[str, Any]


class AccountingClient(ABC):
    """Abstract base class for remote accounting APIs.

    Every method may raise ``RemoteServiceError``. Entity methods take the
    credential to act as; the client never looks a user up by itself.

    Example::

        class MyLedgerClient(AccountingClient):
            async def exchange_code(self, code, realm_id):
                ...
    """

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    @abstractmethod
    def authorization_url(self, state: str | None = None) -> str:
        """Consent URL for the configured client id, scope and redirect URI."""
        ...

    @abstractmethod
    async def exchange_code(self, code: str, realm_id: str) -> TokenPair:
        """Swap an authorization code for a token pair. Never retried."""
        ...

    @abstractmethod
    async def refresh_token(self, refresh_token: str, realm_id: str) -> TokenPair:
        """Exchange a refresh token for a new access token. Never retried."""
        ...

    @abstractmethod
    async def revoke(self, refresh_token: str, realm_id: str) -> bool:
        """Revoke the grant at the provider."""
        ...

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_entity(self, credential: Credential, type_name: str, remote_id: str) -> RemoteEntity | None:
        """Read one entity by id; ``None`` when it does not exist."""
        ...

    @abstractmethod
    async def query_entities(
        self,
        credential: Credential,
        type_name: str,
        where: str | None = None,
    ) -> list[RemoteEntity]:
        """All entities of a type, optionally filtered."""
        ...

    @abstractmethod
    async def create_entity(self, credential: Credential, type_name: str, payload: RemoteEntity) -> RemoteEntity:
        ...

    @abstractmethod
    async def update_entity(
        self,
        credential: Credential,
        type_name: str,
        payload: RemoteEntity,
        version_token: str | None,
    ) -> RemoteEntity:
        """Update an entity; ``payload`` must carry ``Id`` and the version token is echoed back."""
        ...

    @abstractmethod
    async def delete_entity(
        self,
        credential: Credential,
        type_name: str,
        remote_id: str,
        version_token: str | None,
    ) -> bool:
        ...

    @abstractmethod
    async def fetch_account_metadata(self, credential: Credential) -> AccountMetadata:
        """Company information for the credential's realm."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None
