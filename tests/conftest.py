"""Shared fixtures: SQLite database, controllable clock, in-memory QuickBooks."""

from __future__ import annotations

import asyncio
import copy
import itertools
from collections import defaultdict
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from qbolink.auth import AccessGate, OAuthStateStore, PlainSecretCodec, TokenLifecycleManager, TokenStore
from qbolink.clients.base import AccountingClient, RemoteEntity
from qbolink.config import OAuthConfig, QBOLinkConfig, TokenConfig
from qbolink.errors import RemoteServiceError
from qbolink.models import AccountMetadata, Credential, TokenPair
from qbolink.storage import Database
from qbolink.sync import SyncedRecordStore

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


class FakeAccountingClient(AccountingClient):
    """In-memory QuickBooks: token endpoint plus a versioned entity store.

    Set the ``*_error`` attributes to make the matching call fail and the
    ``*_delay`` attributes (seconds) to hold it open across an await.
    """

    def __init__(self) -> None:
        self.exchange_error: RemoteServiceError | None = None
        self.refresh_error: RemoteServiceError | None = None
        self.revoke_error: RemoteServiceError | None = None
        self.metadata_error: Exception | None = None
        self.update_error: RemoteServiceError | None = None
        self.issue_refresh_token = True
        self.refresh_delay = 0.0
        self.exchange_delay = 0.0
        self.metadata_delay = 0.0

        self.exchange_calls: list[tuple[str, str]] = []
        self.refresh_calls: list[str] = []
        self.revoke_calls: list[str] = []
        self.calls: list[tuple[str, ...]] = []
        self.entities: defaultdict[str, dict[str, RemoteEntity]] = defaultdict(dict)

        self._token_seq = itertools.count(1)
        self._id_seq = itertools.count(100)

    # OAuth ----------------------------------------------------------------

    def authorization_url(self, state: str | None = None) -> str:
        return f"https://appcenter.example/connect?state={state or ''}"

    async def exchange_code(self, code: str, realm_id: str) -> TokenPair:
        self.exchange_calls.append((code, realm_id))
        if self.exchange_delay:
            await asyncio.sleep(self.exchange_delay)
        if self.exchange_error:
            raise self.exchange_error
        n = next(self._token_seq)
        return TokenPair(
            access_token=f"access-{n}",
            refresh_token=f"refresh-{n}",
            expires_in=3600,
            refresh_expires_in=8726400,
        )

    async def refresh_token(self, refresh_token: str, realm_id: str) -> TokenPair:
        self.refresh_calls.append(refresh_token)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error:
            raise self.refresh_error
        n = next(self._token_seq)
        return TokenPair(
            access_token=f"access-{n}",
            refresh_token=f"refresh-{n}" if self.issue_refresh_token else None,
            expires_in=3600,
        )

    async def revoke(self, refresh_token: str, realm_id: str) -> bool:
        self.revoke_calls.append(refresh_token)
        if self.revoke_error:
            raise self.revoke_error
        return True

    # Entities -------------------------------------------------------------

    def seed(self, type_name: str, entity: RemoteEntity) -> RemoteEntity:
        stored = {"SyncToken": "0", **entity}
        self.entities[type_name][str(stored["Id"])] = stored
        return stored

    async def fetch_entity(self, credential: Credential, type_name: str, remote_id: str) -> RemoteEntity | None:
        self.calls.append(("fetch", type_name, remote_id))
        entity = self.entities[type_name].get(remote_id)
        return copy.deepcopy(entity) if entity else None

    async def query_entities(
        self,
        credential: Credential,
        type_name: str,
        where: str | None = None,
    ) -> list[RemoteEntity]:
        self.calls.append(("query", type_name))
        return [copy.deepcopy(e) for e in self.entities[type_name].values()]

    async def create_entity(self, credential: Credential, type_name: str, payload: RemoteEntity) -> RemoteEntity:
        self.calls.append(("create", type_name))
        entity = {**payload, "Id": str(next(self._id_seq)), "SyncToken": "0"}
        self.entities[type_name][entity["Id"]] = entity
        return copy.deepcopy(entity)

    async def update_entity(
        self,
        credential: Credential,
        type_name: str,
        payload: RemoteEntity,
        version_token: str | None,
    ) -> RemoteEntity:
        self.calls.append(("update", type_name, payload["Id"]))
        if self.update_error:
            raise self.update_error
        existing = self.entities[type_name].get(payload["Id"])
        if existing is None:
            raise RemoteServiceError("Object Not Found", code="610", status_code=400)
        if version_token != existing["SyncToken"]:
            raise RemoteServiceError("Stale Object Error", code="5010", status_code=400)
        existing.update(payload)
        existing["SyncToken"] = str(int(existing["SyncToken"]) + 1)
        return copy.deepcopy(existing)

    async def delete_entity(
        self,
        credential: Credential,
        type_name: str,
        remote_id: str,
        version_token: str | None,
    ) -> bool:
        self.calls.append(("delete", type_name, remote_id))
        if remote_id not in self.entities[type_name]:
            raise RemoteServiceError("Object Not Found", code="610", status_code=400)
        del self.entities[type_name][remote_id]
        return True

    async def fetch_account_metadata(self, credential: Credential) -> AccountMetadata:
        self.calls.append(("metadata", credential.realm_id))
        if self.metadata_delay:
            await asyncio.sleep(self.metadata_delay)
        if self.metadata_error:
            raise self.metadata_error
        return AccountMetadata(company_name="Test Corp", company_email="books@testcorp.example")

    def count(self, op: str) -> int:
        return sum(1 for call in self.calls if call[0] == op)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def config() -> QBOLinkConfig:
    return QBOLinkConfig(
        oauth=OAuthConfig(
            client_id="test_client_id",
            client_secret="test_client_secret",
            redirect_uri="https://app.example/quickbooks/callback",
        ),
        tokens=TokenConfig(encryption_key="test-encryption-secret"),
    )


@pytest.fixture
def db(tmp_path: Path) -> Iterator[Database]:
    database = Database(f"sqlite:///{tmp_path / 'qbolink.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def token_store(db: Database) -> TokenStore:
    return TokenStore(db, PlainSecretCodec())


@pytest.fixture
def state_store(db: Database, clock: FakeClock) -> OAuthStateStore:
    return OAuthStateStore(db, clock=clock)


@pytest.fixture
def fake_client() -> FakeAccountingClient:
    return FakeAccountingClient()


@pytest.fixture
def manager(
    fake_client: FakeAccountingClient,
    token_store: TokenStore,
    state_store: OAuthStateStore,
    config: QBOLinkConfig,
    clock: FakeClock,
) -> TokenLifecycleManager:
    return TokenLifecycleManager(fake_client, token_store, state_store, config, clock=clock)


@pytest.fixture
def gate(manager: TokenLifecycleManager) -> AccessGate:
    return AccessGate(manager)


@pytest.fixture
def records(db: Database) -> SyncedRecordStore:
    return SyncedRecordStore(db)


@pytest.fixture
def make_credential(token_store: TokenStore, clock: FakeClock) -> Callable[..., Credential]:
    """Store an active credential whose expiries are offsets (seconds) from the clock."""

    def _make(
        user_id: str = "user-1",
        *,
        access_in: int = 3600,
        refresh_in: int = 8726400,
        realm_id: str = "1234567890",
        **extra: Any,
    ) -> Credential:
        now = clock()
        return token_store.create_active(Credential(
            user_id=user_id,
            realm_id=realm_id,
            access_token="stored-access",
            refresh_token="stored-refresh",
            access_token_expires_at=now + timedelta(seconds=access_in),
            refresh_token_expires_at=now + timedelta(seconds=refresh_in),
            **extra,
        ))

    return _make
