"""
Sync engine — push local records to QuickBooks and pull remote entities back.

One engine serves one entity type through its ``EntityAdapter``. The
credential comes from the ``AccessGate`` on every call, so an access token
that expired between calls is refreshed transparently.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from qbolink.auth.gate import AccessGate
from qbolink.clients.base import AccountingClient, RemoteEntity
from qbolink.errors import NotFoundError, RemoteServiceError
from qbolink.models import Credential, SyncReport, utcnow
from qbolink.storage.entities import SyncedRecordMixin
from qbolink.sync.adapters import AdapterRegistry, EntityAdapter
from qbolink.sync.records import SyncedRecordStore

logger = logging.getLogger("qbolink.sync.engine")


class SyncEngine:
    """Bidirectional sync for a single entity type.

    Usage::

        engine = SyncEngine(CustomerAdapter(), gate, client, records)
        await engine.push(customer)
        pulled = await engine.pull("user-1")
    """

    def __init__(
        self,
        adapter: EntityAdapter,
        gate: AccessGate,
        client: AccountingClient,
        records: SyncedRecordStore,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.adapter = adapter
        self.gate = gate
        self.client = client
        self.records = records
        self._clock = clock

    @classmethod
    def for_entity(
        cls,
        registry: AdapterRegistry,
        entity_type: str,
        gate: AccessGate,
        client: AccountingClient,
        records: SyncedRecordStore,
        **kwargs: Any,
    ) -> SyncEngine:
        """Build an engine for a registered entity type (``"customer"``, ``"invoice"``...)."""
        return cls(registry.get(entity_type), gate, client, records, **kwargs)

    @property
    def entity_type(self) -> str:
        return self.adapter.entity_type

    def get_record(self, user_id: str, record_id: int) -> Any:
        """Load a local record owned by ``user_id``.

        Raises:
            NotFoundError: No such record for this user.
        """
        record = self.records.get(self.adapter.model, record_id)
        if record is None or record.user_id != user_id:
            raise NotFoundError(f"{self.adapter.remote_type_name} #{record_id} not found for user {user_id}")
        return record

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def push(self, record: SyncedRecordMixin) -> SyncedRecordMixin:
        """Create or update ``record`` in QuickBooks and store the new SyncToken.

        Raises:
            ConnectionRequiredError: The user has no usable credential.
            RemoteServiceError: QuickBooks rejected the write.
        """
        credential = await self.gate.require(record.user_id)
        payload = self.adapter.to_remote_payload(record)

        if record.quickbooks_id is None:
            remote = await self._create(credential, payload)
        else:
            remote = await self._update(credential, record.quickbooks_id, payload)

        remote_id = remote.get("Id")
        if not remote_id:
            raise RemoteServiceError(
                f"QuickBooks accepted the {self.adapter.remote_type_name} but returned no Id", detail=remote,
            )

        record.mark_synced(quickbooks_id=str(remote_id), sync_token=remote.get("SyncToken"), at=self._clock())
        self.records.save(record)
        logger.info(
            "Pushed %s #%s -> QuickBooks %s (SyncToken %s)",
            self.adapter.remote_type_name, record.id, record.quickbooks_id, record.sync_token,
        )
        return record

    async def _create(self, credential: Credential, payload: RemoteEntity) -> RemoteEntity:
        return await self.client.create_entity(credential, self.adapter.remote_type_name, payload)

    async def _update(self, credential: Credential, remote_id: str, payload: RemoteEntity) -> RemoteEntity:
        type_name = self.adapter.remote_type_name
        current = await self.client.fetch_entity(credential, type_name, remote_id)
        if current is None:
            logger.warning("%s %s no longer exists in QuickBooks; recreating", type_name, remote_id)
            return await self._create(credential, payload)

        try:
            return await self.client.update_entity(
                credential, type_name, {**payload, "Id": remote_id}, current.get("SyncToken"),
            )
        except RemoteServiceError as e:
            if not e.is_not_found:
                raise
            logger.warning("%s %s vanished during update; recreating", type_name, remote_id)
            return await self._create(credential, payload)

    async def push_pending(self, user_id: str) -> SyncReport:
        """Push every record that needs sync; failures are collected, not raised.

        ``ConnectionRequiredError`` still aborts the batch, since no record
        could succeed without a credential.
        """
        report = SyncReport(entity_type=self.adapter.entity_type)
        for record in self.records.needs_sync(self.adapter.model, user_id):
            try:
                await self.push(record)
            except RemoteServiceError as e:
                logger.error("Failed to push %s #%s: %s", self.adapter.remote_type_name, record.id, e)
                report.failed[record.id] = str(e)
            else:
                report.pushed.append(record.id)
        return report

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def pull(self, user_id: str, remote_id: str | None = None) -> int:
        """Upsert remote entities (all of them, or one id) into local storage.

        Returns the number of records written.
        """
        credential = await self.gate.require(user_id)
        type_name = self.adapter.remote_type_name

        if remote_id is not None:
            entity = await self.client.fetch_entity(credential, type_name, remote_id)
            remotes = [entity] if entity is not None else []
        else:
            remotes = await self.client.query_entities(credential, type_name)

        count = 0
        for remote in remotes:
            if not remote.get("Id"):
                logger.warning("Skipping %s without Id", type_name)
                continue
            self.records.upsert_remote(
                self.adapter.model,
                user_id,
                str(remote["Id"]),
                remote.get("SyncToken"),
                self.adapter.from_remote_payload(remote),
                self._clock(),
            )
            count += 1

        logger.info("Pulled %d %s record(s) for user %s", count, type_name, user_id)
        return count

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def remote_delete(self, record: SyncedRecordMixin) -> bool:
        """Delete ``record``'s QuickBooks counterpart and clear its sync fields.

        Unsynced records succeed immediately without an API call; an entity
        already gone remotely counts as deleted.
        """
        if record.quickbooks_id is None:
            return True

        credential = await self.gate.require(record.user_id)
        type_name = self.adapter.remote_type_name
        remote_id = record.quickbooks_id

        current = await self.client.fetch_entity(credential, type_name, remote_id)
        if current is None:
            logger.info("%s %s already absent from QuickBooks", type_name, remote_id)
        else:
            try:
                await self.client.delete_entity(credential, type_name, remote_id, current.get("SyncToken"))
            except RemoteServiceError as e:
                if not e.is_not_found:
                    raise
                logger.info("%s %s already absent from QuickBooks", type_name, remote_id)

        record.mark_synced(quickbooks_id=None, sync_token=None, at=self._clock())
        self.records.save(record)
        return True
