"""
Persistence for synced records.

Records are handed out detached (sessions are short-lived) and written back
with ``save``; a pulled remote entity is applied in one transaction by
``upsert_remote`` so a partial pull never leaves a half-written row.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, TypeVar

from sqlalchemy import or_, select

from qbolink.models import utcnow
from qbolink.storage.database import Database
from qbolink.storage.entities import SyncedRecordMixin

logger = logging.getLogger("qbolink.sync.records")

R = TypeVar("R", bound=SyncedRecordMixin)


class SyncedRecordStore:
    """Read and write any table using ``SyncedRecordMixin``."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def get(self, model: type[R], record_id: int) -> R | None:
        with self.db.session() as session:
            return session.get(model, record_id)

    def find_by_remote_id(self, model: type[R], user_id: str, remote_id: str) -> R | None:
        with self.db.session() as session:
            stmt = select(model).where(model.user_id == user_id, model.quickbooks_id == remote_id)
            return session.scalars(stmt).first()

    def list_for_user(self, model: type[R], user_id: str) -> list[R]:
        with self.db.session() as session:
            stmt = select(model).where(model.user_id == user_id).order_by(model.id)
            return list(session.scalars(stmt))

    def add(self, record: R) -> R:
        """Insert a new local record; returns it with ``id`` populated."""
        return self.save(record)

    def save(self, record: R) -> R:
        with self.db.session() as session:
            session.add(record)
        return record

    def delete(self, record: SyncedRecordMixin) -> None:
        with self.db.session() as session:
            session.delete(session.merge(record))

    def needs_sync(self, model: type[R], user_id: str) -> list[R]:
        """Unsynced records plus those modified locally since their last sync."""
        with self.db.session() as session:
            stmt = (
                select(model)
                .where(
                    model.user_id == user_id,
                    or_(
                        model.quickbooks_id.is_(None),
                        model.last_synced_at.is_(None),
                        model.updated_at > model.last_synced_at,
                    ),
                )
                .order_by(model.id)
            )
            return list(session.scalars(stmt))

    def out_of_sync(
        self,
        model: type[R],
        user_id: str,
        hours: int = 24,
        now: datetime | None = None,
    ) -> list[R]:
        """Records never synced or whose last sync is older than ``hours``."""
        cutoff = (now or utcnow()) - timedelta(hours=hours)
        with self.db.session() as session:
            stmt = (
                select(model)
                .where(
                    model.user_id == user_id,
                    or_(model.last_synced_at.is_(None), model.last_synced_at < cutoff),
                )
                .order_by(model.id)
            )
            return list(session.scalars(stmt))

    def upsert_remote(
        self,
        model: type[R],
        user_id: str,
        remote_id: str,
        sync_token: str | None,
        fields: dict[str, Any],
        at: datetime,
    ) -> tuple[R, bool]:
        """Create or update the local copy of one remote entity.

        Returns ``(record, created)``.
        """
        with self.db.session() as session:
            stmt = select(model).where(model.user_id == user_id, model.quickbooks_id == remote_id)
            record = session.scalars(stmt).first()
            created = record is None
            if record is None:
                record = model(user_id=user_id)
                session.add(record)
            for key, value in fields.items():
                setattr(record, key, value)
            record.mark_synced(quickbooks_id=remote_id, sync_token=sync_token, at=at)
        logger.debug(
            "%s %s %s for user %s", "Created" if created else "Updated", model.__name__, remote_id, user_id
        )
        return record, created
