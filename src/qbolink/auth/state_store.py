"""
OAuth state store — short-lived, single-use anti-replay tokens.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import delete, select

from qbolink.models import OAuthState, utcnow
from qbolink.storage.database import Database
from qbolink.storage.tables import OAuthStateRow

logger = logging.getLogger("qbolink.auth.state_store")


class OAuthStateStore:
    """Persists pending OAuth states, one live state per user.

    Consumption is a conditional delete: of two concurrent callbacks carrying
    the same token only the one whose delete removes the row wins.
    """

    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._db = db
        self._clock = clock

    @staticmethod
    def _to_model(row: OAuthStateRow) -> OAuthState:
        return OAuthState(
            state_token=row.state_token,
            user_id=row.user_id,
            expires_at=row.expires_at,
            created_at=row.created_at,
        )

    def create_for_user(self, user_id: str, ttl_minutes: int = 60) -> OAuthState:
        """Discard the user's previous states and issue a fresh one."""
        now = self._clock()
        with self._db.session() as session:
            session.execute(delete(OAuthStateRow).where(OAuthStateRow.user_id == user_id))
            row = OAuthStateRow(
                state_token=secrets.token_urlsafe(32),
                user_id=user_id,
                expires_at=now + timedelta(minutes=ttl_minutes),
                created_at=now,
            )
            session.add(row)
            session.flush()
            state = self._to_model(row)
        logger.debug("Issued OAuth state for user %s (expires %s)", user_id, state.expires_at.isoformat())
        return state

    def find_valid(self, state_token: str) -> OAuthState | None:
        """Look up a live state; expired rows are never returned."""
        if not state_token:
            return None
        with self._db.session() as session:
            row = session.scalars(
                select(OAuthStateRow).where(
                    OAuthStateRow.state_token == state_token,
                    OAuthStateRow.expires_at > self._clock(),
                )
            ).first()
            return self._to_model(row) if row else None

    def consume(self, state_token: str) -> OAuthState | None:
        """Atomically take a live state. Returns None if absent, expired, or already taken."""
        if not state_token:
            return None
        now = self._clock()
        with self._db.session() as session:
            row = session.scalars(
                select(OAuthStateRow).where(
                    OAuthStateRow.state_token == state_token,
                    OAuthStateRow.expires_at > now,
                )
            ).first()
            if row is None:
                return None
            state = self._to_model(row)
            deleted = session.execute(
                delete(OAuthStateRow)
                .where(OAuthStateRow.state_token == state_token)
                .execution_options(synchronize_session=False)
            ).rowcount
            if deleted != 1:
                logger.warning("OAuth state for user %s was consumed concurrently", state.user_id)
                return None
        logger.debug("Consumed OAuth state for user %s", state.user_id)
        return state

    def cleanup(self) -> int:
        """Delete expired states, consumed or not. Returns rows removed."""
        with self._db.session() as session:
            removed = session.execute(
                delete(OAuthStateRow).where(OAuthStateRow.expires_at <= self._clock())
            ).rowcount
        if removed:
            logger.info("Cleaned up %d expired OAuth state(s)", removed)
        return removed

    def count_for_user(self, user_id: str) -> int:
        with self._db.session() as session:
            return len(session.scalars(select(OAuthStateRow.id).where(OAuthStateRow.user_id == user_id)).all())
