"""
Token store — persists QuickBooks credentials per user.

Enforces the exactly-one-active policy: saving a new active credential
deactivates every earlier credential of that user in the same transaction.
Credentials are soft-deactivated, never deleted.
"""

from __future__ import annotations

import logging

from sqlalchemy import select, update

from qbolink.auth.codec import PlainSecretCodec, SecretCodec
from qbolink.models import Credential, utcnow
from qbolink.storage.database import Database
from qbolink.storage.tables import CredentialRow

logger = logging.getLogger("qbolink.auth.token_store")


class TokenStore:
    """Credential persistence backed by the ``quickbooks_tokens`` table."""

    def __init__(self, db: Database, codec: SecretCodec | None = None) -> None:
        self._db = db
        self._codec = codec or PlainSecretCodec()

    # ------------------------------------------------------------------
    # Row <-> model
    # ------------------------------------------------------------------

    def _to_model(self, row: CredentialRow) -> Credential:
        return Credential(
            id=row.id,
            user_id=row.user_id,
            realm_id=row.realm_id,
            access_token=self._codec.decode(row.access_token),
            refresh_token=self._codec.decode(row.refresh_token),
            access_token_expires_at=row.access_token_expires_at,
            refresh_token_expires_at=row.refresh_token_expires_at,
            is_active=row.is_active,
            company_name=row.company_name,
            company_email=row.company_email,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _write(self, row: CredentialRow, credential: Credential) -> None:
        row.user_id = credential.user_id
        row.realm_id = credential.realm_id
        row.access_token = self._codec.encode(credential.access_token)
        row.refresh_token = self._codec.encode(credential.refresh_token)
        row.access_token_expires_at = credential.access_token_expires_at
        row.refresh_token_expires_at = credential.refresh_token_expires_at
        row.is_active = credential.is_active
        row.company_name = credential.company_name
        row.company_email = credential.company_email

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, credential_id: int) -> Credential | None:
        with self._db.session() as session:
            row = session.get(CredentialRow, credential_id)
            return self._to_model(row) if row else None

    def find_active(self, user_id: str) -> Credential | None:
        """Most recent active credential for the user, if any."""
        with self._db.session() as session:
            row = session.scalars(
                select(CredentialRow)
                .where(CredentialRow.user_id == user_id, CredentialRow.is_active.is_(True))
                .order_by(CredentialRow.created_at.desc(), CredentialRow.id.desc())
                .limit(1)
            ).first()
            return self._to_model(row) if row else None

    def find_valid(self, user_id: str) -> Credential | None:
        """Active credential whose access token has not expired."""
        with self._db.session() as session:
            row = session.scalars(
                select(CredentialRow)
                .where(
                    CredentialRow.user_id == user_id,
                    CredentialRow.is_active.is_(True),
                    CredentialRow.access_token_expires_at > utcnow(),
                )
                .order_by(CredentialRow.created_at.desc(), CredentialRow.id.desc())
                .limit(1)
            ).first()
            return self._to_model(row) if row else None

    def list_for_user(self, user_id: str) -> list[Credential]:
        with self._db.session() as session:
            rows = session.scalars(
                select(CredentialRow).where(CredentialRow.user_id == user_id).order_by(CredentialRow.id)
            ).all()
            return [self._to_model(r) for r in rows]

    def count_active(self, user_id: str) -> int:
        return sum(1 for c in self.list_for_user(user_id) if c.is_active)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_active(self, credential: Credential) -> Credential:
        """Deactivate the user's existing credentials, then insert this one as active."""
        with self._db.session() as session:
            deactivated = session.execute(
                update(CredentialRow)
                .where(CredentialRow.user_id == credential.user_id, CredentialRow.is_active.is_(True))
                .values(is_active=False, updated_at=utcnow())
            ).rowcount
            row = CredentialRow()
            self._write(row, credential.model_copy(update={"is_active": True}))
            session.add(row)
            session.flush()
            saved = self._to_model(row)

        if deactivated:
            logger.info("Deactivated %d previous credential(s) for user %s", deactivated, credential.user_id)
        logger.info("Stored new credential %s for user %s (realm %s)", saved.id, saved.user_id, saved.realm_id)
        return saved

    def save(self, credential: Credential) -> Credential:
        """Write the full row (read-modify-write, never field-level)."""
        if credential.id is None:
            raise ValueError("Cannot save a credential without an id; use create_active()")
        with self._db.session() as session:
            row = session.get(CredentialRow, credential.id)
            if row is None:
                raise LookupError(f"Credential {credential.id} does not exist")
            self._write(row, credential)
            session.flush()
            return self._to_model(row)

    def save_refreshed(self, credential: Credential) -> Credential | None:
        """Persist a refreshed token pair, but only while the row is still active.

        Returns None when the credential was deactivated in the meantime
        (disconnect, reconnect, failed refresh); the new tokens are dropped.
        """
        if credential.id is None:
            raise ValueError("Cannot save a credential without an id; use create_active()")
        with self._db.session() as session:
            written = session.execute(
                update(CredentialRow)
                .where(CredentialRow.id == credential.id, CredentialRow.is_active.is_(True))
                .values(
                    access_token=self._codec.encode(credential.access_token),
                    refresh_token=self._codec.encode(credential.refresh_token),
                    access_token_expires_at=credential.access_token_expires_at,
                    refresh_token_expires_at=credential.refresh_token_expires_at,
                    updated_at=utcnow(),
                )
            ).rowcount
            if not written:
                logger.warning(
                    "Credential %s was deactivated during refresh; discarding new tokens", credential.id,
                )
                return None
            row = session.get(CredentialRow, credential.id, populate_existing=True)
            return self._to_model(row)

    def update_metadata(
        self,
        credential_id: int,
        company_name: str | None,
        company_email: str | None,
    ) -> Credential | None:
        """Write company metadata only; token columns are left untouched."""
        with self._db.session() as session:
            session.execute(
                update(CredentialRow)
                .where(CredentialRow.id == credential_id)
                .values(company_name=company_name, company_email=company_email, updated_at=utcnow())
            )
            row = session.get(CredentialRow, credential_id, populate_existing=True)
            return self._to_model(row) if row else None

    def deactivate(self, credential: Credential) -> Credential:
        """Soft-deactivate a credential; returns the updated copy."""
        if credential.id is None:
            return credential.model_copy(update={"is_active": False})
        with self._db.session() as session:
            row = session.get(CredentialRow, credential.id)
            if row is None:
                raise LookupError(f"Credential {credential.id} does not exist")
            row.is_active = False
            session.flush()
            updated = self._to_model(row)
        logger.info("Deactivated credential %s for user %s", credential.id, credential.user_id)
        return updated

    def deactivate_all(self, user_id: str) -> int:
        with self._db.session() as session:
            return session.execute(
                update(CredentialRow)
                .where(CredentialRow.user_id == user_id, CredentialRow.is_active.is_(True))
                .values(is_active=False, updated_at=utcnow())
            ).rowcount
