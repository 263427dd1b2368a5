"""Persistence — SQLAlchemy tables for connections and synced entities."""

from qbolink.storage.database import Base, Database, UTCDateTime
from qbolink.storage.entities import Customer, Invoice, SyncedRecordMixin
from qbolink.storage.tables import CredentialRow, OAuthStateRow

__all__ = [
    "Base",
    "CredentialRow",
    "Customer",
    "Database",
    "Invoice",
    "OAuthStateRow",
    "SyncedRecordMixin",
    "UTCDateTime",
]
