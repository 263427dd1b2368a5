"""
qbolink entity sync.

Adapters map local tables onto QuickBooks entities; the engine pushes,
pulls and deletes through them.
"""

from qbolink.sync.adapters import (
    AdapterRegistry,
    CustomerAdapter,
    EntityAdapter,
    InvoiceAdapter,
    default_registry,
)
from qbolink.sync.engine import SyncEngine
from qbolink.sync.records import SyncedRecordStore

__all__ = [
    "AdapterRegistry",
    "CustomerAdapter",
    "EntityAdapter",
    "InvoiceAdapter",
    "SyncEngine",
    "SyncedRecordStore",
    "default_registry",
]
