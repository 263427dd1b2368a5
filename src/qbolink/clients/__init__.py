"""Clients package — remote accounting API integrations."""
from qbolink.clients.base import AccountingClient, RemoteEntity
from qbolink.clients.quickbooks import QuickBooksClient

__all__ = [
    "AccountingClient",
    "QuickBooksClient",
    "RemoteEntity",
]
