"""
qbolink — QuickBooks Online connections that stay connected.

OAuth2 token lifecycle management and bidirectional entity sync
between your local database and the QuickBooks Accounting API.
"""

__version__ = "0.3.0"
__all__ = ["QBOLinkConfig"]

from qbolink.config import QBOLinkConfig  # noqa: E402
