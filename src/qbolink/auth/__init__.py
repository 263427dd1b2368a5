"""
qbolink authentication and token management.

Provides the OAuth2 connection flow, credential and state storage, and
on-demand refresh for QuickBooks Online.
"""

from qbolink.auth.codec import FernetSecretCodec, PlainSecretCodec, SecretCodec, build_codec
from qbolink.auth.flows import ConnectionFlow
from qbolink.auth.gate import AccessGate
from qbolink.auth.lifecycle import TokenLifecycleManager
from qbolink.auth.state_store import OAuthStateStore
from qbolink.auth.token_store import TokenStore

__all__ = [
    "AccessGate",
    "ConnectionFlow",
    "FernetSecretCodec",
    "OAuthStateStore",
    "PlainSecretCodec",
    "SecretCodec",
    "TokenLifecycleManager",
    "TokenStore",
    "build_codec",
]
