"""
Secret codecs — how token values are stored at rest.

The encryption toggle lives here and nowhere else: the token store encodes
on write and decodes on read through whichever codec it was given.
"""

from __future__ import annotations

import base64
import logging
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from qbolink.config import TokenConfig

logger = logging.getLogger("qbolink.auth.codec")

# Fixed salt: the key must be reproducible from the configured secret alone.
_KDF_SALT = b"qbolink-token-codec-v1"
_KDF_ITERATIONS = 480000


class SecretCodec(Protocol):
    def encode(self, plaintext: str) -> str: ...

    def decode(self, stored: str) -> str: ...


class PlainSecretCodec:
    """Stores secrets as-is (encryption disabled)."""

    def encode(self, plaintext: str) -> str:
        return plaintext

    def decode(self, stored: str) -> str:
        return stored


class FernetSecretCodec:
    """Encrypt secrets with Fernet using a key derived from a passphrase."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_KDF_SALT,
            iterations=_KDF_ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8")))
        self._fernet = Fernet(key)

    def encode(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decode(self, stored: str) -> str:
        try:
            return self._fernet.decrypt(stored.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Failed to decrypt token; invalid ciphertext or wrong key.") from exc


def build_codec(tokens: TokenConfig) -> SecretCodec:
    """Pick the codec the token configuration asks for."""
    if not tokens.encryption:
        logger.warning("Token encryption is disabled; tokens will be stored in plaintext")
        return PlainSecretCodec()
    if not tokens.encryption_key:
        raise ValueError(
            "Token encryption is enabled but no encryption key is configured. "
            "Set tokens.encryption_key or QBOLINK_ENCRYPTION_KEY."
        )
    return FernetSecretCodec(tokens.encryption_key)
