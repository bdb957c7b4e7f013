from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from littleagent.logging import get_logger

logger = get_logger(__name__)


class KeyDecryptionError(Exception):
    """Stored ciphertext could not be decrypted with the current key material."""


class KeyVault:
    """Encrypts workspace model API keys at rest.

    The Fernet key is derived from ``ENCRYPTION_KEY`` with SHA-256, so any
    sufficiently random string can be used as key material. Rotating the
    material makes previously stored keys undecryptable.
    """

    def __init__(self, key_material: str) -> None:
        if not key_material:
            raise ValueError("key material is required")
        self._cipher = Fernet(self._derive_cipher_key(key_material))

    @staticmethod
    def _derive_cipher_key(key_material: str) -> bytes:
        return base64.urlsafe_b64encode(hashlib.sha256(key_material.encode()).digest())

    def encrypt(self, plaintext: str) -> str:
        return self._cipher.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._cipher.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as exc:
            logger.warning("model_key_decrypt_failed", error_type=type(exc).__name__)
            raise KeyDecryptionError("stored key could not be decrypted") from exc
