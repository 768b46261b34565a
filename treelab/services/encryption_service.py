# treelab/services/encryption_service.py
"""
Application-level encryption for secrets stored on user records.

AES-256-GCM with a random 96-bit nonce per message. Stored form is
base64url(version || nonce || ciphertext+tag); the version byte is also
bound as associated data so it cannot be swapped without failing the tag.
"""
import base64
import binascii
import logging
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger("treelab.encryption")

FORMAT_VERSION = 1
NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32


class DecryptionError(Exception):
    """Ciphertext is malformed, truncated, tampered with, or under another key."""


@dataclass(frozen=True)
class DecryptOutcome:
    ok: bool
    plaintext: Optional[str] = None


DECRYPT_FAILED = DecryptOutcome(ok=False)


class EncryptionService:
    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Encryption key must be {KEY_LENGTH} bytes.")
        self._aead = AESGCM(key)

    @classmethod
    def from_secret(cls, secret: str) -> "EncryptionService":
        return cls(secret.encode("utf-8"))

    def encrypt(self, plaintext: str) -> str:
        version = bytes([FORMAT_VERSION])
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), version)
        return base64.urlsafe_b64encode(version + nonce + sealed).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        try:
            raw = base64.urlsafe_b64decode(ciphertext.encode("ascii"))
        except (binascii.Error, ValueError, UnicodeEncodeError) as e:
            raise DecryptionError("Ciphertext is not valid base64.") from e

        if len(raw) < 1 + NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionError("Ciphertext is truncated.")
        if raw[0] != FORMAT_VERSION:
            raise DecryptionError(f"Unsupported ciphertext version {raw[0]}.")

        nonce = raw[1:1 + NONCE_LENGTH]
        sealed = raw[1 + NONCE_LENGTH:]
        try:
            data = self._aead.decrypt(nonce, sealed, raw[:1])
        except InvalidTag as e:
            raise DecryptionError("Ciphertext failed authentication.") from e

        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Plaintext is not valid UTF-8.") from e

    def try_decrypt(self, ciphertext) -> DecryptOutcome:
        """Decrypt without raising. Callers decide what to do with a failure."""
        if not isinstance(ciphertext, str):
            return DECRYPT_FAILED
        try:
            return DecryptOutcome(ok=True, plaintext=self.decrypt(ciphertext))
        except DecryptionError as e:
            logger.debug(f"Decryption failed: {e}")
            return DECRYPT_FAILED
