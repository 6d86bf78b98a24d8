"""
AES-256-GCM box shared by the OAuth state codec and the TOTP vault.

Blob layout: nonce (12 bytes) || ciphertext || tag (16 bytes).
"""
import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from broker.core.errors import ConfigurationError

KEY_LENGTH = 32
NONCE_LENGTH = 12


class DecryptionFailed(Exception):
    """Short blob or authentication tag mismatch. Deliberately carries no detail."""


def decode_key(value: str) -> bytes:
    """Decode a configured key given as standard or URL-safe Base64."""
    if not value:
        raise ConfigurationError("encryption key is not set")
    padded = value.strip() + "=" * (-len(value.strip()) % 4)
    key = None
    for altchars in (None, b"-_"):
        try:
            key = base64.b64decode(padded, altchars=altchars, validate=True)
            break
        except (binascii.Error, ValueError):
            continue
    if key is None:
        raise ConfigurationError("encryption key is not valid Base64")
    if len(key) != KEY_LENGTH:
        raise ConfigurationError(f"encryption key must be {KEY_LENGTH} bytes, got {len(key)}")
    return key


class CryptoBox:
    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(f"encryption key must be {KEY_LENGTH} bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_base64(cls, value: str) -> "CryptoBox":
        return cls(decode_key(value))

    def encrypt(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(NONCE_LENGTH)
        return nonce + self._aead.encrypt(nonce, plaintext, None)

    def decrypt(self, blob: bytes) -> bytes:
        if len(blob) < NONCE_LENGTH:
            raise DecryptionFailed()
        nonce, ciphertext = blob[:NONCE_LENGTH], blob[NONCE_LENGTH:]
        try:
            return self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise DecryptionFailed() from None
