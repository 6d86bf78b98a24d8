"""
Encrypted `state` parameter for social-login redirects.

The provider's login challenge rides through the Google/GitHub round trip
inside an AES-GCM blob, so the callback can only resume a login this broker
started. Every decode failure is the same InvalidOrTamperedState.
"""
import base64
import binascii
import logging

from broker.auth.crypto import CryptoBox, DecryptionFailed
from broker.core.errors import InvalidOrTamperedState

logger = logging.getLogger(__name__)


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(value: str) -> bytes:
    padded = value + "=" * (-len(value) % 4)
    raw = base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
    # one encoding per byte string: no stray trailing bits, no "+" or "/"
    if b64url_encode(raw) != value:
        raise ValueError("non-canonical base64url")
    return raw


class OAuthStateCodec:
    def __init__(self, box: CryptoBox):
        self.box = box

    def encode(self, challenge_id: str) -> str:
        return b64url_encode(self.box.encrypt(challenge_id.encode("utf-8")))

    def decode(self, state: str) -> str:
        try:
            challenge_id = self.box.decrypt(b64url_decode(state)).decode("utf-8")
        except (binascii.Error, ValueError, DecryptionFailed):
            # UnicodeError is a ValueError
            challenge_id = ""
        if not challenge_id:
            logger.warning("Rejected OAuth state parameter (possible CSRF probe)")
            raise InvalidOrTamperedState("state decode failed")
        return challenge_id
