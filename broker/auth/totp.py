import base64
import enum
import io
import logging
from datetime import datetime
from typing import Optional, Union

import pyotp
import qrcode

from broker.auth.crypto import CryptoBox, DecryptionFailed
from broker.auth.models import TotpEnrollment
from broker.core.errors import InternalError

logger = logging.getLogger(__name__)

CODE_DIGITS = 6
STEP_SECONDS = 30
# current step plus one on each side
VALID_WINDOW = 1


class TotpState(enum.Enum):
    ABSENT = "absent"
    PENDING = "pending"
    ENABLED = "enabled"


def enrollment_state(enrollment: Optional[TotpEnrollment]) -> TotpState:
    if enrollment is None:
        return TotpState.ABSENT
    return TotpState.ENABLED if enrollment.enabled else TotpState.PENDING


def is_code_format(code: str) -> bool:
    return len(code) == CODE_DIGITS and code.isascii() and code.isdigit()


class TotpVault:
    def __init__(self, box: CryptoBox, issuer: str):
        self.box = box
        self.issuer = issuer

    @staticmethod
    def generate_secret() -> str:
        # 32 Base32 characters = 160 bits
        return pyotp.random_base32(length=32)

    def encrypt_secret(self, secret: str) -> bytes:
        return self.box.encrypt(secret.encode("ascii"))

    def decrypt_secret(self, ciphertext: bytes) -> str:
        try:
            return self.box.decrypt(ciphertext).decode("ascii")
        except (DecryptionFailed, UnicodeDecodeError) as exc:
            # stored data, not client input: wrong key or corruption
            logger.error("Stored TOTP secret could not be decrypted")
            raise InternalError("totp secret decryption failed") from exc

    def provisioning_uri(self, account_label: str, secret: str) -> str:
        return pyotp.TOTP(secret, digits=CODE_DIGITS, interval=STEP_SECONDS).provisioning_uri(
            name=account_label, issuer_name=self.issuer
        )

    def enrollment_qr_png(self, account_label: str, secret: str) -> bytes:
        buf = io.BytesIO()
        qrcode.make(self.provisioning_uri(account_label, secret)).save(buf, format="PNG")
        return buf.getvalue()

    def enrollment_qr_data_uri(self, account_label: str, secret: str) -> str:
        qr_b64 = base64.b64encode(self.enrollment_qr_png(account_label, secret)).decode()
        return f"data:image/png;base64,{qr_b64}"

    @staticmethod
    def verify_code(
        secret: str, code: str, for_time: Optional[Union[int, datetime]] = None
    ) -> bool:
        if not is_code_format(code):
            return False
        totp = pyotp.TOTP(secret, digits=CODE_DIGITS, interval=STEP_SECONDS)
        return totp.verify(code, for_time=for_time, valid_window=VALID_WINDOW)
