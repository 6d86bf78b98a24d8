"""
2FA enrollment state machine.

    ABSENT --setup--> PENDING --verify--> ENABLED --disable--> ABSENT
    PENDING --setup--> PENDING (old secret discarded)

Setup and disable require the account password; disable also needs a
current code.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from broker.auth.models import TotpEnrollment, User
from broker.auth.passwords import CredentialVerifier
from broker.auth.schemas import TotpDisableResponse, TotpSetupResponse, TotpVerifyResponse
from broker.auth.totp import TotpState, TotpVault, enrollment_state
from broker.core.errors import TotpAlreadyEnabled, TotpInvalid, TotpNotEnabled, TotpSetupRequired
from broker.database.repositories import TotpEnrollmentRepository

logger = logging.getLogger(__name__)


class TwoFactorService:
    def __init__(self, db: Session, vault: TotpVault, verifier: CredentialVerifier):
        self.enrollments = TotpEnrollmentRepository(db)
        self.vault = vault
        self.verifier = verifier

    def state_for(self, user_id: str) -> TotpState:
        return enrollment_state(self.enrollments.find_by_user_id(user_id))

    def setup(self, user_id: str, password: str) -> TotpSetupResponse:
        user = self.verifier.verify_user_password(user_id, password)

        existing = self.enrollments.find_by_user_id(user.id)
        state = enrollment_state(existing)
        if state is TotpState.ENABLED:
            raise TotpAlreadyEnabled()
        if state is TotpState.PENDING:
            self.enrollments.delete(user.id)

        secret = self.vault.generate_secret()
        self.enrollments.create(user.id, self.vault.encrypt_secret(secret))
        qr_code = self.vault.enrollment_qr_data_uri(user.email, secret)

        logger.info("2FA setup started user_id=%s", user.id)
        return TotpSetupResponse(secret=secret, qr_code=qr_code)

    def verify(self, user_id: str, code: str) -> TotpVerifyResponse:
        enrollment = self.enrollments.find_by_user_id(user_id)
        state = enrollment_state(enrollment)
        if state is TotpState.ABSENT:
            raise TotpSetupRequired()
        if state is TotpState.ENABLED:
            raise TotpAlreadyEnabled()

        secret = self.vault.decrypt_secret(enrollment.secret_ciphertext)
        if not self.vault.verify_code(secret, code):
            logger.warning("2FA activation code rejected user_id=%s", user_id)
            raise TotpInvalid()

        self.enrollments.enable(enrollment)
        logger.info("2FA enabled user_id=%s", user_id)
        return TotpVerifyResponse(enabled=True)

    def disable(self, user_id: str, password: str, code: str) -> TotpDisableResponse:
        user = self.verifier.verify_user_password(user_id, password)

        enrollment = self.enrollments.find_by_user_id(user.id)
        if enrollment_state(enrollment) is not TotpState.ENABLED:
            raise TotpNotEnabled()

        secret = self.vault.decrypt_secret(enrollment.secret_ciphertext)
        if not self.vault.verify_code(secret, code):
            logger.warning("2FA disable code rejected user_id=%s", user.id)
            raise TotpInvalid()

        self.enrollments.delete(user.id)
        logger.info("2FA disabled user_id=%s", user.id)
        return TotpDisableResponse(disabled=True)

    def enabled_enrollment(self, user: User) -> Optional[TotpEnrollment]:
        enrollment = self.enrollments.find_by_user_id(user.id)
        if enrollment_state(enrollment) is TotpState.ENABLED:
            return enrollment
        return None

    def check_login_code(self, user: User, enrollment: Optional[TotpEnrollment], code: str) -> None:
        if enrollment_state(enrollment) is not TotpState.ENABLED:
            raise TotpNotEnabled()
        secret = self.vault.decrypt_secret(enrollment.secret_ciphertext)
        if not self.vault.verify_code(secret, code):
            logger.warning("2FA login code rejected user_id=%s", user.id)
            raise TotpInvalid()
