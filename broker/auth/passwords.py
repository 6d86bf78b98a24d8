"""
Password hashing and credential verification.

Every failed authentication costs exactly one argon2 verification, whether
the email is unknown, the account is social-only, or the password is wrong,
so response time does not reveal which accounts exist.
"""
import logging
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from broker.auth.models import User
from broker.core.config import Settings
from broker.core.errors import AuthFailure, InternalError
from broker.database.repositories import UserRepository

logger = logging.getLogger(__name__)


def build_hasher(settings: Optional[Settings] = None) -> PasswordHasher:
    if settings is None:
        return PasswordHasher()
    kwargs = {}
    if settings.argon2_time_cost:
        kwargs["time_cost"] = settings.argon2_time_cost
    if settings.argon2_memory_cost:
        kwargs["memory_cost"] = settings.argon2_memory_cost
    if settings.argon2_parallelism:
        kwargs["parallelism"] = settings.argon2_parallelism
    return PasswordHasher(**kwargs)


def make_dummy_hash(hasher: PasswordHasher) -> str:
    # Computed once at startup with the live parameters so the dummy path
    # costs the same as a real verification. Never stored, never a secret.
    return hasher.hash("dummy-password-for-timing-equalization")


class CredentialVerifier:
    def __init__(self, users: UserRepository, hasher: PasswordHasher, dummy_hash: Optional[str] = None):
        self.users = users
        self.hasher = hasher
        self._dummy_hash = dummy_hash or make_dummy_hash(hasher)

    def _verify(self, password_hash: str, password: str) -> bool:
        try:
            return self.hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as exc:
            logger.error("Stored password hash could not be verified: %s", exc.__class__.__name__)
            raise InternalError("password hash verification error") from exc

    def _burn(self, password: str) -> None:
        self._verify(self._dummy_hash, password)

    def authenticate(self, email: str, password: str) -> User:
        user = self.users.find_by_email(email)
        if user is None:
            self._burn(password)
            logger.warning("Authentication failed: unknown email")
            raise AuthFailure("unknown email")

        if user.password_hash is None:
            self._burn(password)
            logger.warning("Authentication failed: social-only account user_id=%s", user.id)
            raise AuthFailure("social-only account")

        if not self._verify(user.password_hash, password):
            logger.warning("Authentication failed: password mismatch user_id=%s", user.id)
            raise AuthFailure("password mismatch")

        if self.hasher.check_needs_rehash(user.password_hash):
            self.users.update_password(user, self.hasher.hash(password))
            logger.info("Password hash upgraded user_id=%s", user.id)

        logger.info("Authentication succeeded user_id=%s", user.id)
        return user

    def verify_user_password(self, user_id: str, password: str) -> User:
        user = self.users.find_by_id(user_id)
        if user is None:
            self._burn(password)
            logger.warning("Password confirmation failed: unknown user id")
            raise AuthFailure("unknown user id")
        return self.authenticate(user.email, password)
