import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional
from urllib.parse import urlencode

from argon2 import PasswordHasher
from sqlalchemy.orm import Session

from broker.auth.models import utcnow
from broker.core.config import Settings
from broker.core.errors import TokenExpiredOrUsed, TokenNotFound
from broker.database.repositories import PasswordResetTokenRepository, UserRepository

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class PasswordResetService:
    def __init__(self, db: Session, settings: Settings, hasher: PasswordHasher):
        self.users = UserRepository(db)
        self.tokens = PasswordResetTokenRepository(db)
        self.settings = settings
        self.hasher = hasher

    def build_reset_url(self, token: str) -> str:
        return f"{self.settings.password_reset_url_base}?{urlencode({'token': token})}"

    def issue_token(self, email: str, now: Optional[datetime] = None) -> Optional[str]:
        """
        Store a reset token for the account, if there is one, and return the
        plaintext for the caller to mail.

        The token is generated and hashed before the lookup so known and
        unknown addresses do the same work up to the insert. Mail delivery is
        left to the caller.
        """
        token = secrets.token_urlsafe(32)
        token_hash = hash_token(token)
        user = self.users.find_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown email")
            return None

        expires_at = (now or utcnow()) + timedelta(seconds=self.settings.password_reset_token_ttl_secs)
        self.tokens.create(user.id, token_hash, expires_at)
        logger.info("Password reset token issued user_id=%s", user.id)
        return token

    def reset_password(self, token: str, new_password: str, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        record = self.tokens.find_by_token_hash(hash_token(token))
        if record is None:
            logger.warning("Password reset with unknown token")
            raise TokenNotFound()
        if not record.is_usable(now):
            logger.warning("Password reset with used or expired token id=%s", record.id)
            raise TokenExpiredOrUsed()

        user = self.users.find_by_id(record.user_id)
        if user is None:
            raise TokenNotFound()

        # password and token state commit together
        self.users.update_password(user, self.hasher.hash(new_password), commit=False)
        self.tokens.mark_used(record, commit=False)
        self.tokens.commit()
        logger.info("Password reset completed user_id=%s", user.id)
