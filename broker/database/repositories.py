"""
CRUD repositories over a SQLAlchemy session.

All lookups go through unique keys. Writes commit immediately unless the
caller passes commit=False to batch several writes into one transaction;
unique-constraint violations roll back and surface as AlreadyExists.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from broker.auth.models import (
    PasswordResetToken,
    SocialLink,
    SocialProviderName,
    TotpEnrollment,
    User,
    utcnow,
)
from broker.core.errors import AlreadyExists

logger = logging.getLogger(__name__)


class _Repository:
    def __init__(self, db: Session):
        self.db = db

    def _save(self, obj, commit: bool = True):
        self.db.add(obj)
        try:
            if commit:
                self.db.commit()
                self.db.refresh(obj)
            else:
                self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            logger.info("Unique constraint conflict on %s", obj.__class__.__name__)
            raise AlreadyExists(str(exc.orig)) from exc
        return obj

    def commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.info("Unique constraint conflict on commit")
            raise AlreadyExists(str(exc.orig)) from exc


class UserRepository(_Repository):
    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email).first()

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def create(self, email: str, password_hash: Optional[str], commit: bool = True) -> User:
        return self._save(User(email=email, password_hash=password_hash), commit=commit)

    def update_password(self, user: User, password_hash: str, commit: bool = True) -> User:
        user.password_hash = password_hash
        user.updated_at = utcnow()
        return self._save(user, commit=commit)


class TotpEnrollmentRepository(_Repository):
    def find_by_user_id(self, user_id: str) -> Optional[TotpEnrollment]:
        return self.db.query(TotpEnrollment).filter(TotpEnrollment.user_id == user_id).first()

    def create(self, user_id: str, secret_ciphertext: bytes) -> TotpEnrollment:
        return self._save(TotpEnrollment(user_id=user_id, secret_ciphertext=secret_ciphertext, enabled=False))

    def enable(self, enrollment: TotpEnrollment) -> TotpEnrollment:
        enrollment.enabled = True
        enrollment.updated_at = utcnow()
        return self._save(enrollment)

    def delete(self, user_id: str) -> None:
        self.db.query(TotpEnrollment).filter(TotpEnrollment.user_id == user_id).delete()
        self.db.commit()


class SocialLinkRepository(_Repository):
    def find_by_provider_subject(
        self, provider: SocialProviderName, provider_subject_id: str
    ) -> Optional[SocialLink]:
        return (
            self.db.query(SocialLink)
            .filter(
                SocialLink.provider == provider,
                SocialLink.provider_subject_id == provider_subject_id,
            )
            .first()
        )

    def find_by_user_id(self, user_id: str) -> list[SocialLink]:
        return self.db.query(SocialLink).filter(SocialLink.user_id == user_id).all()

    def create(
        self,
        user_id: str,
        provider: SocialProviderName,
        provider_subject_id: str,
        email: Optional[str],
        commit: bool = True,
    ) -> SocialLink:
        link = SocialLink(
            user_id=user_id,
            provider=provider,
            provider_subject_id=provider_subject_id,
            email=email,
        )
        return self._save(link, commit=commit)


class PasswordResetTokenRepository(_Repository):
    def create(self, user_id: str, token_hash: str, expires_at: datetime) -> PasswordResetToken:
        return self._save(PasswordResetToken(user_id=user_id, token_hash=token_hash, expires_at=expires_at))

    def find_by_token_hash(self, token_hash: str) -> Optional[PasswordResetToken]:
        return (
            self.db.query(PasswordResetToken)
            .filter(PasswordResetToken.token_hash == token_hash)
            .first()
        )

    def mark_used(self, token: PasswordResetToken, commit: bool = True) -> PasswordResetToken:
        token.used_at = utcnow()
        return self._save(token, commit=commit)

    def delete_expired(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        deleted = (
            self.db.query(PasswordResetToken)
            .filter(PasswordResetToken.expires_at < now)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted
