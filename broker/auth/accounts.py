import logging

from sqlalchemy.orm import Session

from broker.auth.models import SocialProviderName
from broker.database.repositories import SocialLinkRepository, UserRepository

logger = logging.getLogger(__name__)


class AccountResolver:
    """Maps a verified social identity to a local user id."""

    def __init__(self, db: Session):
        self.db = db
        self.users = UserRepository(db)
        self.links = SocialLinkRepository(db)

    def resolve(self, provider: SocialProviderName, external_id: str, email: str) -> str:
        link = self.links.find_by_provider_subject(provider, external_id)
        if link is not None:
            # returning user, even if the provider-side email changed since
            logger.info("Existing %s link user_id=%s", provider.value, link.user_id)
            return link.user_id

        # NOTE: a local account with the same email is linked without proof
        # of ownership. See DESIGN.md, open questions.
        user = self.users.find_by_email(email)
        if user is not None:
            logger.info("Linking %s identity to existing user_id=%s", provider.value, user.id)
        else:
            user = self.users.create(email, password_hash=None, commit=False)
            logger.info("Created social-only user_id=%s via %s", user.id, provider.value)

        # user row (if new) and link commit together
        self.links.create(user.id, provider, external_id, email, commit=False)
        self.links.commit()
        return user.id
