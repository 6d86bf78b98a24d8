import logging

from broker.core.config import Settings

logger = logging.getLogger(__name__)


class EmailSender:
    """Stub mailer: records that a message would go out, delivers nothing."""

    def __init__(self, settings: Settings):
        self.smtp_configured = settings.smtp_configured
        self.from_address = settings.smtp_from_address

    async def send_password_reset(self, to: str, reset_url: str) -> None:
        # reset_url carries the plaintext token; keep it out of the logs
        logger.info(
            "Password reset mail queued (stub) to_domain=%s smtp_configured=%s url_length=%d",
            to.rsplit("@", 1)[-1],
            self.smtp_configured,
            len(reset_url),
        )
