import os
from typing import Optional

from pydantic import BaseModel, ConfigDict


class ProviderSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str
    redirect_uri: str


class Settings(BaseModel):
    """Process-wide configuration snapshot, built once at startup."""

    model_config = ConfigDict(frozen=True)

    database_url: str = "sqlite:///./broker.db"
    hydra_admin_url: str = "http://localhost:4445"
    http_timeout: float = 10.0
    login_remember_for: int = 3600

    # Shown in authenticator app
    totp_issuer: str = "consent-broker"
    # Base64, 32 bytes each
    encryption_key: str
    oauth_state_secret: str

    google: Optional[ProviderSettings] = None
    github: Optional[ProviderSettings] = None

    password_reset_url_base: str = "http://localhost:3000/password-reset"
    password_reset_token_ttl_secs: int = 3600

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_from_address: Optional[str] = None

    argon2_time_cost: Optional[int] = None
    argon2_memory_cost: Optional[int] = None
    argon2_parallelism: Optional[int] = None

    cors_origins: tuple[str, ...] = ("http://localhost:3000",)
    log_level: str = "INFO"

    @property
    def smtp_configured(self) -> bool:
        return all(
            (self.smtp_host, self.smtp_username, self.smtp_password, self.smtp_from_address)
        )


def _provider(prefix: str) -> Optional[ProviderSettings]:
    client_id = os.getenv(f"{prefix}_CLIENT_ID")
    client_secret = os.getenv(f"{prefix}_CLIENT_SECRET")
    redirect_uri = os.getenv(f"{prefix}_REDIRECT_URI")
    if not (client_id and client_secret and redirect_uri):
        return None
    return ProviderSettings(
        client_id=client_id, client_secret=client_secret, redirect_uri=redirect_uri
    )


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else None


def load_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS", "http://localhost:3000")
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./broker.db"),
        hydra_admin_url=os.getenv("HYDRA_ADMIN_URL", "http://localhost:4445").rstrip("/"),
        http_timeout=float(os.getenv("HTTP_TIMEOUT", "10")),
        login_remember_for=int(os.getenv("LOGIN_REMEMBER_FOR", "3600")),
        totp_issuer=os.getenv("TOTP_ISSUER", "consent-broker"),
        encryption_key=os.getenv("ENCRYPTION_KEY", ""),
        oauth_state_secret=os.getenv("OAUTH_STATE_SECRET", ""),
        google=_provider("GOOGLE"),
        github=_provider("GITHUB"),
        password_reset_url_base=os.getenv(
            "PASSWORD_RESET_URL_BASE", "http://localhost:3000/password-reset"
        ),
        password_reset_token_ttl_secs=int(os.getenv("PASSWORD_RESET_TOKEN_TTL_SECS", "3600")),
        smtp_host=os.getenv("SMTP_HOST"),
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_username=os.getenv("SMTP_USERNAME"),
        smtp_password=os.getenv("SMTP_PASSWORD"),
        smtp_from_address=os.getenv("SMTP_FROM_ADDRESS"),
        argon2_time_cost=_optional_int("ARGON2_TIME_COST"),
        argon2_memory_cost=_optional_int("ARGON2_MEMORY_COST"),
        argon2_parallelism=_optional_int("ARGON2_PARALLELISM"),
        cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
