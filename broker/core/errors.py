"""
Broker error hierarchy.

Every error carries the HTTP status the web layer should answer with, a
machine-readable code, and a public message that is safe to show to the
client. The constructor message is server-side detail and is only logged.

    BrokerError
    ├── ValidationError
    ├── AuthFailure
    ├── AlreadyExists
    ├── TokenNotFound
    ├── TokenExpiredOrUsed
    ├── TotpInvalid / TotpAlreadyEnabled / TotpNotEnabled / TotpSetupRequired
    ├── InvalidOrTamperedState
    ├── ProviderNotConfigured
    ├── ProviderCommunicationError
    ├── BrokerUnavailable
    └── InternalError
        └── ConfigurationError
"""
from typing import Optional


class BrokerError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    public_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.public_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.public_message}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(BrokerError):
    """Malformed input. The message is echoed to the client."""

    status_code = 400
    code = "validation"

    def __init__(self, message: str):
        super().__init__(message)
        self.public_message = message


class AuthFailure(BrokerError):
    """Bad credentials. Never says which part was wrong."""

    status_code = 401
    code = "invalid_credentials"
    public_message = "Invalid email or password"


class AlreadyExists(BrokerError):
    status_code = 409
    code = "already_exists"
    public_message = "This email address is already in use"


class TokenNotFound(BrokerError):
    status_code = 400
    code = "invalid_request"
    public_message = "Invalid request"


class TokenExpiredOrUsed(BrokerError):
    status_code = 400
    code = "invalid_request"
    public_message = "Invalid request"


class TotpInvalid(BrokerError):
    status_code = 401
    code = "totp_invalid"
    public_message = "Invalid authentication code"


class TotpAlreadyEnabled(BrokerError):
    status_code = 409
    code = "totp_already_enabled"
    public_message = "Two-factor authentication is already enabled"


class TotpNotEnabled(BrokerError):
    status_code = 400
    code = "totp_not_enabled"
    public_message = "Two-factor authentication is not enabled"


class TotpSetupRequired(BrokerError):
    status_code = 403
    code = "totp_setup_required"
    public_message = "Two-factor authentication setup is required"


class InvalidOrTamperedState(BrokerError):
    """OAuth state failed to decode. Possible CSRF probe."""

    status_code = 400
    code = "invalid_state"
    public_message = "Invalid request"


class ProviderNotConfigured(BrokerError):
    status_code = 404
    code = "provider_not_configured"
    public_message = "Login provider is not available"


class ProviderCommunicationError(BrokerError):
    """A social provider (Google, GitHub) answered badly or not at all."""

    status_code = 502
    code = "provider_unavailable"
    public_message = "External login provider is unavailable"


class BrokerUnavailable(BrokerError):
    """The authorization server admin API answered badly or not at all."""

    status_code = 502
    code = "broker_unavailable"
    public_message = "Authorization server is unavailable"


class InternalError(BrokerError):
    pass


class ConfigurationError(InternalError):
    pass
