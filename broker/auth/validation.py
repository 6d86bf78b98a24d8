from typing import Iterable, List

from broker.auth.totp import is_code_format
from broker.core.errors import ValidationError

MIN_PASSWORD_LENGTH = 8


def require_challenge(value: str, name: str) -> None:
    if not value or not value.strip():
        raise ValidationError(f"{name} is required")


def require_email(email: str) -> None:
    if not email or not email.strip():
        raise ValidationError("Email address is required")
    if "@" not in email:
        raise ValidationError("Enter a valid email address")


def require_password(password: str) -> None:
    if not password:
        raise ValidationError("Password is required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def require_code(code: str) -> None:
    if not code:
        raise ValidationError("Authentication code is required")
    if not is_code_format(code):
        raise ValidationError("Authentication code must be 6 digits")


def require_scope_subset(grant_scope: Iterable[str], requested_scope: List[str]) -> None:
    for scope in grant_scope:
        if scope not in requested_scope:
            raise ValidationError(f"Scope '{scope}' was not requested")
