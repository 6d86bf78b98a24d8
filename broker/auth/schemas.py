from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# ---------- login / consent / logout ----------
class LoginRequest(BaseModel):
    login_challenge: str
    email: str
    password: str
    # only for accounts with 2FA enabled
    code: Optional[str] = None


class LoginResponse(BaseModel):
    redirect_to: Optional[str] = None
    requires_2fa: Optional[bool] = None
    user_id: Optional[str] = None


class ConsentRequest(BaseModel):
    consent_challenge: str
    grant_scope: List[str] = Field(default_factory=list)


class ConsentRejectRequest(BaseModel):
    consent_challenge: str


class LogoutRequest(BaseModel):
    logout_challenge: str


class RedirectResponse(BaseModel):
    redirect_to: str


# ---------- registration / password reset ----------
class RegisterRequest(BaseModel):
    email: str
    password: str


class RegisterResponse(BaseModel):
    id: str
    email: str
    created_at: datetime

    class Config:
        from_attributes = True


class PasswordResetRequest(BaseModel):
    email: str


class PasswordResetExecute(BaseModel):
    token: str
    new_password: str


class MessageResponse(BaseModel):
    message: str


# ---------- 2FA ----------
class TotpSetupRequest(BaseModel):
    user_id: str
    password: str


class TotpSetupResponse(BaseModel):
    secret: str
    qr_code: str


class TotpVerifyRequest(BaseModel):
    user_id: str
    code: str


class TotpVerifyResponse(BaseModel):
    enabled: bool


class TotpDisableRequest(BaseModel):
    user_id: str
    password: str
    code: str


class TotpDisableResponse(BaseModel):
    disabled: bool


# ---------- social login ----------
class SocialAuthUrlResponse(BaseModel):
    auth_url: str
