"""
Login, consent and logout flows brokered for the authorization server.

BrokerContext holds the process-wide pieces (settings, keys, HTTP clients)
and is built once at startup. BrokerService is built per request around a
database session and drives one flow end to end, returning the redirect the
web layer hands back to the browser.
"""
import asyncio
import logging
from dataclasses import dataclass

import httpx
from argon2 import PasswordHasher
from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from broker.auth.accounts import AccountResolver
from broker.auth.crypto import CryptoBox
from broker.auth.email import EmailSender
from broker.auth.hydra import HydraClient
from broker.auth.oauth_state import OAuthStateCodec
from broker.auth.password_reset import PasswordResetService
from broker.auth.passwords import CredentialVerifier, build_hasher, make_dummy_hash
from broker.auth.schemas import (
    ConsentRejectRequest,
    ConsentRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    PasswordResetExecute,
    PasswordResetRequest,
    RedirectResponse,
    RegisterRequest,
    RegisterResponse,
    SocialAuthUrlResponse,
    TotpDisableRequest,
    TotpDisableResponse,
    TotpSetupRequest,
    TotpSetupResponse,
    TotpVerifyRequest,
    TotpVerifyResponse,
)
from broker.auth.social import SocialProviderRegistry
from broker.auth.totp import TotpVault
from broker.auth.two_factor import TwoFactorService
from broker.auth.validation import (
    require_challenge,
    require_code,
    require_email,
    require_password,
    require_scope_subset,
)
from broker.core.config import Settings
from broker.database.repositories import UserRepository

logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = "If the address is registered, password reset instructions have been sent"
RESET_DONE_MESSAGE = "Your password has been updated"


@dataclass(frozen=True)
class BrokerContext:
    settings: Settings
    hasher: PasswordHasher
    dummy_hash: str
    vault: TotpVault
    state_codec: OAuthStateCodec
    hydra: HydraClient
    social: SocialProviderRegistry
    email: EmailSender

    @classmethod
    def build(cls, settings: Settings, http: httpx.AsyncClient) -> "BrokerContext":
        hasher = build_hasher(settings)
        state_codec = OAuthStateCodec(CryptoBox.from_base64(settings.oauth_state_secret))
        return cls(
            settings=settings,
            hasher=hasher,
            dummy_hash=make_dummy_hash(hasher),
            vault=TotpVault(CryptoBox.from_base64(settings.encryption_key), settings.totp_issuer),
            state_codec=state_codec,
            hydra=HydraClient(settings.hydra_admin_url, http),
            social=SocialProviderRegistry.from_settings(settings, state_codec, http),
            email=EmailSender(settings),
        )


class BrokerService:
    def __init__(self, ctx: BrokerContext, db: Session):
        self.ctx = ctx
        self.db = db
        self.hydra = ctx.hydra
        self.users = UserRepository(db)
        self.verifier = CredentialVerifier(self.users, ctx.hasher, ctx.dummy_hash)
        self.two_factor = TwoFactorService(db, ctx.vault, self.verifier)
        self.password_reset = PasswordResetService(db, ctx.settings, ctx.hasher)
        self.accounts = AccountResolver(db)

    @property
    def remember_for(self) -> int:
        return self.ctx.settings.login_remember_for

    # ---------- login ----------
    async def login(self, req: LoginRequest) -> LoginResponse:
        require_challenge(req.login_challenge, "login_challenge")
        require_email(req.email)
        require_password(req.password)

        info = await self.hydra.get_login_request(req.login_challenge)
        if info.skip:
            # provider already has a session for this subject
            redirect_to = await self.hydra.accept_login(
                req.login_challenge, info.subject, remember=True, remember_for=self.remember_for
            )
            return LoginResponse(redirect_to=redirect_to)

        # argon2 runs off the event loop
        user = await asyncio.to_thread(self.verifier.authenticate, req.email, req.password)

        enrollment = self.two_factor.enabled_enrollment(user)
        if enrollment is not None:
            if req.code is None:
                return LoginResponse(requires_2fa=True, user_id=user.id)
            require_code(req.code)
            self.two_factor.check_login_code(user, enrollment, req.code)

        redirect_to = await self.hydra.accept_login(
            req.login_challenge, user.id, remember=True, remember_for=self.remember_for
        )
        logger.info("Login accepted user_id=%s client_id=%s", user.id, info.client.client_id)
        return LoginResponse(redirect_to=redirect_to)

    # ---------- consent ----------
    async def consent(self, req: ConsentRequest) -> RedirectResponse:
        require_challenge(req.consent_challenge, "consent_challenge")

        info = await self.hydra.get_consent_request(req.consent_challenge)
        if info.skip:
            redirect_to = await self.hydra.accept_consent(
                req.consent_challenge,
                info.requested_scope,
                info.requested_access_token_audience,
                remember=True,
                remember_for=self.remember_for,
            )
            logger.info("Consent skipped (previously granted) client_id=%s", info.client.client_id)
            return RedirectResponse(redirect_to=redirect_to)

        require_scope_subset(req.grant_scope, info.requested_scope)
        redirect_to = await self.hydra.accept_consent(
            req.consent_challenge,
            req.grant_scope,
            info.requested_access_token_audience,
            remember=True,
            remember_for=self.remember_for,
        )
        logger.info(
            "Consent granted client_id=%s scopes=%s", info.client.client_id, ",".join(req.grant_scope)
        )
        return RedirectResponse(redirect_to=redirect_to)

    async def reject_consent(self, req: ConsentRejectRequest) -> RedirectResponse:
        require_challenge(req.consent_challenge, "consent_challenge")
        redirect_to = await self.hydra.reject_consent(
            req.consent_challenge, "access_denied", "The resource owner denied the request"
        )
        logger.info("Consent denied")
        return RedirectResponse(redirect_to=redirect_to)

    # ---------- logout ----------
    async def logout(self, req: LogoutRequest) -> RedirectResponse:
        require_challenge(req.logout_challenge, "logout_challenge")
        info = await self.hydra.get_logout_request(req.logout_challenge)
        redirect_to = await self.hydra.accept_logout(req.logout_challenge)
        logger.info("Logout accepted subject=%s", info.subject)
        return RedirectResponse(redirect_to=redirect_to)

    async def reject_logout(self, req: LogoutRequest) -> RedirectResponse:
        require_challenge(req.logout_challenge, "logout_challenge")
        redirect_to = await self.hydra.reject_logout(
            req.logout_challenge, "access_denied", "The user cancelled the logout"
        )
        return RedirectResponse(redirect_to=redirect_to)

    # ---------- registration / password reset ----------
    def register(self, req: RegisterRequest) -> RegisterResponse:
        require_email(req.email)
        require_password(req.password)
        user = self.users.create(req.email, self.ctx.hasher.hash(req.password))
        logger.info("User registered user_id=%s", user.id)
        return RegisterResponse.model_validate(user)

    def request_password_reset(
        self, req: PasswordResetRequest, background_tasks: BackgroundTasks
    ) -> MessageResponse:
        require_email(req.email)
        token = self.password_reset.issue_token(req.email)
        if token is not None:
            # mail goes out after the response
            background_tasks.add_task(
                self.ctx.email.send_password_reset, req.email, self.password_reset.build_reset_url(token)
            )
        return MessageResponse(message=RESET_REQUESTED_MESSAGE)

    def reset_password(self, req: PasswordResetExecute) -> MessageResponse:
        require_challenge(req.token, "token")
        require_password(req.new_password)
        self.password_reset.reset_password(req.token, req.new_password)
        return MessageResponse(message=RESET_DONE_MESSAGE)

    # ---------- 2FA ----------
    def setup_2fa(self, req: TotpSetupRequest) -> TotpSetupResponse:
        require_password(req.password)
        return self.two_factor.setup(req.user_id, req.password)

    def verify_2fa(self, req: TotpVerifyRequest) -> TotpVerifyResponse:
        require_code(req.code)
        return self.two_factor.verify(req.user_id, req.code)

    def disable_2fa(self, req: TotpDisableRequest) -> TotpDisableResponse:
        require_password(req.password)
        require_code(req.code)
        return self.two_factor.disable(req.user_id, req.password, req.code)

    # ---------- social login ----------
    def social_authorization_url(self, provider: str, login_challenge: str) -> SocialAuthUrlResponse:
        adapter = self.ctx.social.get(provider)
        require_challenge(login_challenge, "login_challenge")
        return SocialAuthUrlResponse(auth_url=adapter.authorization_url(login_challenge))

    async def social_callback(self, provider: str, code: str, state: str) -> str:
        adapter = self.ctx.social.get(provider)
        require_challenge(code, "code")

        login_challenge = adapter.decode_state(state)
        access_token = await adapter.exchange_code(code)
        profile = await adapter.fetch_profile(access_token)
        logger.info("Fetched %s profile", adapter.name.value)

        user_id = self.accounts.resolve(adapter.name, profile.external_id, profile.email)
        redirect_to = await self.hydra.accept_login(
            login_challenge, user_id, remember=True, remember_for=self.remember_for
        )
        logger.info("Social login accepted provider=%s user_id=%s", adapter.name.value, user_id)
        return redirect_to

