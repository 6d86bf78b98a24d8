import abc
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ValidationError

from broker.auth.models import SocialProviderName
from broker.auth.oauth_state import OAuthStateCodec
from broker.core.config import ProviderSettings, Settings
from broker.core.errors import ProviderCommunicationError, ProviderNotConfigured

logger = logging.getLogger(__name__)

__all__ = [
    "SocialProfile",
    "SocialProvider",
    "GoogleProvider",
    "GitHubProvider",
    "SocialProviderRegistry",
]


class SocialProfile(BaseModel):
    external_id: str
    email: str
    display_name: Optional[str] = None


class _GoogleUserInfo(BaseModel):
    id: str
    email: str
    name: Optional[str] = None


class _GitHubUser(BaseModel):
    id: int
    login: str
    email: Optional[str] = None
    name: Optional[str] = None


class SocialProvider(abc.ABC):
    """One configured third-party identity source."""

    name: SocialProviderName
    authorize_url: str
    token_url: str
    profile_url: str
    scope: str

    def __init__(self, config: ProviderSettings, state_codec: OAuthStateCodec, http: httpx.AsyncClient):
        self.config = config
        self.state_codec = state_codec
        self.http = http

    def _extra_authorize_params(self) -> Dict[str, str]:
        return {}

    def authorization_url(self, challenge_id: str) -> str:
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": self.scope,
            "state": self.state_codec.encode(challenge_id),
            **self._extra_authorize_params(),
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    def decode_state(self, state: str) -> str:
        return self.state_codec.decode(state)

    async def _send(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = await self.http.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("%s request failed: %s", self.name.value, exc.__class__.__name__)
            raise ProviderCommunicationError(f"{self.name.value} transport error") from exc
        if not resp.is_success:
            logger.error("%s returned status %s for %s", self.name.value, resp.status_code, url)
            raise ProviderCommunicationError(f"{self.name.value} returned {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as exc:
            logger.error("%s returned a non-JSON body", self.name.value)
            raise ProviderCommunicationError(f"{self.name.value} returned malformed body") from exc
        if not isinstance(body, dict):
            raise ProviderCommunicationError(f"{self.name.value} returned malformed body")
        return body

    async def exchange_code(self, code: str) -> str:
        tokens = await self._send(
            "POST",
            self.token_url,
            data={
                "code": code,
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                "redirect_uri": self.config.redirect_uri,
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
        )
        if "error" in tokens:
            # never log the body: it may echo the code
            logger.error("%s token exchange rejected: %s", self.name.value, tokens.get("error"))
            raise ProviderCommunicationError(f"{self.name.value} token error")
        access_token = tokens.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise ProviderCommunicationError(f"{self.name.value} token response without access_token")
        return access_token

    async def _get_profile_json(self, access_token: str) -> Dict[str, Any]:
        return await self._send(
            "GET",
            self.profile_url,
            headers={"Authorization": f"Bearer {access_token}", **self._profile_headers()},
        )

    def _profile_headers(self) -> Dict[str, str]:
        return {}

    @abc.abstractmethod
    async def fetch_profile(self, access_token: str) -> SocialProfile:
        ...


class GoogleProvider(SocialProvider):
    name = SocialProviderName.google
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    profile_url = "https://www.googleapis.com/oauth2/v2/userinfo"
    scope = "openid email profile"

    def _extra_authorize_params(self) -> Dict[str, str]:
        return {"response_type": "code", "access_type": "online", "prompt": "select_account"}

    async def fetch_profile(self, access_token: str) -> SocialProfile:
        raw = await self._get_profile_json(access_token)
        try:
            info = _GoogleUserInfo.model_validate(raw)
        except ValidationError as exc:
            raise ProviderCommunicationError("google userinfo malformed") from exc
        return SocialProfile(external_id=info.id, email=info.email, display_name=info.name)


class GitHubProvider(SocialProvider):
    name = SocialProviderName.github
    authorize_url = "https://github.com/login/oauth/authorize"
    token_url = "https://github.com/login/oauth/access_token"
    profile_url = "https://api.github.com/user"
    scope = "user:email"

    def _profile_headers(self) -> Dict[str, str]:
        return {"Accept": "application/vnd.github+json", "User-Agent": "consent-broker"}

    async def fetch_profile(self, access_token: str) -> SocialProfile:
        raw = await self._get_profile_json(access_token)
        try:
            user = _GitHubUser.model_validate(raw)
        except ValidationError as exc:
            raise ProviderCommunicationError("github user malformed") from exc
        # Private GitHub emails are common; a placeholder keeps account matching
        # email-shaped. It is not a verified address.
        email = user.email or f"{user.login}@github.local"
        return SocialProfile(external_id=str(user.id), email=email, display_name=user.name)


_PROVIDER_CLASSES = {
    SocialProviderName.google: GoogleProvider,
    SocialProviderName.github: GitHubProvider,
}


class SocialProviderRegistry:
    def __init__(self, providers: Dict[SocialProviderName, SocialProvider]):
        self._providers = dict(providers)

    @classmethod
    def from_settings(
        cls, settings: Settings, state_codec: OAuthStateCodec, http: httpx.AsyncClient
    ) -> "SocialProviderRegistry":
        providers = {}
        for name, config in (
            (SocialProviderName.google, settings.google),
            (SocialProviderName.github, settings.github),
        ):
            if config is None:
                logger.info("%s login not configured, skipping", name.value)
                continue
            providers[name] = _PROVIDER_CLASSES[name](config, state_codec, http)
            logger.info("%s login enabled", name.value)
        return cls(providers)

    def get(self, name) -> SocialProvider:
        try:
            key = SocialProviderName(name)
        except ValueError:
            raise ProviderNotConfigured(f"unknown provider {name!r}") from None
        provider = self._providers.get(key)
        if provider is None:
            logger.warning("%s login requested but not configured", key.value)
            raise ProviderNotConfigured(f"{key.value} is not configured")
        return provider

    def configured(self) -> list:
        return sorted(p.value for p in self._providers)
