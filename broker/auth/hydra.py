"""
Client for the authorization server's admin API (login, consent, logout).

Any transport failure, non-2xx status, or response that does not parse into
the expected shape is BrokerUnavailable. Nothing is retried here.
"""
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, Field, ValidationError

from broker.core.errors import BrokerUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class ClientInfo(BaseModel):
    client_id: str
    client_name: Optional[str] = None


class LoginRequestInfo(BaseModel):
    challenge: str
    skip: bool
    subject: str
    client: ClientInfo
    requested_scope: List[str] = Field(default_factory=list)
    request_url: Optional[str] = None
    session_id: Optional[str] = None


class ConsentRequestInfo(BaseModel):
    challenge: str
    skip: bool
    subject: str
    client: ClientInfo
    requested_scope: List[str] = Field(default_factory=list)
    requested_access_token_audience: List[str] = Field(default_factory=list)


class LogoutRequestInfo(BaseModel):
    challenge: Optional[str] = None
    subject: str
    sid: Optional[str] = None


class RedirectResponse(BaseModel):
    redirect_to: str


class HydraClient:
    def __init__(self, admin_url: str, http: httpx.AsyncClient):
        self.admin_url = admin_url.rstrip("/")
        self.http = http

    def _url(self, flow: str, action: Optional[str] = None) -> str:
        path = f"{self.admin_url}/admin/oauth2/auth/requests/{flow}"
        return f"{path}/{action}" if action else path

    async def _call(
        self,
        method: str,
        flow: str,
        action: Optional[str],
        challenge: str,
        model: Type[T],
        body: Optional[Dict[str, Any]] = None,
    ) -> T:
        label = f"{flow} {action or 'get'}"
        try:
            resp = await self.http.request(
                method,
                self._url(flow, action),
                params={f"{flow}_challenge": challenge},
                json=body,
            )
        except httpx.HTTPError as exc:
            logger.error("Hydra %s failed: %s", label, exc.__class__.__name__)
            raise BrokerUnavailable(f"hydra {label} transport error") from exc

        if not resp.is_success:
            logger.error("Hydra %s returned status %s", label, resp.status_code)
            raise BrokerUnavailable(f"hydra {label} returned {resp.status_code}")

        try:
            parsed = model.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            logger.error("Hydra %s response could not be parsed", label)
            raise BrokerUnavailable(f"hydra {label} response malformed") from exc
        logger.debug("Hydra %s ok", label)
        return parsed

    # ---------- login ----------
    async def get_login_request(self, challenge: str) -> LoginRequestInfo:
        return await self._call("GET", "login", None, challenge, LoginRequestInfo)

    async def accept_login(
        self, challenge: str, subject: str, remember: bool = True, remember_for: int = 3600
    ) -> str:
        body = {"subject": subject, "remember": remember, "remember_for": remember_for}
        result = await self._call("PUT", "login", "accept", challenge, RedirectResponse, body)
        logger.info("Hydra login accepted")
        return result.redirect_to

    async def reject_login(self, challenge: str, error: str, description: str) -> str:
        body = {"error": error, "error_description": description}
        result = await self._call("PUT", "login", "reject", challenge, RedirectResponse, body)
        return result.redirect_to

    # ---------- consent ----------
    async def get_consent_request(self, challenge: str) -> ConsentRequestInfo:
        return await self._call("GET", "consent", None, challenge, ConsentRequestInfo)

    async def accept_consent(
        self,
        challenge: str,
        grant_scope: List[str],
        grant_audience: List[str],
        remember: bool = True,
        remember_for: int = 3600,
        session: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> str:
        body: Dict[str, Any] = {
            "grant_scope": list(grant_scope),
            "remember": remember,
            "remember_for": remember_for,
        }
        if grant_audience:
            body["grant_access_token_audience"] = list(grant_audience)
        if session:
            body["session"] = session
        result = await self._call("PUT", "consent", "accept", challenge, RedirectResponse, body)
        logger.info("Hydra consent accepted")
        return result.redirect_to

    async def reject_consent(self, challenge: str, error: str, description: str) -> str:
        body = {"error": error, "error_description": description}
        result = await self._call("PUT", "consent", "reject", challenge, RedirectResponse, body)
        return result.redirect_to

    # ---------- logout ----------
    async def get_logout_request(self, challenge: str) -> LogoutRequestInfo:
        return await self._call("GET", "logout", None, challenge, LogoutRequestInfo)

    async def accept_logout(self, challenge: str) -> str:
        result = await self._call("PUT", "logout", "accept", challenge, RedirectResponse)
        logger.info("Hydra logout accepted")
        return result.redirect_to

    async def reject_logout(self, challenge: str, error: str, description: str) -> str:
        body = {"error": error, "error_description": description}
        result = await self._call("PUT", "logout", "reject", challenge, RedirectResponse, body)
        return result.redirect_to
