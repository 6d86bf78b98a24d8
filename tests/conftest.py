"""
Pytest configuration and fixtures for the consent broker tests.

Upstream HTTP (authorization server admin API, Google, GitHub) is served by
an in-process fake behind httpx.MockTransport. Storage is in-memory SQLite.
"""
import base64
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from broker.auth import models  # noqa: F401
from broker.auth.service import BrokerContext, BrokerService
from broker.core.config import ProviderSettings, Settings
from broker.database.database import Base, make_engine, make_session_factory

STATE_KEY = base64.b64encode(bytes(range(32))).decode()
TOTP_KEY = base64.urlsafe_b64encode(bytes(range(100, 132))).decode().rstrip("=")

HYDRA_HOST = "hydra.test"


@dataclass
class RecordedCall:
    method: str
    host: str
    path: str
    params: Dict[str, str]
    body: Optional[Any]


@dataclass
class FakeUpstream:
    """Answers like the authorization server admin API and the social providers."""

    calls: List[RecordedCall] = field(default_factory=list)
    login_requests: Dict[str, dict] = field(default_factory=dict)
    consent_requests: Dict[str, dict] = field(default_factory=dict)
    google_profile: dict = field(
        default_factory=lambda: {"id": "g-123", "email": "alice@example.com", "name": "Alice"}
    )
    github_profile: dict = field(
        default_factory=lambda: {"id": 42, "login": "octocat", "email": None, "name": "Octo"}
    )
    # (host, path) -> handler returning a canned response
    overrides: Dict[tuple, Callable[[httpx.Request], httpx.Response]] = field(default_factory=dict)

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = None
        if request.content:
            try:
                body = json.loads(request.content)
            except ValueError:
                # form-encoded token exchange
                body = dict(httpx.QueryParams(request.content.decode()))
        self.calls.append(
            RecordedCall(
                method=request.method,
                host=request.url.host,
                path=request.url.path,
                params=dict(request.url.params),
                body=body,
            )
        )
        override = self.overrides.get((request.url.host, request.url.path))
        if override is not None:
            return override(request)
        if request.url.host == HYDRA_HOST:
            return self._hydra(request)
        return self._social(request)

    def _hydra(self, request: httpx.Request) -> httpx.Response:
        parts = request.url.path.split("/")
        # /admin/oauth2/auth/requests/<flow>[/<action>]
        flow = parts[5]
        action = parts[6] if len(parts) > 6 else None
        challenge = request.url.params.get(f"{flow}_challenge")
        if action is not None:
            return httpx.Response(200, json={"redirect_to": f"http://hydra.test/after/{flow}/{action}"})
        if flow == "login":
            default = {
                "challenge": challenge,
                "skip": False,
                "subject": "",
                "client": {"client_id": "demo-app"},
                "requested_scope": ["openid", "profile"],
            }
            return httpx.Response(200, json=self.login_requests.get(challenge, default))
        if flow == "consent":
            default = {
                "challenge": challenge,
                "skip": False,
                "subject": "user-1",
                "client": {"client_id": "demo-app"},
                "requested_scope": ["openid", "profile", "email"],
                "requested_access_token_audience": [],
            }
            return httpx.Response(200, json=self.consent_requests.get(challenge, default))
        return httpx.Response(200, json={"subject": "user-1", "sid": "sid-1"})

    def _social(self, request: httpx.Request) -> httpx.Response:
        host, path = request.url.host, request.url.path
        if (host, path) == ("oauth2.googleapis.com", "/token"):
            return httpx.Response(200, json={"access_token": "google-access", "token_type": "Bearer"})
        if (host, path) == ("www.googleapis.com", "/oauth2/v2/userinfo"):
            return httpx.Response(200, json=self.google_profile)
        if (host, path) == ("github.com", "/login/oauth/access_token"):
            return httpx.Response(200, json={"access_token": "github-access", "token_type": "bearer"})
        if (host, path) == ("api.github.com", "/user"):
            return httpx.Response(200, json=self.github_profile)
        return httpx.Response(404, json={"error": "not_found"})

    def hydra_calls(self, flow: Optional[str] = None, action: Optional[str] = None) -> List[RecordedCall]:
        calls = [c for c in self.calls if c.host == HYDRA_HOST]
        if flow is not None:
            calls = [c for c in calls if c.path.split("/")[5] == flow]
        if action is not None:
            calls = [c for c in calls if c.path.endswith(f"/{action}")]
        return calls


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def http(upstream) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        hydra_admin_url=f"http://{HYDRA_HOST}",
        login_remember_for=3600,
        totp_issuer="Broker Test",
        encryption_key=TOTP_KEY,
        oauth_state_secret=STATE_KEY,
        google=ProviderSettings(
            client_id="google-client",
            client_secret="google-secret",
            redirect_uri="http://localhost:8000/api/oauth/google/callback",
        ),
        github=ProviderSettings(
            client_id="github-client",
            client_secret="github-secret",
            redirect_uri="http://localhost:8000/api/oauth/github/callback",
        ),
        password_reset_url_base="http://localhost:3000/password-reset",
        # cheap hashing keeps the suite fast
        argon2_time_cost=1,
        argon2_memory_cost=8,
        argon2_parallelism=1,
    )


@pytest.fixture
def db():
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def ctx(settings, http) -> BrokerContext:
    return BrokerContext.build(settings, http)


@pytest.fixture
def service(ctx, db) -> BrokerService:
    return BrokerService(ctx, db)
