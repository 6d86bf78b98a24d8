import inspect
from urllib.parse import parse_qs, urlparse

import httpx
import pyotp
import pytest
from fastapi.testclient import TestClient

from broker.main import create_app

PASSWORD = "correct horse battery"


@pytest.fixture
def client(settings, http):
    with TestClient(create_app(settings, http=http)) as c:
        yield c


@pytest.fixture
def alice(client):
    resp = client.post("/api/register", json={"email": "alice@example.com", "password": PASSWORD})
    assert resp.status_code == 201
    return resp.json()


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "social_providers": ["github", "google"]}


HASHING_ROUTES = [
    "/api/register",
    "/api/password/reset-request",
    "/api/password/reset",
    "/api/2fa/setup",
    "/api/2fa/verify",
    "/api/2fa/disable",
]


@pytest.mark.parametrize("path", HASHING_ROUTES)
def test_hashing_routes_run_in_threadpool(client, path):
    endpoint = next(r.endpoint for r in client.app.routes if getattr(r, "path", None) == path)
    assert not inspect.iscoroutinefunction(endpoint)


def test_register_response_shape(alice):
    assert set(alice) == {"id", "email", "created_at"}


def test_register_duplicate_is_409(client, alice):
    resp = client.post("/api/register", json={"email": "alice@example.com", "password": PASSWORD})
    assert resp.status_code == 409
    assert resp.json() == {"error": "This email address is already in use"}


def test_login_returns_redirect_only(client, alice):
    resp = client.post(
        "/api/login",
        json={"login_challenge": "login-1", "email": "alice@example.com", "password": PASSWORD},
    )
    assert resp.status_code == 200
    assert resp.json() == {"redirect_to": "http://hydra.test/after/login/accept"}


@pytest.mark.parametrize(
    "email, password",
    [("alice@example.com", "wrong password"), ("ghost@example.com", PASSWORD)],
    ids=["wrong-password", "unknown-email"],
)
def test_login_failures_are_indistinguishable(client, alice, email, password):
    resp = client.post(
        "/api/login", json={"login_challenge": "login-1", "email": email, "password": password}
    )
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid email or password"}


def test_validation_message_is_returned(client):
    resp = client.post(
        "/api/login", json={"login_challenge": "login-1", "email": "alice@example.com", "password": "short"}
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Password must be at least 8 characters"}


def test_broker_outage_is_502(client, upstream):
    upstream.overrides[("hydra.test", "/admin/oauth2/auth/requests/consent")] = lambda r: httpx.Response(503)
    resp = client.post("/api/consent", json={"consent_challenge": "c-1", "grant_scope": ["openid"]})
    assert resp.status_code == 502
    assert resp.json() == {"error": "Authorization server is unavailable"}


def test_consent_and_logout(client):
    consent = client.post("/api/consent", json={"consent_challenge": "c-1", "grant_scope": ["openid"]})
    rejected = client.post("/api/consent/reject", json={"consent_challenge": "c-1"})
    logout = client.post("/api/logout", json={"logout_challenge": "out-1"})
    cancel = client.post("/api/logout/reject", json={"logout_challenge": "out-1"})

    assert consent.json() == {"redirect_to": "http://hydra.test/after/consent/accept"}
    assert rejected.json() == {"redirect_to": "http://hydra.test/after/consent/reject"}
    assert logout.json() == {"redirect_to": "http://hydra.test/after/logout/accept"}
    assert cancel.json() == {"redirect_to": "http://hydra.test/after/logout/reject"}


def test_2fa_routes(client, alice):
    setup = client.post("/api/2fa/setup", json={"user_id": alice["id"], "password": PASSWORD})
    assert setup.status_code == 200
    secret = setup.json()["secret"]

    verify = client.post("/api/2fa/verify", json={"user_id": alice["id"], "code": pyotp.TOTP(secret).now()})
    assert verify.json() == {"enabled": True}

    login = client.post(
        "/api/login",
        json={"login_challenge": "login-1", "email": "alice@example.com", "password": PASSWORD},
    )
    assert login.json() == {"requires_2fa": True, "user_id": alice["id"]}

    disable = client.post(
        "/api/2fa/disable",
        json={"user_id": alice["id"], "password": PASSWORD, "code": pyotp.TOTP(secret).now()},
    )
    assert disable.json() == {"disabled": True}


def test_verify_without_setup_is_403(client, alice):
    resp = client.post("/api/2fa/verify", json={"user_id": alice["id"], "code": "123456"})
    assert resp.status_code == 403


def test_password_reset_routes(client, alice):
    known = client.post("/api/password/reset-request", json={"email": "alice@example.com"})
    unknown = client.post("/api/password/reset-request", json={"email": "ghost@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()

    bad = client.post("/api/password/reset", json={"token": "nope", "new_password": "new password!"})
    assert bad.status_code == 400
    assert bad.json() == {"error": "Invalid request"}


def test_social_round_trip_redirects(client, upstream):
    auth = client.get("/api/oauth/google", params={"login_challenge": "login-5"})
    assert auth.status_code == 200
    state = parse_qs(urlparse(auth.json()["auth_url"]).query)["state"][0]

    resp = client.get(
        "/api/oauth/google/callback",
        params={"code": "auth-code", "state": state},
        follow_redirects=False,
    )
    assert resp.status_code == 303
    assert resp.headers["location"] == "http://hydra.test/after/login/accept"


def test_unconfigured_provider_is_404(client):
    resp = client.get("/api/oauth/twitter", params={"login_challenge": "login-5"})
    assert resp.status_code == 404
    assert resp.json() == {"error": "Login provider is not available"}


def test_tampered_state_is_400(client):
    resp = client.get(
        "/api/oauth/github/callback", params={"code": "c", "state": "AAAA"}, follow_redirects=False
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Invalid request"}
