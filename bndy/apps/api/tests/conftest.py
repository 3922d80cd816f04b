"""Pytest configuration and fixtures."""

import os
import sys
from pathlib import Path

# Inject sys.path for reliable pytest imports
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))  # => .../apps/api

# Test environment (must be set before bndy_api modules are imported)
os.environ.setdefault("BNDY_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BNDY_JSON_LOGS", "false")
os.environ.setdefault("NOTIFIER_MODE", "log")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault("SESSION_SECRET", "test-session-secret-0123456789-abcdefghijkl")
os.environ.setdefault("DESTINATION_PEPPER", "test-destination-pepper-0123456789abcdef")
os.environ.setdefault("CREDENTIAL_SEAL_KEY", "test-credential-seal-key-0123456789abcdef")
os.environ.setdefault("APP_BASE_URL", "https://app.bndy.test")
os.environ.setdefault("API_BASE_URL", "https://api.bndy.test")
os.environ.pop("COOKIE_DOMAIN", None)

import re
from typing import Any, Optional

import fakeredis
import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from bndy_api.auth.credential_store import EphemeralCredentialStore
from bndy_api.auth.email_channel import EmailChannel
from bndy_api.auth.federated_channel import FederatedChannel
from bndy_api.auth.notifier import get_email_notifier, get_sms_notifier
from bndy_api.auth.phone_channel import PhoneChannel
from bndy_api.auth.provider_bridge import (
    IdentityProviderBridge,
    ProviderConfig,
    ProviderRegistry,
    get_provider_registry,
)
from bndy_api.auth.session_issuer import SessionIssuer, get_session_issuer
from bndy_api.auth.throttle import RequestThrottle
from bndy_api.db.engine import build_engine, build_sessionmaker
from bndy_api.db.models import Base
from bndy_api.db.redis_client import get_redis
from bndy_api.db.session import get_db
from bndy_api.main import app

TEST_SESSION_SECRET = os.environ["SESSION_SECRET"]

GOOGLE_TOKEN_URL = "https://oauth2.example.test/token"
GOOGLE_USERINFO_URL = "https://oauth2.example.test/userinfo"


class FakeClock:
    """Mutable clock for expiry tests."""

    def __init__(self, now: float = 1_760_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier:
    """Notifier double: records messages; ``fail`` simulates a delivery failure."""

    def __init__(self, fail: bool = False, raises: Optional[Exception] = None):
        self.fail = fail
        self.raises = raises
        self.sent: list[tuple[str, str]] = []

    def send(self, destination: str, body: str) -> bool:
        if self.raises is not None:
            raise self.raises
        if self.fail:
            return False
        self.sent.append((destination, body))
        return True

    @property
    def last_body(self) -> str:
        return self.sent[-1][1]

    def last_code(self) -> str:
        return re.search(r"\b(\d{6})\b", self.last_body).group(1)

    def last_link_token(self) -> str:
        return re.search(r"/auth/magic/(\S+)", self.last_body).group(1)


class FakeProvider:
    """In-process identity provider served through httpx.MockTransport.

    ``userinfo`` is returned for every valid code; ``fail_token`` makes the
    token endpoint answer 400; ``token_body`` replaces the token endpoint JSON.
    ``calls`` counts every HTTP request received.
    """

    def __init__(self, userinfo: Optional[dict] = None):
        self.userinfo = userinfo or {
            "sub": "google-sub-123",
            "email": "alex@example.com",
            "email_verified": True,
            "name": "Alex Rivers",
            "given_name": "Alex",
            "family_name": "Rivers",
            "picture": "https://cdn.example.test/alex.png",
        }
        self.fail_token = False
        self.token_body: Any = None
        self.calls: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        if request.url.path == "/token":
            if self.fail_token:
                return httpx.Response(400, json={"error": "invalid_grant"})
            if self.token_body is not None:
                return httpx.Response(200, json=self.token_body)
            return httpx.Response(200, json={"access_token": "upstream-access", "token_type": "Bearer"})
        if request.url.path == "/userinfo":
            if request.headers.get("Authorization") != "Bearer upstream-access":
                return httpx.Response(401)
            return httpx.Response(200, json=self.userinfo)
        return httpx.Response(404)

    def bridge(self, name: str = "google") -> IdentityProviderBridge:
        config = ProviderConfig(
            name=name,
            client_id="client-id",
            client_secret="client-secret",
            authorize_url="https://accounts.example.test/authorize",
            token_url=GOOGLE_TOKEN_URL,
            userinfo_url=GOOGLE_USERINFO_URL,
            redirect_uri="https://api.bndy.test/auth/callback",
            scopes=("openid", "email", "profile"),
        )
        return IdentityProviderBridge(config, client=httpx.Client(transport=httpx.MockTransport(self.handler)))


@pytest.fixture(scope="function")
def db_session() -> Session:
    """Fresh in-memory SQLite database per test (foreign keys enforced)."""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)

    session = build_sessionmaker(engine)()

    try:
        yield session
        session.rollback()
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(scope="function")
def fake_redis():
    """In-process Redis (Lua scripting enabled), flushed per test."""
    client = fakeredis.FakeRedis(decode_responses=True)
    client.flushall()
    try:
        yield client
    finally:
        client.flushall()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(fake_redis, clock) -> EphemeralCredentialStore:
    return EphemeralCredentialStore(fake_redis, clock=clock)


@pytest.fixture
def throttle(fake_redis) -> RequestThrottle:
    return RequestThrottle(fake_redis, limit=5, window_seconds=900)


@pytest.fixture
def sms_notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def email_notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def registry(provider) -> ProviderRegistry:
    return ProviderRegistry({"google": provider.bridge("google")})


@pytest.fixture
def phone_channel(store, throttle, sms_notifier) -> PhoneChannel:
    return PhoneChannel(store, throttle, sms_notifier)


@pytest.fixture
def email_channel(store, throttle, email_notifier) -> EmailChannel:
    return EmailChannel(store, throttle, email_notifier, link_base_url="https://api.bndy.test")


@pytest.fixture
def federated_channel(store, registry) -> FederatedChannel:
    return FederatedChannel(store, registry)


@pytest.fixture
def session_issuer() -> SessionIssuer:
    return SessionIssuer(
        secret=TEST_SESSION_SECRET,
        cookie_name="bndy_session",
        duration_seconds=30 * 24 * 60 * 60,
        secure=False,
    )


@pytest.fixture
def test_client(db_session, fake_redis, sms_notifier, email_notifier, registry, session_issuer):
    """TestClient with every external collaborator replaced by an in-process double."""
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_sms_notifier] = lambda: sms_notifier
    app.dependency_overrides[get_email_notifier] = lambda: email_notifier
    app.dependency_overrides[get_provider_registry] = lambda: registry
    app.dependency_overrides[get_session_issuer] = lambda: session_issuer

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def signed_in(test_client, session_issuer, db_session):
    """Factory: create a user and put a valid session cookie on the test client."""
    from bndy_api.auth.identity_store import PhoneProof, resolve_or_create

    def _sign_in(phone: str = "+447700900123"):
        resolved = resolve_or_create(db_session, PhoneProof(phone=phone))
        issued = session_issuer.issue(resolved.user_id, {"name": resolved.user.display_name})
        test_client.cookies.set(session_issuer.cookie_name, issued.token)
        return resolved.user

    return _sign_in


@pytest.fixture
def notifier_factory():
    """Build extra notifier doubles (e.g. failing ones) inside a test."""
    return RecordingNotifier
