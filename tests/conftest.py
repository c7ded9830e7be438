"""
tests/conftest.py -- Shared test fixtures for Lalisure auth integration tests.

This module provides:
  - make_store(): isolated named shared-memory SQLite credential store
  - RecordingMailer: captures outbound email instead of calling Resend
  - FixedClock: settable UTC clock for expiry boundary tests
  - seed_users(): one account per role plus edge-case accounts
  - _patch_lifespan(): wires test collaborators into app.state
  - api_client / web_client: TestClient fixtures over the full ASGI app

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, wire_auth
from auth.mailer import EmailMessage
from auth.models import User
from auth.roles import Role
from auth.store import UserStore
from auth.tokens import hash_password

# Mount the web router once; asgi.py does this in production.
from web.routes import router as web_router

if not any(getattr(r, "path", None) == "/staff/login" for r in app.router.routes):
    app.include_router(web_router, tags=["Web UI"])

# Rate limits are exercised by slowapi's own tests; here they would make
# repeated logins from the single TestClient address flaky.
limiter.enabled = False

_db_counter = itertools.count()

PASSWORD = "correct-horse"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


@dataclass
class RecordingMailer:
    sent: list[EmailMessage] = field(default_factory=list)
    is_configured: bool = True

    def send(self, message: EmailMessage) -> bool:
        self.sent.append(message)
        return True

    def last_reset_token(self) -> str:
        """Pull the raw token out of the most recent reset link."""
        body = self.sent[-1].text
        return body.split("token=", 1)[1].split()[0]


class FixedClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(name: str) -> UserStore:
    """Create an isolated named shared-memory SQLite credential store."""
    n = next(_db_counter)
    return UserStore(db_url=f"sqlite:///file:test_auth_{name}_{n}?mode=memory&cache=shared&uri=true")


def seed_users(store: UserStore) -> dict[str, int]:
    """Create one account per role plus a passwordless staff account.

    All passworded accounts share PASSWORD. Returns {label: user_id}.
    """
    hashed = hash_password(PASSWORD)
    accounts = {
        "admin": User(email="admin@lalisure.test", first_name="Ada", last_name="Admin", role=Role.ADMIN, hashed_password=hashed),
        "agent": User(email="agent@lalisure.test", first_name="Abe", last_name="Agent", role=Role.AGENT, hashed_password=hashed),
        "underwriter": User(
            email="underwriter@lalisure.test",
            first_name="Uma",
            last_name="Underwriter",
            role=Role.UNDERWRITER,
            hashed_password=hashed,
        ),
        "customer": User(
            email="customer@lalisure.test",
            first_name="Cee",
            last_name="Customer",
            role=Role.CUSTOMER,
            external_id="idp_customer_1",
            hashed_password=hashed,
        ),
        "no_password": User(email="nopass@lalisure.test", first_name="Nia", last_name="Nopass", role=Role.AGENT),
        "inactive": User(
            email="inactive@lalisure.test",
            first_name="Ivo",
            last_name="Inactive",
            role=Role.AGENT,
            hashed_password=hashed,
            is_active=False,
        ),
    }
    return {label: store.create_user(user) for label, user in accounts.items()}


def _patch_lifespan(user_store: UserStore, mailer: RecordingMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store and recording mailer into app.state so TestClient
    routes see isolated data. The OAuth registry is mocked to prevent real
    network calls to the identity provider.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_auth(app, user_store, mailer)
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


@dataclass
class AppHarness:
    client: TestClient
    store: UserStore
    mailer: RecordingMailer
    ids: dict[str, int]

    def login(self, label: str, password: str = PASSWORD) -> TestClient:
        """Log in through the API; the client keeps the session cookie."""
        resp = self.client.post(
            "/api/v1/staff/login",
            json={"email": f"{label}@lalisure.test", "password": password},
        )
        assert resp.status_code == 200, resp.text
        return self.client


def _harness(name: str, follow_redirects: bool) -> Generator[AppHarness, None, None]:
    store = make_store(name)
    ids = seed_users(store)
    mailer = RecordingMailer()
    app.router.lifespan_context = _patch_lifespan(store, mailer)
    with TestClient(app, follow_redirects=follow_redirects, raise_server_exceptions=True) as client:
        yield AppHarness(client=client, store=store, mailer=mailer, ids=ids)
    store.close()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = make_store("unit")
    yield s
    s.close()


@pytest.fixture
def api_client() -> Generator[AppHarness, None, None]:
    """Full app over a fresh seeded store. Function-scoped: cookies do not leak."""
    yield from _harness("api", follow_redirects=True)


@pytest.fixture
def web_client() -> Generator[AppHarness, None, None]:
    """Like api_client but with follow_redirects=False.

    Gate and login tests assert on redirect Location headers, which are
    invisible once the client follows the redirect.
    """
    yield from _harness("web", follow_redirects=False)
