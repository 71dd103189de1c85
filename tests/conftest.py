"""
tests/conftest.py -- Shared test fixtures for Nadlan unit and integration tests.

This module provides:
  - make_settings(): Settings with fixed keys and the cheapest bcrypt cost
  - RecordingNotifier: captures outbound emails so tests can read raw tokens
  - make_services(): a full service graph over an isolated database
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - services: fresh service graph per test (unit tests)
  - api_client: TestClient over the real app (integration tests)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before api.main is imported: the module reads
get_settings() at import time to configure SessionMiddleware, and in debug
mode missing signing keys are generated instead of raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate the signing keys instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Account, Role
from auth.passwords import PasswordHasher
from auth.session import SessionService
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from auth.workflows import PasswordResetWorkflow, VerificationWorkflow
from core.config import Settings

# ---------------------------------------------------------------------------
# Settings and notifier doubles
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": "test-access-secret-0123456789abcdef",
        "refresh_secret_key": "test-refresh-secret-0123456789abcdef",
        "bcrypt_rounds": 4,
        "frontend_url": "http://frontend.test",
        "admin_email": "",
    }
    values.update(overrides)
    return Settings(**values)


class RecordingNotifier:
    """Notifier double that keeps every message instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str | None]] = []
        self.fail = False

    def send_verification(self, email: str, raw_token: str, name: str) -> None:
        self._record("verification", email, raw_token)

    def send_password_reset(self, email: str, raw_token: str, name: str) -> None:
        self._record("reset", email, raw_token)

    def send_welcome(self, email: str, name: str) -> None:
        self._record("welcome", email, None)

    def _record(self, kind: str, email: str, raw_token: str | None) -> None:
        if self.fail:
            raise ConnectionRefusedError("SMTP relay down")
        self.sent.append((kind, email, raw_token))

    def last_token(self, kind: str, email: str) -> str | None:
        for sent_kind, sent_email, raw in reversed(self.sent):
            if sent_kind == kind and sent_email == email:
                return raw
        return None

    def kinds(self, email: str) -> list[str]:
        return [kind for kind, sent_email, _ in self.sent if sent_email == email]


@dataclass
class Services:
    settings: Settings
    store: AccountStore
    hasher: PasswordHasher
    issuer: TokenIssuer
    notifier: RecordingNotifier
    verification: VerificationWorkflow
    password_reset: PasswordResetWorkflow
    sessions: SessionService

    def add_account(
        self,
        email: str,
        password: str | None = "Passw0rd",
        role: Role = Role.user,
        is_verified: bool = True,
        is_active: bool = True,
    ) -> Account:
        """Insert an account directly, bypassing registration."""
        return self.store.create_account(
            Account(
                email=email,
                password_hash=self.hasher.hash(password) if password else None,
                role=role,
                is_verified=is_verified,
                is_active=is_active,
                first_name="Test",
                last_name="User",
            )
        )


def memory_db_url(name: str) -> str:
    return f"sqlite:///file:test_{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_services(db_url: str, settings: Settings | None = None) -> Services:
    settings = settings or make_settings()
    store = AccountStore(db_url)
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    issuer = TokenIssuer(settings)
    notifier = RecordingNotifier()
    verification = VerificationWorkflow(store, notifier, settings)
    return Services(
        settings=settings,
        store=store,
        hasher=hasher,
        issuer=issuer,
        notifier=notifier,
        verification=verification,
        password_reset=PasswordResetWorkflow(store, hasher, notifier, settings),
        sessions=SessionService(store, hasher, issuer, verification, admin_email=settings.admin_email),
    )


def _patch_lifespan(services: Services):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test services into app.state so TestClient routes see
    an isolated test DB. The OAuth registry is mocked to prevent network calls.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = services.settings
        app.state.account_store = services.store
        app.state.token_issuer = services.issuer
        app.state.verification = services.verification
        app.state.password_reset = services.password_reset
        app.state.sessions = services.sessions
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def services() -> Generator[Services, None, None]:
    """Fresh service graph over its own in-memory database."""
    svc = make_services(memory_db_url("unit"))
    yield svc
    svc.store.close()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def file_services(tmp_path) -> Generator[Services, None, None]:
    """Service graph over an on-disk SQLite file.

    Shared-cache memory databases lock whole tables, so tests that race
    writers from several threads need a real file (WAL mode, busy timeout).
    """
    svc = make_services(f"sqlite:///{tmp_path / 'race.db'}")
    yield svc
    svc.store.close()


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, Services, str], None, None]:
    """Yield (client, services, admin_token) for API integration tests.

    One TestClient per test module for speed. The admin account is created
    before the client starts and its access token is minted directly.
    """
    svc = make_services(memory_db_url("api"))
    admin = svc.add_account("admin@nadlan.test", password="Adm1nPass", role=Role.admin)
    token = svc.issuer.issue(admin.id).access_token

    app.router.lifespan_context = _patch_lifespan(svc)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, svc, token

    svc.store.close()
