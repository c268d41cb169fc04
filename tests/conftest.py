"""
tests/conftest.py -- Shared test fixtures for the auth service tests.

This module provides:
  - settings:        Settings with a fixed secret, in-memory DB, cheap argon2
  - store:           CredentialStore on a fresh in-memory SQLite database
  - hasher / codec:  the token primitives built from those settings
  - mailer:          RecordingMailer -- keeps sent mail in a list, can be told to fail
  - sessions / password_reset: the two services wired to the fixtures above
  - api_client:      (TestClient, RecordingMailer) over the real FastAPI app

Design: the async store is created inside the event loop that uses it. For
service tests that is the pytest-asyncio loop; for API tests it is the
TestClient's loop, which is why the patched lifespan builds the services
itself (via api.main.init_state) instead of receiving a pre-built store.

Argon2 cost is turned all the way down (t=1, m=1 MiB, p=1): the tests check
behaviour, not hashing strength, and the default cost would make the suite slow.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Generator
from contextlib import asynccontextmanager

# Set DEBUG before any core import so an accidental get_settings() call in a
# test auto-generates JWT_SECRET instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from api.main import app, close_state, init_state
from auth.mailer import DeliveryError
from auth.password_reset import PasswordResetWorkflow
from auth.sessions import SessionManager
from auth.store import CredentialStore
from auth.tokens import AccessTokenCodec, CredentialHasher
from core.config import Settings

TEST_SECRET = "test-secret-key-that-is-at-least-32-chars"
MEMORY_DB_URL = "sqlite+aiosqlite:///:memory:"


class RecordingMailer:
    """Mailer double: records every message; raises DeliveryError when fail=True."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []
        self.fail = False

    async def send(self, to_address: str, subject: str, body: str) -> None:
        if self.fail:
            raise DeliveryError("simulated transport failure")
        self.sent.append((to_address, subject, body))


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "jwt_secret": TEST_SECRET,
        "database_url": MEMORY_DB_URL,
        "password_hash_time_cost": 1,
        "password_hash_memory_cost": 1024,
        "password_hash_parallelism": 1,
        "password_reset_url_base": "http://app.test/",
        "app_name": "Todo Test",
    }
    values.update(overrides)
    return Settings(**values)


# ---------------------------------------------------------------------------
# Service-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def store() -> AsyncIterator[CredentialStore]:
    s = CredentialStore(MEMORY_DB_URL)
    await s.create_schema()
    yield s
    await s.close()


@pytest.fixture
def hasher(settings: Settings) -> CredentialHasher:
    return CredentialHasher.from_settings(settings)


@pytest.fixture
def codec(settings: Settings) -> AccessTokenCodec:
    return AccessTokenCodec.from_settings(settings)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def sessions(store, hasher, codec, settings) -> SessionManager:
    return SessionManager(store, hasher, codec, settings)


@pytest.fixture
def password_reset(store, hasher, mailer, settings) -> PasswordResetWorkflow:
    return PasswordResetWorkflow(store, hasher, mailer, settings)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, mailer: RecordingMailer):
    """Return a lifespan that wires test settings and the recording mailer.

    No purge task: the tests never wait long enough for it to fire.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        await init_state(app, settings, mailer=mailer)
        yield
        await close_state(app)

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, RecordingMailer], None, None]:
    """Yield (client, mailer) over the real app with an isolated in-memory store.

    Function-scoped: every test starts with an empty database and an empty
    cookie jar.
    """
    mailer = RecordingMailer()
    app.router.lifespan_context = _patch_lifespan(make_settings(), mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mailer
