"""
tests/conftest.py -- Shared test fixtures for HuntGate unit and integration tests.

This module provides:
  - make_engine(): engine over an isolated named shared-memory SQLite DB
  - user_store / challenge_store / participant_store: fresh stores per test
  - credentials: CredentialEngine built from the test Settings
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with an admin and a player token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any api/auth/core import: DEBUG so
get_settings() generates a SECRET_KEY, ALLOWED_HOSTS so TrustedHostMiddleware
accepts the TestClient host, and a generous login limit so the login tests
never trip the rate limiter.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import CredentialEngine, hash_password
from challenges.registry import ChallengeRegistry
from challenges.store import ChallengeStore, ParticipantStore
from core.config import get_settings
from core.database import create_store_engine

ADMIN_USERNAME = "admin@hunt.test"
ADMIN_PASSWORD = "adminpass123"
PLAYER_USERNAME = "player@hunt.test"
PLAYER_PASSWORD = "playerpass123"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_engine(prefix: str = "test") -> Engine:
    """Create an engine over a named shared-memory SQLite DB no other test uses."""
    name = f"{prefix}_{uuid.uuid4().hex}"
    return create_store_engine(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


@pytest.fixture
def engine() -> Engine:
    return make_engine()


@pytest.fixture
def user_store(engine: Engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def challenge_store(engine: Engine) -> ChallengeStore:
    return ChallengeStore(engine)


@pytest.fixture
def participant_store(engine: Engine) -> ParticipantStore:
    return ParticipantStore(engine)


@pytest.fixture
def credentials() -> CredentialEngine:
    return CredentialEngine(get_settings())


def _patch_lifespan(engine: Engine, user_store: UserStore, credentials: CredentialEngine):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        challenge_store = ChallengeStore(engine)
        app.state.settings = get_settings()
        app.state.engine = engine
        app.state.credentials = credentials
        app.state.user_store = user_store
        app.state.challenge_store = challenge_store
        app.state.participant_store = ParticipantStore(engine)
        app.state.registry = ChallengeRegistry(challenge_store)
        app.state.registry.load_all()
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped API client -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_token, player_token) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores. One
    admin (game.admin) and one player (game.player) exist before the client
    starts; both passwords are the module constants above.
    """
    engine = make_engine("api")
    user_store = UserStore(engine)
    credentials = CredentialEngine(get_settings())

    user_store.insert_version(
        User(
            username=ADMIN_USERNAME,
            nickname="admin",
            roles=["game.admin"],
            password_hash=hash_password(ADMIN_PASSWORD),
        )
    )
    user_store.insert_version(
        User(
            username=PLAYER_USERNAME,
            nickname="player",
            roles=["game.player"],
            password_hash=hash_password(PLAYER_PASSWORD),
        )
    )
    admin_token = credentials.issue_token(ADMIN_USERNAME, ["game.admin"], "admin", lifetime=3600)
    player_token = credentials.issue_token(PLAYER_USERNAME, ["game.player"], "player", lifetime=3600)

    app.router.lifespan_context = _patch_lifespan(engine, user_store, credentials)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, admin_token, player_token

    engine.dispose()
