"""
tests/conftest.py -- Shared test fixtures for the JWT Pizza test suite.

This module provides:
  - engine / user_store / pizza_store: a fresh in-memory database per test
  - new_user: helper that registers a user with the given roles
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus an admin token for API integration tests
  - factory: the mocked pizza factory behind the api_client app

Design: "sqlite://" gets a StaticPool from open_engine(), so every checkout
(including the ones made from TestClient's worker threads) sees the same
in-memory database. Each open_engine("sqlite://") call is a brand new database.

Environment must be set before any auth/core import: DEBUG so get_settings()
auto-generates SECRET_KEY, a low bcrypt cost so hashing does not dominate the
run, and a login rate limit the suite cannot hit.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_state
from auth.models import Admin, RoleRequest, User, UserCandidate
from auth.sessions import TokenService
from auth.store import UserStore
from core.factory import FactoryClient
from core.telemetry import Telemetry
from database.schema import open_engine
from database.store import PizzaStore

# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine():
    e = open_engine("sqlite://")
    yield e
    e.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def pizza_store(engine) -> PizzaStore:
    return PizzaStore(engine, list_per_page=10)


@pytest.fixture
def tokens(user_store) -> TokenService:
    return TokenService(user_store)


def _make_user(
    store: UserStore,
    name: str,
    email: str,
    password: str = "pw",
    roles: list[RoleRequest] | None = None,
) -> User:
    candidate = UserCandidate(name=name, email=email, password=password)
    if roles is not None:
        candidate.roles = roles
    return store.add_user(candidate)


@pytest.fixture
def new_user(user_store):
    """Return a helper that registers a user in the test database."""

    def _create(name: str, email: str, password: str = "pw", roles: list[RoleRequest] | None = None) -> User:
        return _make_user(user_store, name, email, password, roles)

    return _create


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(engine, factory):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine, a null telemetry and the mocked factory into
    app.state. The purge_task is a long-sleeping coroutine so shutdown has a
    real asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_state(app, engine, Telemetry(), factory)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    One TestClient and one in-memory database per test module. The admin user
    (admin@jwt.com / adminpass) is created before the client starts.
    """
    engine = open_engine("sqlite://")
    factory = MagicMock(spec=FactoryClient)
    user_store = UserStore(engine)
    admin = _make_user(user_store, "常用名字", "admin@jwt.com", "adminpass", roles=[Admin()])
    token = TokenService(user_store).issue(admin)

    app.router.lifespan_context = _patch_lifespan(engine, factory)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    engine.dispose()


@pytest.fixture
def factory(api_client) -> MagicMock:
    """The mocked FactoryClient behind api_client, reset for each test."""
    mock = app.state.order_service.factory
    mock.reset_mock(return_value=True, side_effect=True)
    return mock
