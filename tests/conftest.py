"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of hamsterhub.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402

# ---------------------------------------------------------------------------
# Make JSONB columns work in SQLite for testing.
# SQLite doesn't support JSONB natively, but SQLAlchemy's JSON type works.
# We register a custom type compiler so SQLite renders JSONB as TEXT.
# ---------------------------------------------------------------------------
from sqlalchemy.dialects.postgresql import JSONB as PG_JSONB  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

# The app (and with it every router) is imported once here so dependency
# overrides below key on the same function objects the routes hold.
from hamsterhub.api import rate_limit as rate_limit_mod  # noqa: E402
from hamsterhub.api.deps import (  # noqa: E402
    JWT_ALGORITHM,
    get_config,
    get_engine,
    get_role_checker,
)
from hamsterhub.api.main import app  # noqa: E402
from hamsterhub.config import HubConfig  # noqa: E402
from hamsterhub.database.models import Base, ShopItem  # noqa: E402

_jsonb_sqlite_registered = False


def _register_jsonb_sqlite_compat():
    """Register SQLite compilation for PG JSONB type (idempotent).

    Also maps BigInteger → INTEGER so autoincrement works on SQLite.
    """
    global _jsonb_sqlite_registered
    if _jsonb_sqlite_registered:
        return
    from sqlalchemy import BigInteger
    from sqlalchemy.ext.compiler import compiles

    @compiles(PG_JSONB, "sqlite")
    def _compile_jsonb_as_text(type_, compiler, **kw):
        return "TEXT"

    @compiles(BigInteger, "sqlite")
    def _compile_bigint_as_integer(type_, compiler, **kw):
        return "INTEGER"

    _jsonb_sqlite_registered = True


_register_jsonb_sqlite_compat()

ADMIN_ROLE_ID = 555
LISTED_ADMIN_ID = 42


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all HamsterHub tables.

    JSONB columns are transparently mapped to TEXT for SQLite compatibility.
    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db`` and the limiter).
    """
    from sqlalchemy.pool import StaticPool

    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a transactional session that rolls back after each test."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


@pytest.fixture
def hub_config() -> HubConfig:
    return HubConfig(
        community_name="TestHub",
        guild_id=1,
        dashboard_port=8000,
        admin_role_id=ADMIN_ROLE_ID,
        admin_user_ids=frozenset({LISTED_ADMIN_ID}),
        primary_starting_balance=1000,
    )


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------
def make_token(
    sub: str = "1001", username: str = "Hammy", *, is_admin: bool = False
) -> str:
    """Create a member JWT signed with the app secret."""
    import jwt

    from hamsterhub.api.deps import JWT_SECRET

    return jwt.encode(
        {"sub": sub, "username": username, "is_admin": is_admin},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def make_admin_token(sub: str = "99999", username: str = "FixtureAdmin") -> str:
    """Create an admin JWT.  Usable as both a fixture and a factory function."""
    return make_token(sub, username, is_admin=True)


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_token():
    """Generate a valid admin JWT for use in API integration tests."""
    return make_admin_token()


@pytest.fixture
def user_token():
    return make_token()


# ---------------------------------------------------------------------------
# Catalog helpers
# ---------------------------------------------------------------------------
def add_item(engine: Engine, **fields) -> int:
    """Insert a ShopItem and return its id."""
    defaults = {"name": "Sunflower Seeds", "price": 100}
    defaults.update(fields)
    with Session(engine) as session:
        item = ShopItem(**defaults)
        session.add(item)
        session.commit()
        return item.id


class RoleBook:
    """In-memory stand-in for the Discord role oracle."""

    def __init__(self) -> None:
        self.grants: set[tuple[int, int]] = set()
        self.calls: list[tuple[int, int]] = []

    def grant(self, user_id: int, role_id: int) -> None:
        self.grants.add((user_id, role_id))

    def __call__(self, user_id: int, role_id: int) -> bool:
        self.calls.append((user_id, role_id))
        return (user_id, role_id) in self.grants


@pytest.fixture
def roles() -> RoleBook:
    return RoleBook()


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------
@pytest.fixture
def client(db_engine, hub_config, roles):
    """FastAPI TestClient wired to the SQLite engine and fake role oracle."""
    from fastapi.testclient import TestClient

    original_limiter = rate_limit_mod._limiter
    rate_limit_mod.configure_rate_limiter(engine=db_engine)

    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_config] = lambda: hub_config
    app.dependency_overrides[get_role_checker] = lambda: roles

    yield TestClient(app, raise_server_exceptions=False)

    app.dependency_overrides.clear()
    rate_limit_mod._limiter = original_limiter
