"""
tests/integration/conftest.py — Fixtures for the HTTP-level auth tests.

Design:
  - The app is created once per session using create_app("testing"), which
    points at an in-memory SQLite database unless TEST_DATABASE_URL is set.
  - All tables are created once via db.create_all() at session start.
  - Between tests, all rows are deleted in FK-safe order so tests are isolated.

Helpers are exposed as fixtures returning callables, so every test gets them
by name without importing from this module:
  - register(email=..., password=...)   → identity dict
  - login(email=..., password=...)      → session dict (tokens + user)
  - auth_headers(token)                 → {"Authorization": "Bearer <token>"}
  - seed_user(email=..., roles=...)     → UserRecord, written via the repository
"""

from __future__ import annotations

import pytest
from sqlalchemy import delete

from socialnet.app import create_app
from socialnet.app.extensions import db as _db
from socialnet.app.models.refresh_token import RefreshToken
from socialnet.app.models.user import Role, User, user_roles
from socialnet.app.repositories.auth_repository import SqlAlchemyAuthRepository
from socialnet.app.services.password_hasher import hash_password


DEFAULT_PASSWORD = "Sup3rSecret!"


# ═══════════════════════════════════════════════════════════════════════════
# Session-scoped app fixture
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(scope="session")
def app():
    """
    Creates the Flask application in 'testing' mode once for the entire session.
    Tables are created up front and dropped at teardown.
    """
    flask_app = create_app("testing")

    with flask_app.app_context():
        _db.create_all()

    yield flask_app

    with flask_app.app_context():
        _db.drop_all()


# ═══════════════════════════════════════════════════════════════════════════
# Function-scoped test isolation
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture(autouse=True)
def clean_tables(app):
    """Deletes all rows after every test, children before parents."""
    yield

    with app.app_context():
        _db.session.rollback()  # discard any uncommitted state from a failed test
        _db.session.execute(delete(RefreshToken))
        _db.session.execute(delete(user_roles))
        _db.session.execute(delete(User))
        _db.session.execute(delete(Role))
        _db.session.commit()


# ═══════════════════════════════════════════════════════════════════════════
# Client and helper fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def client(app):
    """Flask test client. Each test gets a fresh client (function-scoped)."""
    return app.test_client()


@pytest.fixture
def auth_headers():
    def _headers(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture
def register(client):
    def _register(email: str = "alice@example.com", password: str = DEFAULT_PASSWORD, **extra) -> dict:
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": email, "password": password, **extra},
        )
        assert resp.status_code == 201, f"register failed: {resp.get_json()}"
        return resp.get_json()["data"]
    return _register


@pytest.fixture
def login(client):
    def _login(email: str = "alice@example.com", password: str = DEFAULT_PASSWORD) -> dict:
        resp = client.post(
            "/api/v1/auth/login",
            json={"email": email, "password": password},
        )
        assert resp.status_code == 200, f"login failed: {resp.get_json()}"
        return resp.get_json()["data"]
    return _login


@pytest.fixture
def seed_user(app):
    """
    Writes a user straight through the repository, for accounts the public
    endpoints cannot create (admins, deactivated users).
    """
    def _seed(
            email: str = "admin@example.com",
            password: str = DEFAULT_PASSWORD,
            roles: tuple[str, ...] = ("Admin",),
            is_active: bool = True,
    ):
        with app.app_context():
            repository = SqlAlchemyAuthRepository(_db.session)
            with repository.atomic():
                user = repository.insert_user(
                    email=email,
                    password_hash=hash_password(password, app.config["PASSWORD_HASH_ITERATIONS"]),
                    role_names=roles,
                )
                if not is_active:
                    _db.session.get(User, user.id).is_active = False
            return user
    return _seed
