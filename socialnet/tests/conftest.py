"""
tests/conftest.py — Fixtures shared by the unit suite.

Unit tests run without Flask and without a database:
  - InMemoryAuthRepository satisfies the AuthRepository contract with plain
    dicts. atomic() snapshots both tables and restores them on any exception,
    so rollback behaviour is observable.
  - FrozenClock is injected into AuthService so expiry is deterministic.

Password hashes are created with the 10,000-iteration floor to keep the
suite fast; production uses 1,000,000.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from socialnet.app.errors import ErrorCode, conflict, internal
from socialnet.app.repositories.auth_repository import (
    RefreshTokenRecord,
    UserRecord,
    normalize_email,
)
from socialnet.app.services.auth_service import AuthService
from socialnet.app.services.auth_settings import AuthSettings
from socialnet.app.services.password_hasher import hash_password


TEST_ITERATIONS = 10_000
TEST_SIGNING_KEY = "unit-test-signing-key-that-is-long-enough"


class FrozenClock:

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryAuthRepository:

    def __init__(self) -> None:
        self.users: dict[int, UserRecord] = {}
        self.tokens: dict[int, RefreshTokenRecord] = {}
        self.commits = 0
        self.rollbacks = 0
        self.fail_next_insert = False

    @contextmanager
    def atomic(self):
        snapshot = (dict(self.users), dict(self.tokens))
        try:
            yield self
        except Exception:
            self.users, self.tokens = snapshot
            self.rollbacks += 1
            raise
        self.commits += 1

    # ── Users ──────────────────────────────────────────────────────────────

    def add_user(
            self,
            email: str = "alice@example.com",
            password: str = "Sup3rSecret!",
            is_active: bool = True,
            roles: tuple[str, ...] = ("User",),
    ) -> UserRecord:
        """Test helper: seeds a user directly, outside any transaction."""
        user = UserRecord(
            id=len(self.users) + 1,
            email=normalize_email(email),
            password_hash=hash_password(password, TEST_ITERATIONS),
            is_active=is_active,
            roles=roles,
        )
        self.users[user.id] = user
        return user

    def find_user_by_email(self, normalized_email):
        return next((u for u in self.users.values() if u.email == normalized_email), None)

    def find_user_by_id(self, user_id):
        return self.users.get(user_id)

    def insert_user(self, email, password_hash, first_name=None, last_name=None,
                    role_names=("User",)):
        if self.find_user_by_email(normalize_email(email)) is not None:
            raise conflict(ErrorCode.CONFLICT, "duplicate email")
        user = UserRecord(
            id=len(self.users) + 1,
            email=normalize_email(email),
            password_hash=password_hash,
            is_active=True,
            roles=tuple(role_names),
            first_name=first_name,
            last_name=last_name,
        )
        self.users[user.id] = user
        return user

    def update_user_password(self, user_id, password_hash):
        self.users[user_id] = replace(self.users[user_id], password_hash=password_hash)

    # ── Refresh tokens ─────────────────────────────────────────────────────

    def find_refresh_token(self, token):
        return next((t for t in self.tokens.values() if t.token == token), None)

    def insert_refresh_token(self, record):
        if self.fail_next_insert:
            self.fail_next_insert = False
            raise internal()
        if self.find_refresh_token(record.token) is not None:
            raise conflict(ErrorCode.CONFLICT, "duplicate token")
        stored = replace(record, id=len(self.tokens) + 1)
        self.tokens[stored.id] = stored
        return stored

    def update_refresh_token(self, record):
        stored = self.tokens[record.id]
        if stored.revoked_at is not None:
            return False
        self.tokens[record.id] = replace(
            stored,
            revoked_at=record.revoked_at,
            revoked_by_ip=record.revoked_by_ip,
            replaced_by_token=record.replaced_by_token,
            revocation_reason=record.revocation_reason,
        )
        return True

    def find_active_refresh_tokens_for_user(self, user_id, now):
        return [
            t for t in self.tokens.values()
            if t.user_id == user_id and t.is_active(now)
        ]


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock():
    # Starts at wall-clock time: PyJWT validates exp against the real clock.
    return FrozenClock(datetime.now(timezone.utc).replace(microsecond=0))


@pytest.fixture
def repo():
    return InMemoryAuthRepository()


@pytest.fixture
def settings():
    return AuthSettings(
        signing_key=TEST_SIGNING_KEY,
        issuer="socialnet-test",
        audience="socialnet-test-clients",
        hash_iterations=TEST_ITERATIONS,
    )


@pytest.fixture
def service(repo, settings, clock):
    return AuthService(repo, settings, clock=clock)
