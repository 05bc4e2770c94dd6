"""
Unit tests for SqlAlchemyAuthRepository branches that integration tests do
not reach: transaction error mapping and the conditional revoke.

These tests run DB-free with a mocked session.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from socialnet.app.errors import AppError, ErrorCode
from socialnet.app.repositories.auth_repository import (
    RefreshTokenRecord,
    SqlAlchemyAuthRepository,
    as_utc,
    normalize_email,
)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(**overrides) -> RefreshTokenRecord:
    fields = dict(
        id=7,
        user_id=1,
        token="tok",
        created_at=NOW,
        expires_at=NOW + timedelta(days=7),
    )
    fields.update(overrides)
    return RefreshTokenRecord(**fields)


def test_atomic_commits_on_success():
    session = MagicMock()
    repository = SqlAlchemyAuthRepository(session)

    with repository.atomic():
        pass

    session.commit.assert_called_once()
    session.rollback.assert_not_called()


def test_atomic_maps_integrity_error_to_conflict():
    session = MagicMock()
    session.commit.side_effect = IntegrityError("INSERT", {}, Exception("unique"))
    repository = SqlAlchemyAuthRepository(session)

    with pytest.raises(AppError) as exc_info:
        with repository.atomic():
            pass

    assert exc_info.value.code == ErrorCode.CONFLICT
    assert exc_info.value.http_status == 409
    session.rollback.assert_called_once()


def test_atomic_maps_other_database_errors_to_internal():
    session = MagicMock()
    repository = SqlAlchemyAuthRepository(session)

    with pytest.raises(AppError) as exc_info:
        with repository.atomic():
            raise OperationalError("SELECT", {}, Exception("connection lost"))

    assert exc_info.value.code == ErrorCode.INTERNAL_ERROR
    assert exc_info.value.http_status == 500
    session.commit.assert_not_called()
    session.rollback.assert_called_once()


def test_atomic_rolls_back_and_reraises_app_errors():
    session = MagicMock()
    repository = SqlAlchemyAuthRepository(session)

    with pytest.raises(AppError) as exc_info:
        with repository.atomic():
            raise AppError(ErrorCode.INVALID_INPUT, "nope", 400)

    assert exc_info.value.code == ErrorCode.INVALID_INPUT
    session.rollback.assert_called_once()


def test_update_refresh_token_reports_lost_race():
    session = MagicMock()
    session.execute.return_value.rowcount = 0
    repository = SqlAlchemyAuthRepository(session)

    assert repository.update_refresh_token(_record(revoked_at=NOW)) is False


def test_update_refresh_token_reports_success():
    session = MagicMock()
    session.execute.return_value.rowcount = 1
    repository = SqlAlchemyAuthRepository(session)

    assert repository.update_refresh_token(_record(revoked_at=NOW)) is True
    session.execute.assert_called_once()


def test_find_user_by_id_returns_none_when_missing():
    session = MagicMock()
    session.get.return_value = None

    assert SqlAlchemyAuthRepository(session).find_user_by_id(404) is None


def test_find_user_by_email_flattens_roles():
    session = MagicMock()
    session.execute.return_value.scalar_one_or_none.return_value = SimpleNamespace(
        id=3,
        email="carol@example.com",
        password_hash="PBKDF2$...",
        is_active=True,
        first_name="Carol",
        last_name=None,
        roles=[SimpleNamespace(name="User"), SimpleNamespace(name="Admin"), SimpleNamespace(name=" ")],
    )

    user = SqlAlchemyAuthRepository(session).find_user_by_email("carol@example.com")

    assert user.id == 3
    assert user.roles == ("Admin", "User")


def test_record_activity_window():
    record = _record()
    assert record.is_active(NOW)
    assert not record.is_active(record.expires_at)
    assert not _record(revoked_at=NOW).is_active(NOW)


def test_as_utc_treats_naive_as_utc():
    naive = datetime(2026, 3, 1, 12, 0)
    assert as_utc(naive) == NOW
    assert as_utc(None) is None


def test_normalize_email():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
    assert normalize_email(None) == ""
