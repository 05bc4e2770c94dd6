"""
repositories/auth_repository.py — Persistence contract for the auth core.

The auth service never walks a live ORM graph. Every query here returns a
flat, frozen record struct (UserRecord / RefreshTokenRecord) and every write
takes one. SqlAlchemyAuthRepository is the production implementation; tests
may supply any object satisfying AuthRepository.

Transaction boundary:
  Each service operation runs inside `with repository.atomic():`. The block
  commits on success and rolls back on any exception. IntegrityError becomes
  AppError(CONFLICT, 409); any other SQLAlchemyError becomes
  AppError(INTERNAL_ERROR, 500). Nothing here retries.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import ContextManager, Iterator, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from socialnet.app.errors import ErrorCode, conflict, internal
from socialnet.app.models.refresh_token import RefreshToken
from socialnet.app.models.user import ROLE_USER, Role, User


logger = logging.getLogger(__name__)


# ── Record structs ─────────────────────────────────────────────────────────

@dataclass(frozen=True)
class UserRecord:
    id: int
    email: str
    password_hash: str
    is_active: bool
    roles: tuple[str, ...] = ()
    first_name: str | None = None
    last_name: str | None = None


@dataclass(frozen=True)
class RefreshTokenRecord:
    user_id: int
    token: str
    created_at: datetime
    expires_at: datetime
    created_by_ip: str | None = None
    revoked_at: datetime | None = None
    revoked_by_ip: str | None = None
    replaced_by_token: str | None = None
    revocation_reason: str | None = None
    id: int | None = None  # assigned by the store on insert

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_active(self, now: datetime) -> bool:
        return not self.is_revoked and not self.is_expired(now)


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def as_utc(value: datetime | None) -> datetime | None:
    """
    Some drivers (SQLite) hand back naive datetimes for timezone-aware
    columns. Everything stored by this module is UTC, so naive means UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ── Contract ───────────────────────────────────────────────────────────────

class AuthRepository(Protocol):

    def atomic(self) -> ContextManager["AuthRepository"]: ...

    def find_user_by_email(self, normalized_email: str) -> UserRecord | None: ...

    def find_user_by_id(self, user_id: int) -> UserRecord | None: ...

    def insert_user(
            self,
            email: str,
            password_hash: str,
            first_name: str | None = None,
            last_name: str | None = None,
            role_names: tuple[str, ...] = (ROLE_USER,),
    ) -> UserRecord: ...

    def update_user_password(self, user_id: int, password_hash: str) -> None: ...

    def find_refresh_token(self, token: str) -> RefreshTokenRecord | None: ...

    def insert_refresh_token(self, record: RefreshTokenRecord) -> RefreshTokenRecord: ...

    def update_refresh_token(self, record: RefreshTokenRecord) -> bool: ...

    def find_active_refresh_tokens_for_user(
            self, user_id: int, now: datetime
    ) -> list[RefreshTokenRecord]: ...


# ── SQLAlchemy implementation ──────────────────────────────────────────────

def _to_user_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        email=user.email,
        password_hash=user.password_hash,
        is_active=bool(user.is_active),
        roles=tuple(sorted(role.name for role in user.roles if role.name and role.name.strip())),
        first_name=user.first_name,
        last_name=user.last_name,
    )


def _to_token_record(row: RefreshToken) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        created_at=as_utc(row.created_at),
        created_by_ip=row.created_by_ip,
        expires_at=as_utc(row.expires_at),
        revoked_at=as_utc(row.revoked_at),
        revoked_by_ip=row.revoked_by_ip,
        replaced_by_token=row.replaced_by_token,
        revocation_reason=row.revocation_reason,
    )


class SqlAlchemyAuthRepository:
    """AuthRepository backed by a SQLAlchemy session (normally db.session)."""

    def __init__(self, session: Session) -> None:
        self._session = session

    @contextmanager
    def atomic(self) -> Iterator["SqlAlchemyAuthRepository"]:
        try:
            yield self
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            logger.warning("Auth transaction rolled back on constraint violation: %s", exc.orig)
            raise conflict(
                ErrorCode.CONFLICT,
                "The request conflicts with existing data.",
            ) from exc
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.exception("Auth transaction rolled back on database error")
            raise internal() from exc
        except Exception:
            self._session.rollback()
            raise

    # ── Users ──────────────────────────────────────────────────────────────

    def find_user_by_email(self, normalized_email: str) -> UserRecord | None:
        user = self._session.execute(
            select(User).where(User.email == normalized_email)
        ).scalar_one_or_none()
        return _to_user_record(user) if user is not None else None

    def find_user_by_id(self, user_id: int) -> UserRecord | None:
        user = self._session.get(User, user_id)
        return _to_user_record(user) if user is not None else None

    def insert_user(
            self,
            email: str,
            password_hash: str,
            first_name: str | None = None,
            last_name: str | None = None,
            role_names: tuple[str, ...] = (ROLE_USER,),
    ) -> UserRecord:
        roles = []
        for name in role_names:
            role = self._session.execute(
                select(Role).where(Role.name == name)
            ).scalar_one_or_none()
            if role is None:
                role = Role(name=name)
                self._session.add(role)
            roles.append(role)

        user = User(
            email=normalize_email(email),
            password_hash=password_hash,
            first_name=first_name,
            last_name=last_name,
            is_active=True,
            roles=roles,
        )
        self._session.add(user)
        self._session.flush()  # populate user.id
        return _to_user_record(user)

    def update_user_password(self, user_id: int, password_hash: str) -> None:
        self._session.execute(
            update(User)
            .where(User.id == user_id)
            .values(password_hash=password_hash)
        )

    # ── Refresh tokens ─────────────────────────────────────────────────────

    def find_refresh_token(self, token: str) -> RefreshTokenRecord | None:
        row = self._session.execute(
            select(RefreshToken).where(RefreshToken.token == token)
        ).scalar_one_or_none()
        return _to_token_record(row) if row is not None else None

    def insert_refresh_token(self, record: RefreshTokenRecord) -> RefreshTokenRecord:
        row = RefreshToken(
            user_id=record.user_id,
            token=record.token,
            created_at=record.created_at,
            created_by_ip=record.created_by_ip,
            expires_at=record.expires_at,
        )
        self._session.add(row)
        # flush so the unique constraint fires inside atomic(), not later
        self._session.flush()
        return _to_token_record(row)

    def update_refresh_token(self, record: RefreshTokenRecord) -> bool:
        """
        Writes the revocation fields of `record`.

        Conditional on the stored row still being unrevoked, so a row is
        revoked at most once even when two requests race on the same token.
        Returns False when nothing was updated.
        """
        result = self._session.execute(
            update(RefreshToken)
            .where(RefreshToken.id == record.id, RefreshToken.revoked_at.is_(None))
            .values(
                revoked_at=record.revoked_at,
                revoked_by_ip=record.revoked_by_ip,
                replaced_by_token=record.replaced_by_token,
                revocation_reason=record.revocation_reason,
            )
        )
        return result.rowcount == 1

    def find_active_refresh_tokens_for_user(
            self, user_id: int, now: datetime
    ) -> list[RefreshTokenRecord]:
        rows = self._session.execute(
            select(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > now,
            )
            .order_by(RefreshToken.id)
        ).scalars().all()
        return [_to_token_record(row) for row in rows]
