"""
services/auth_service.py — Authentication business logic.

Responsibilities:
  - Login with email + password (PBKDF2, see password_hasher.py)
  - JWT access token creation and validation (HS256, iss/aud/exp)
  - Refresh token lifecycle: creation, rotation, revocation, reuse detection
  - Account registration and password change, which feed the same lifecycle

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, flask.current_app
  - Configuration arrives once, as an AuthSettings instance
  - Persistence goes through an AuthRepository; every operation is one
    `with repository.atomic():` block

Result handling:
  Expected failures (bad credentials, unknown/revoked/expired refresh token,
  duplicate email) are returned as AuthResult.failure(AppError). Only
  Internal conditions raise: missing signing key, database failure.

Token design:
  - Access token: JWT, never stored, not individually revocable. Revoking a
    refresh token stops renewal; an already issued access token stays valid
    until its exp.
  - Refresh token: 64 random bytes, base64 without padding, stored verbatim
    with a unique constraint. Single use: refresh() revokes the presented
    record (replaced_by_token -> new token) and inserts the new one in the
    same transaction.

Passwords are never stored or logged. Tokens are logged as an 8-char prefix.
"""

from __future__ import annotations

import base64
import functools
import logging
import secrets
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Generic, TypeVar

import jwt

from socialnet.app.errors import (
    GENERIC_CREDENTIALS_MESSAGE,
    AppError,
    ErrorCode,
    conflict,
    internal,
    invalid_input,
    unauthorized,
)
from socialnet.app.repositories.auth_repository import (
    AuthRepository,
    RefreshTokenRecord,
    UserRecord,
    normalize_email,
)
from socialnet.app.services.auth_settings import AuthSettings
from socialnet.app.services.password_hasher import hash_password, needs_rehash, verify_password


logger = logging.getLogger(__name__)

T = TypeVar("T")

REFRESH_TOKEN_BYTES = 64

REASON_ROTATED = "rotated"
REASON_LOGOUT = "logout"
REASON_PASSWORD_CHANGED = "password_changed"

_GENERIC_REFRESH_MESSAGE = "The refresh token is invalid, expired, or has been revoked."


# ── Result and payload types ───────────────────────────────────────────────

@dataclass(frozen=True)
class AuthResult(Generic[T]):
    """Either a success value or one AppError, never both."""

    value: T | None = None
    error: AppError | None = None

    @classmethod
    def success(cls, value: T | None = None) -> "AuthResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: AppError) -> "AuthResult[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        """Returns the value, or raises the carried AppError (route layer)."""
        if self.error is not None:
            raise self.error
        return self.value


@dataclass(frozen=True)
class AccessTokenClaims:
    user_id: int
    email: str
    roles: tuple[str, ...]
    expires_at: datetime
    token_id: str | None = None


@dataclass(frozen=True)
class AuthSession:
    access_token: str
    expires_at: datetime
    refresh_token: str
    refresh_expires_at: datetime
    user: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "expires_at": self.expires_at.isoformat(),
            "refresh_token": self.refresh_token,
            "refresh_expires_at": self.refresh_expires_at.isoformat(),
            "user": self.user,
        }


# ── Token helpers ──────────────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _token_prefix(token: str | None) -> str:
    return (token or "")[:8]


@functools.lru_cache(maxsize=4)
def _unknown_user_hash(iterations: int) -> str:
    """A hash of a random secret at the configured cost; nothing ever matches it."""
    return hash_password(secrets.token_urlsafe(16), iterations)


def generate_refresh_token_value() -> str:
    """64 bytes from the OS CSPRNG, standard base64 with '=' padding stripped."""
    return base64.b64encode(secrets.token_bytes(REFRESH_TOKEN_BYTES)).decode("ascii").rstrip("=")


def build_identity(user: UserRecord) -> dict:
    """Serialises a UserRecord to the minimal identity snapshot. No secrets."""
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "roles": list(user.roles),
    }


def issue_access_token(
        user: UserRecord,
        settings: AuthSettings,
        now: datetime | None = None,
) -> tuple[str, datetime]:
    """
    Creates a signed JWT access token for `user`.
    Payload: sub (user id as str), email, roles, iss, aud, iat, exp, jti.

    Raises:
      AppError(INTERNAL_ERROR, 500) — no signing key configured.
    """
    if not settings.signing_key:
        logger.error("Cannot issue access token: JWT_SECRET_KEY is not configured")
        raise internal()

    issued_at = now or _utcnow()
    expires_at = issued_at + settings.access_token_lifetime
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "roles": [role for role in user.roles if role and role.strip()],
        "iss": settings.issuer,
        "aud": settings.audience,
        "iat": issued_at,
        "exp": expires_at,
        # Guarantees each issued token is unique even if generated in the same second.
        "jti": secrets.token_hex(8),
    }
    token = jwt.encode(payload, settings.signing_key, algorithm=settings.algorithm)
    return token, expires_at


def decode_access_token(token: str, settings: AuthSettings) -> AccessTokenClaims:
    """
    Verifies signature, issuer, audience and expiry (with clock-skew leeway).

    Raises:
      jwt.ExpiredSignatureError — exp is further in the past than the leeway
      jwt.InvalidTokenError     — anything else wrong with the token
      AppError(INTERNAL_ERROR)  — no signing key configured
    """
    if not settings.signing_key:
        logger.error("Cannot validate access token: JWT_SECRET_KEY is not configured")
        raise internal()

    payload = jwt.decode(
        token,
        settings.signing_key,
        algorithms=[settings.algorithm],
        audience=settings.audience,
        issuer=settings.issuer,
        leeway=settings.clock_skew,
        options={"require": ["exp", "iat", "sub", "iss", "aud"]},
    )

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise jwt.InvalidTokenError("The 'sub' claim is not a valid user id.") from exc

    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]

    return AccessTokenClaims(
        user_id=user_id,
        email=payload.get("email", ""),
        roles=tuple(roles),
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        token_id=payload.get("jti"),
    )


# ── Service ────────────────────────────────────────────────────────────────

class AuthService:
    """
    Token issuer and rotator.

    One instance per unit of work is cheap: it holds only the repository, the
    immutable settings and a clock. No other in-process state is shared
    between requests.
    """

    def __init__(
            self,
            repository: AuthRepository,
            settings: AuthSettings,
            clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._settings = settings
        self._clock = clock or _utcnow

    @property
    def settings(self) -> AuthSettings:
        return self._settings

    def _now(self) -> datetime:
        return self._clock()

    # ── Error builders ─────────────────────────────────────────────────────

    def _credentials_error(self, detail: str) -> AppError:
        message = detail if self._settings.verbose_errors else GENERIC_CREDENTIALS_MESSAGE
        return unauthorized(ErrorCode.INVALID_CREDENTIALS, message)

    def _refresh_error(self, detail: str) -> AppError:
        message = detail if self._settings.verbose_errors else _GENERIC_REFRESH_MESSAGE
        return unauthorized(ErrorCode.REFRESH_TOKEN_INVALID, message)

    # ── Private helpers ────────────────────────────────────────────────────

    def _new_refresh_record(
            self, user_id: int, source_ip: str | None, now: datetime
    ) -> RefreshTokenRecord:
        return RefreshTokenRecord(
            user_id=user_id,
            token=generate_refresh_token_value(),
            created_at=now,
            created_by_ip=source_ip,
            expires_at=now + self._settings.refresh_token_lifetime,
        )

    def _build_session(
            self,
            user: UserRecord,
            refresh_record: RefreshTokenRecord,
            now: datetime,
    ) -> AuthSession:
        access_token, expires_at = issue_access_token(user, self._settings, now)
        return AuthSession(
            access_token=access_token,
            expires_at=expires_at,
            refresh_token=refresh_record.token,
            refresh_expires_at=refresh_record.expires_at,
            user=build_identity(user),
        )

    def _revoke_active_tokens(
            self,
            repository: AuthRepository,
            user_id: int,
            reason: str | None,
            source_ip: str | None,
            now: datetime,
    ) -> int:
        revoked = 0
        for record in repository.find_active_refresh_tokens_for_user(user_id, now):
            if repository.update_refresh_token(replace(
                record,
                revoked_at=now,
                revoked_by_ip=source_ip,
                revocation_reason=reason,
            )):
                revoked += 1
        return revoked

    # ── Public operations ──────────────────────────────────────────────────

    def login(
            self,
            email: str | None,
            password: str | None,
            source_ip: str | None = None,
    ) -> AuthResult[AuthSession]:
        """
        Validates credentials and issues an access token plus a new refresh token.

        Failures:
          INVALID_CREDENTIALS (401) — empty email, unknown email, wrong password.
            Same generic message for all of them unless verbose errors are on.
          ACCOUNT_DEACTIVATED (401) — correct password, deactivated account.
          INVALID_INPUT (400)       — password is None.
        """
        if password is None:
            return AuthResult.failure(invalid_input("Password is required.", field="password"))

        normalized = normalize_email(email)
        if not normalized:
            return AuthResult.failure(self._credentials_error("Invalid email address."))

        now = self._now()
        with self._repository.atomic() as repository:
            user = repository.find_user_by_email(normalized)
            if user is None:
                # Unknown emails pay the same PBKDF2 cost as a wrong password.
                verify_password(
                    password,
                    _unknown_user_hash(self._settings.hash_iterations),
                    self._settings.min_hash_iterations,
                )
                logger.warning("Login failed: no user for email %s", normalized)
                return AuthResult.failure(self._credentials_error("User not found."))

            if not verify_password(password, user.password_hash, self._settings.min_hash_iterations):
                logger.warning("Login failed: password mismatch for user %s", user.id)
                return AuthResult.failure(self._credentials_error("Password mismatch."))

            if not user.is_active:
                logger.warning("Login failed: user %s is deactivated", user.id)
                return AuthResult.failure(unauthorized(
                    ErrorCode.ACCOUNT_DEACTIVATED,
                    "This account has been deactivated.",
                ))

            # Migrate hashes written with an older, cheaper iteration count.
            if needs_rehash(user.password_hash, self._settings.hash_iterations):
                repository.update_user_password(
                    user.id, hash_password(password, self._settings.hash_iterations)
                )
                logger.info("Password hash upgraded for user %s", user.id)

            refresh_record = self._new_refresh_record(user.id, source_ip, now)
            session = self._build_session(user, refresh_record, now)
            repository.insert_refresh_token(refresh_record)

        logger.info("Login succeeded for user %s from %s", user.id, source_ip or "unknown")
        return AuthResult.success(session)

    def refresh(
            self,
            presented_token: str | None,
            source_ip: str | None = None,
    ) -> AuthResult[AuthSession]:
        """
        Rotates a refresh token: revokes the presented record and issues a new
        access + refresh pair, committed together or not at all.

        Failures (all REFRESH_TOKEN_INVALID, 401):
          unknown token, revoked token (reuse), expired token, owner missing or
          deactivated, or the token was rotated concurrently by another request.
        """
        if not presented_token:
            return AuthResult.failure(self._refresh_error("Invalid refresh token."))

        now = self._now()
        with self._repository.atomic() as repository:
            record = repository.find_refresh_token(presented_token)
            if record is None:
                logger.warning(
                    "Refresh failed: unknown token (prefix=%s)", _token_prefix(presented_token)
                )
                return AuthResult.failure(self._refresh_error("Invalid refresh token."))

            if record.is_revoked:
                # Reuse of a rotated or logged-out token.
                logger.warning(
                    "Refresh token reuse detected for user %s (revoked_at=%s, rotated=%s)",
                    record.user_id,
                    record.revoked_at,
                    record.replaced_by_token is not None,
                )
                return AuthResult.failure(self._refresh_error("Refresh token revoked."))

            if record.is_expired(now):
                logger.info("Refresh failed: token expired for user %s", record.user_id)
                return AuthResult.failure(self._refresh_error("Refresh token expired."))

            user = repository.find_user_by_id(record.user_id)
            if user is None or not user.is_active:
                logger.warning("Refresh failed: user %s missing or deactivated", record.user_id)
                return AuthResult.failure(self._refresh_error("Invalid user."))

            replacement = self._new_refresh_record(user.id, source_ip, now)
            superseded = replace(
                record,
                revoked_at=now,
                revoked_by_ip=source_ip,
                replaced_by_token=replacement.token,
                revocation_reason=REASON_ROTATED,
            )
            if not repository.update_refresh_token(superseded):
                logger.warning(
                    "Refresh failed: token for user %s was rotated concurrently", user.id
                )
                return AuthResult.failure(self._refresh_error("Refresh token revoked."))

            session = self._build_session(user, replacement, now)
            repository.insert_refresh_token(replacement)

        logger.info("Refresh token rotated for user %s", user.id)
        return AuthResult.success(session)

    def logout(
            self,
            presented_token: str | None,
            source_ip: str | None = None,
    ) -> AuthResult[None]:
        """
        Revokes one refresh token. Idempotent: unknown or already revoked
        tokens are a silent no-op.
        """
        if not presented_token:
            return AuthResult.success()

        now = self._now()
        with self._repository.atomic() as repository:
            record = repository.find_refresh_token(presented_token)
            if record is None:
                logger.warning(
                    "Logout: refresh token not found (prefix=%s)", _token_prefix(presented_token)
                )
                return AuthResult.success()

            if record.is_revoked:
                logger.warning("Logout: refresh token already revoked at %s", record.revoked_at)
                return AuthResult.success()

            repository.update_refresh_token(replace(
                record,
                revoked_at=now,
                revoked_by_ip=source_ip,
                revocation_reason=REASON_LOGOUT,
            ))

        logger.info("Logout: token revoked for user %s", record.user_id)
        return AuthResult.success()

    def revoke_all(
            self,
            user_id: int | None,
            reason: str | None = None,
            source_ip: str | None = None,
    ) -> AuthResult[int]:
        """
        Revokes every active refresh token of `user_id` in one batch.
        Inactive records are left untouched. Returns the number revoked.
        """
        if user_id is None:
            return AuthResult.failure(invalid_input("user_id is required.", field="user_id"))

        now = self._now()
        with self._repository.atomic() as repository:
            revoked = self._revoke_active_tokens(repository, user_id, reason, source_ip, now)

        logger.info(
            "Revoked %d refresh token(s) for user %s (reason=%s)", revoked, user_id, reason
        )
        return AuthResult.success(revoked)

    def change_password(
            self,
            user_id: int,
            current_password: str | None,
            new_password: str | None,
            source_ip: str | None = None,
    ) -> AuthResult[int]:
        """
        Replaces the user's hash with a brand-new one and revokes every active
        refresh token in the same transaction. Returns the number revoked.
        """
        if current_password is None or new_password is None:
            return AuthResult.failure(invalid_input("Both passwords are required."))

        now = self._now()
        with self._repository.atomic() as repository:
            user = repository.find_user_by_id(user_id)
            if user is None:
                return AuthResult.failure(AppError(
                    ErrorCode.USER_NOT_FOUND,
                    f"User {user_id} not found.",
                    404,
                ))

            if not verify_password(
                    current_password, user.password_hash, self._settings.min_hash_iterations
            ):
                logger.warning("Password change failed: mismatch for user %s", user_id)
                return AuthResult.failure(unauthorized(
                    ErrorCode.INVALID_CREDENTIALS,
                    "Invalid current password.",
                ))

            repository.update_user_password(
                user_id, hash_password(new_password, self._settings.hash_iterations)
            )
            revoked = self._revoke_active_tokens(
                repository, user_id, REASON_PASSWORD_CHANGED, source_ip, now
            )

        logger.info("Password changed for user %s; %d session(s) revoked", user_id, revoked)
        return AuthResult.success(revoked)

    def register(
            self,
            email: str | None,
            password: str | None,
            first_name: str | None = None,
            last_name: str | None = None,
    ) -> AuthResult[dict]:
        """
        Creates an active account with the default role.

        Failures:
          INVALID_INPUT (400)    — empty email or password None
          DUPLICATE_EMAIL (409)  — email already registered
        """
        if password is None:
            return AuthResult.failure(invalid_input("Password is required.", field="password"))

        normalized = normalize_email(email)
        if not normalized:
            return AuthResult.failure(invalid_input("Email is required.", field="email"))

        with self._repository.atomic() as repository:
            if repository.find_user_by_email(normalized) is not None:
                return AuthResult.failure(conflict(
                    ErrorCode.DUPLICATE_EMAIL,
                    "This email address is already registered.",
                    field="email",
                ))

            user = repository.insert_user(
                email=normalized,
                password_hash=hash_password(password, self._settings.hash_iterations),
                first_name=first_name,
                last_name=last_name,
            )

        logger.info("Registered user %s", user.id)
        return AuthResult.success(build_identity(user))

    def current_user(self, user_id: int) -> AuthResult[dict]:
        """Identity snapshot for an authenticated user id."""
        user = self._repository.find_user_by_id(user_id)
        if user is None:
            return AuthResult.failure(AppError(
                ErrorCode.USER_NOT_FOUND,
                f"User {user_id} not found.",
                404,
            ))
        return AuthResult.success(build_identity(user))
