"""
services/auth_settings.py — Immutable auth configuration.

Built once by the app factory from app.config and handed to every
AuthService and to the auth middleware. Services never read
current_app.config at call time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

from socialnet.app.services.password_hasher import DEFAULT_ITERATIONS, MIN_ITERATIONS


@dataclass(frozen=True)
class AuthSettings:
    signing_key: str
    issuer: str
    audience: str
    algorithm: str = "HS256"
    access_token_lifetime: timedelta = timedelta(minutes=30)
    refresh_token_lifetime: timedelta = timedelta(days=7)
    clock_skew: timedelta = timedelta(seconds=120)
    hash_iterations: int = DEFAULT_ITERATIONS
    min_hash_iterations: int = MIN_ITERATIONS
    verbose_errors: bool = False

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AuthSettings":
        """Reads the JWT_*, PASSWORD_HASH_* and AUTH_* keys of a Flask config."""
        return cls(
            signing_key=config.get("JWT_SECRET_KEY") or "",
            issuer=config.get("JWT_ISSUER", "socialnet"),
            audience=config.get("JWT_AUDIENCE", "socialnet-clients"),
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
            access_token_lifetime=timedelta(
                minutes=int(config.get("JWT_ACCESS_TOKEN_EXPIRES_MINUTES", 30))
            ),
            refresh_token_lifetime=timedelta(
                days=int(config.get("JWT_REFRESH_TOKEN_DAYS", 7))
            ),
            clock_skew=timedelta(seconds=int(config.get("JWT_CLOCK_SKEW_SECONDS", 120))),
            hash_iterations=int(config.get("PASSWORD_HASH_ITERATIONS", DEFAULT_ITERATIONS)),
            min_hash_iterations=int(config.get("PASSWORD_HASH_MIN_ITERATIONS", MIN_ITERATIONS)),
            # Explicit opt-in only: a missing key means generic messages.
            verbose_errors=config.get("AUTH_VERBOSE_ERRORS") is True,
        )
