"""
middleware/auth_middleware.py — JWT authentication decorator.

The @require_auth decorator:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Verifies signature, issuer, audience and expiry (with the configured
     clock-skew leeway) via auth_service.decode_access_token
  3. Attaches user_id (int), email and roles to flask.g for the request
  4. Raises the appropriate 401 AppError if any step fails

Strict responsibility boundary:
  - Authentication only (401). Role checks live in require_role, which
    returns 403 FORBIDDEN for an authenticated caller without the role.
  - Services receive user_id as a plain integer argument, with no knowledge
    of JWT or HTTP headers.

Error codes:
  TOKEN_MISSING  (401) — no Authorization header
  TOKEN_INVALID  (401) — malformed header, bad signature/issuer/audience/claims
  TOKEN_EXPIRED  (401) — exp is further in the past than the leeway
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from socialnet.app.errors import AppError, ErrorCode
from socialnet.app.services.auth_service import decode_access_token


AUTH_SETTINGS_KEY = "socialnet.auth_settings"


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces JWT authentication.

    Usage:
        @auth_bp.route("/me")
        @require_auth
        def me():
            user_id = g.user_id  # always an int when this runs
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def require_role(role_name: str) -> Callable:
    """Route decorator: authenticated caller must carry `role_name` in its roles claim."""
    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            _authenticate_request()
            if role_name not in g.roles:
                raise AppError(
                    ErrorCode.FORBIDDEN,
                    "You do not have permission to perform this action.",
                    403,
                )
            return f(*args, **kwargs)

        return decorated

    return decorator


def _authenticate_request() -> None:
    """
    Performs the full JWT authentication sequence and sets flask.g.

    Separated from the decorator wrapper for testability; can be called
    directly inside a test request context.
    """
    auth_header = request.headers.get("Authorization", "")

    # ── Step 1: Require Authorization header ──────────────────────────────
    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    # ── Step 2: Parse "Bearer <token>" format ─────────────────────────────
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    # ── Step 3: Decode and verify the JWT ─────────────────────────────────
    settings = current_app.extensions[AUTH_SETTINGS_KEY]
    try:
        claims = decode_access_token(parts[1], settings)
    except jwt.ExpiredSignatureError:
        # Client should use POST /auth/refresh.
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Use POST /auth/refresh to obtain a new one.",
            401,
        )
    except jwt.InvalidTokenError:
        # Covers: bad signature, wrong issuer/audience, malformed token, bad sub.
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    # ── Step 4: Attach identity to flask.g ────────────────────────────────
    g.user_id = claims.user_id
    g.user_email = claims.email
    g.roles = claims.roles
