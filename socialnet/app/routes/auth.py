"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse request body
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service operation and unwrap its AuthResult
  - Return the standard response envelope: {"data": {...}, "warnings": []}

No business logic here. No DB queries. Transactions are owned by the
repository's atomic() block inside each service operation.
AppError propagates to the global error handler in app/__init__.py; routes
never catch it.

The refresh token is also set as an HTTP-only cookie whose expiry mirrors the
stored refresh-token record exactly. /refresh and /logout read the body
first and fall back to the cookie.

Endpoints (url_prefix=/api/v1/auth):
  POST   /register                     → 201
  POST   /login                        → 200
  POST   /refresh                      → 200
  GET    /session                      → 200 (cookie only)
  POST   /logout                       → 200
  POST   /revoke-all                   → 200 (auth required)
  POST   /users/<user_id>/revoke-all   → 200 (Admin role required)
  POST   /change-password              → 200 (auth required)
  GET    /me                           → 200 (auth required)
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from socialnet.app.errors import AppError, ErrorCode
from socialnet.app.extensions import db
from socialnet.app.middleware.auth_middleware import AUTH_SETTINGS_KEY, require_auth, require_role
from socialnet.app.models.user import ROLE_ADMIN
from socialnet.app.repositories.auth_repository import SqlAlchemyAuthRepository
from socialnet.app.schemas.auth_schema import (
    ChangePasswordSchema,
    LoginSchema,
    RefreshTokenSchema,
    RegisterSchema,
    RevokeAllSchema,
)
from socialnet.app.services.auth_service import AuthService, AuthSession

auth_bp = Blueprint("auth", __name__)


# ── Helpers ────────────────────────────────────────────────────────────────

def _auth_service() -> AuthService:
    return AuthService(
        SqlAlchemyAuthRepository(db.session),
        current_app.extensions[AUTH_SETTINGS_KEY],
    )


def _client_ip() -> str | None:
    return request.remote_addr


def _json_body() -> dict:
    return request.get_json(force=True, silent=True) or {}


def _presented_refresh_token() -> str | None:
    """Body field first, then the refresh cookie."""
    data = RefreshTokenSchema().load(_json_body())
    token = data.get("refresh_token")
    if not token or not token.strip():
        token = request.cookies.get(current_app.config["REFRESH_COOKIE_NAME"])
    return token if token and token.strip() else None


def _no_refresh_token() -> AppError:
    return AppError(
        ErrorCode.REFRESH_TOKEN_INVALID,
        "No refresh token found.",
        401,
    )


def _session_response(session: AuthSession):
    response = jsonify({"data": session.to_dict(), "warnings": []})
    response.set_cookie(
        current_app.config["REFRESH_COOKIE_NAME"],
        session.refresh_token,
        expires=session.refresh_expires_at,
        httponly=True,
        secure=True,
        samesite=current_app.config.get("REFRESH_COOKIE_SAMESITE", "Strict"),
        path="/api/v1/auth",
    )
    return response, 200


def _clear_refresh_cookie(response) -> None:
    response.delete_cookie(
        current_app.config["REFRESH_COOKIE_NAME"],
        path="/api/v1/auth",
        secure=True,
        httponly=True,
        samesite=current_app.config.get("REFRESH_COOKIE_SAMESITE", "Strict"),
    )


# ── Endpoints ──────────────────────────────────────────────────────────────

@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register — Create account. (No auth required.)"""
    data = RegisterSchema().load(_json_body())
    user = _auth_service().register(
        email=data["email"],
        password=data["password"],
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
    ).unwrap()
    return jsonify({"data": user, "warnings": []}), 201


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — Authenticate; return tokens. (No auth required.)"""
    data = LoginSchema().load(_json_body())
    session = _auth_service().login(
        email=data["email"],
        password=data["password"],
        source_ip=_client_ip(),
    ).unwrap()
    return _session_response(session)


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """POST /auth/refresh — Rotate the refresh token; return a new pair."""
    token = _presented_refresh_token()
    if token is None:
        raise _no_refresh_token()
    session = _auth_service().refresh(token, source_ip=_client_ip()).unwrap()
    return _session_response(session)


@auth_bp.route("/session", methods=["GET"])
def get_session():
    """GET /auth/session — Restore a session from the refresh cookie alone."""
    token = request.cookies.get(current_app.config["REFRESH_COOKIE_NAME"])
    if not token:
        raise _no_refresh_token()
    session = _auth_service().refresh(token, source_ip=_client_ip()).unwrap()
    return _session_response(session)


@auth_bp.route("/logout", methods=["POST"])
def logout():
    """POST /auth/logout — Revoke the refresh token; clear the cookie."""
    token = _presented_refresh_token()
    if token is None:
        raise _no_refresh_token()
    _auth_service().logout(token, source_ip=_client_ip()).unwrap()
    response = jsonify({"data": {"message": "Logged out successfully."}, "warnings": []})
    _clear_refresh_cookie(response)
    return response, 200


@auth_bp.route("/revoke-all", methods=["POST"])
@require_auth
def revoke_all():
    """POST /auth/revoke-all — Log the caller out everywhere. (Auth required.)"""
    data = RevokeAllSchema().load(_json_body())
    revoked = _auth_service().revoke_all(
        g.user_id,
        reason=data.get("reason") or "logout_everywhere",
        source_ip=_client_ip(),
    ).unwrap()
    response = jsonify({"data": {"revoked": revoked}, "warnings": []})
    _clear_refresh_cookie(response)
    return response, 200


@auth_bp.route("/users/<int:user_id>/revoke-all", methods=["POST"])
@require_role(ROLE_ADMIN)
def revoke_all_for_user(user_id: int):
    """POST /auth/users/<id>/revoke-all — Incident response. (Admin only.)"""
    data = RevokeAllSchema().load(_json_body())
    revoked = _auth_service().revoke_all(
        user_id,
        reason=data.get("reason") or f"revoked_by_admin:{g.user_id}",
        source_ip=_client_ip(),
    ).unwrap()
    return jsonify({"data": {"revoked": revoked}, "warnings": []}), 200


@auth_bp.route("/change-password", methods=["POST"])
@require_auth
def change_password():
    """POST /auth/change-password — New hash; every refresh token revoked."""
    data = ChangePasswordSchema().load(_json_body())
    revoked = _auth_service().change_password(
        g.user_id,
        current_password=data["current_password"],
        new_password=data["new_password"],
        source_ip=_client_ip(),
    ).unwrap()
    response = jsonify({
        "data": {"message": "Password changed.", "revoked": revoked},
        "warnings": [],
    })
    _clear_refresh_cookie(response)
    return response, 200


@auth_bp.route("/me", methods=["GET"])
@require_auth
def me():
    """GET /auth/me — Return current user identity. (Auth required.)"""
    user = _auth_service().current_user(g.user_id).unwrap()
    return jsonify({"data": user, "warnings": []}), 200
