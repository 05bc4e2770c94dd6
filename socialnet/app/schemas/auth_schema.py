"""
schemas/auth_schema.py — Marshmallow schemas for authentication endpoints.

Validation responsibility:
  - This file: field presence, types, lengths, formats.
  - services/auth_service.py: credential checks, token state, duplicate email
    (these require a DB lookup and are not a schema concern).

IMPORTANT: All schemas inherit from marshmallow.Schema directly so they can
be loaded without a Flask application context.
"""

from __future__ import annotations

from marshmallow import EXCLUDE, Schema, ValidationError, fields, pre_load, validate, validates


def _check_password_strength(value: str) -> None:
    """Min 8 chars, at least one letter and one digit."""
    if len(value) < 8:
        raise ValidationError("Password must be at least 8 characters long.")
    if not any(c.isalpha() for c in value):
        raise ValidationError("Password must contain at least one letter.")
    if not any(c.isdigit() for c in value):
        raise ValidationError("Password must contain at least one digit.")


def _strip_email(data: dict) -> dict:
    if isinstance(data, dict) and isinstance(data.get("email"), str):
        data = {**data, "email": data["email"].strip().lower()}
    return data


class RegisterSchema(Schema):
    """
    POST /auth/register

    Field rules:
      email      : valid email format, max 255 chars (stored lower-cased)
      password   : min 8 chars, at least one letter and one digit
      first_name : optional, max 100 chars
      last_name  : optional, max 100 chars
    """

    class Meta:
        unknown = EXCLUDE

    email = fields.Email(
        required=True,
        validate=validate.Length(max=255),
    )

    password = fields.Str(required=True, load_only=True)

    first_name = fields.Str(load_default=None, validate=validate.Length(max=100))
    last_name = fields.Str(load_default=None, validate=validate.Length(max=100))

    @pre_load
    def normalize_email(self, data, **kwargs):
        return _strip_email(data)

    @validates("password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        _check_password_strength(value)


class LoginSchema(Schema):
    """
    POST /auth/login

    Credential correctness is checked in auth_service.py
    (INVALID_CREDENTIALS, 401). An empty password is allowed through so the
    failure is an authentication failure, not a validation one.
    """

    class Meta:
        unknown = EXCLUDE

    email = fields.Str(required=True, validate=validate.Length(min=1, max=255))
    password = fields.Str(required=True, load_only=True)

    @pre_load
    def normalize_email(self, data, **kwargs):
        return _strip_email(data)


class RefreshTokenSchema(Schema):
    """
    POST /auth/refresh, POST /auth/logout

    The refresh token may come from the body or the refreshToken cookie, so
    it is optional here. The route falls back to the cookie when absent.
    """

    class Meta:
        unknown = EXCLUDE

    refresh_token = fields.Str(load_default=None, allow_none=True)


class RevokeAllSchema(Schema):
    """POST /auth/revoke-all — optional free-text reason for the audit trail."""

    class Meta:
        unknown = EXCLUDE

    reason = fields.Str(load_default=None, allow_none=True, validate=validate.Length(max=255))


class ChangePasswordSchema(Schema):
    """POST /auth/change-password — same strength rules as registration."""

    class Meta:
        unknown = EXCLUDE

    current_password = fields.Str(required=True, load_only=True)
    new_password = fields.Str(required=True, load_only=True)

    @validates("new_password")
    def validate_password_strength(self, value: str, **kwargs) -> None:
        _check_password_strength(value)
