"""
errors.py — AppError base class and error code registry.

Every error returned by the socialnet API uses a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
  - Authentication failures stay vague unless AUTH_VERBOSE_ERRORS is enabled.
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"AppError(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by failure kind. HTTP status is indicated in the comment.
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── InvalidInput (400) ─────────────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_INPUT              = "INVALID_INPUT"

    # ── Conflict (409) ─────────────────────────────────────────────────────
    DUPLICATE_EMAIL            = "DUPLICATE_EMAIL"
    CONFLICT                   = "CONFLICT"

    # ── Not Found (404) ────────────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"

    # ── Unauthorized ───────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    INVALID_CREDENTIALS        = "INVALID_CREDENTIALS"    # 401
    ACCOUNT_DEACTIVATED        = "ACCOUNT_DEACTIVATED"    # 401
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    REFRESH_TOKEN_INVALID      = "REFRESH_TOKEN_INVALID"  # 401
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── Internal (500) ─────────────────────────────────────────────────────
    INTERNAL_ERROR             = "INTERNAL_ERROR"


GENERIC_CREDENTIALS_MESSAGE = "Invalid credentials."
GENERIC_INTERNAL_MESSAGE = "An unexpected error occurred. Please try again later."


def invalid_input(message: str, field: str | None = None) -> AppError:
    return AppError(ErrorCode.INVALID_INPUT, message, 400, field=field)


def unauthorized(code: str, message: str) -> AppError:
    return AppError(code, message, 401)


def conflict(code: str, message: str, field: str | None = None) -> AppError:
    return AppError(code, message, 409, field=field)


def internal(message: str = GENERIC_INTERNAL_MESSAGE) -> AppError:
    """Internal failures never carry the underlying detail to the caller."""
    return AppError(ErrorCode.INTERNAL_ERROR, message, 500)
