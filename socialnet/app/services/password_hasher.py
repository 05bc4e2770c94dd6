"""
services/password_hasher.py — PBKDF2 password hashing and verification.

Encoding (five '$'-separated fields, self-describing so the cost can be
raised later without a schema change):

    PBKDF2$HMACSHA256$<iterations>$<base64 salt>$<base64 derived key>

  - salt: 16 random bytes from `secrets`
  - derived key: 20 bytes of PBKDF2-HMAC-SHA256
  - iterations: 1,000,000 by default; encodings below the configured floor
    (10,000) are never accepted by verify_password

The plaintext password is never stored and never logged.

Layer rules:
  - No Flask, no database. Pure functions, safe to call from any thread.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import secrets

from socialnet.app.errors import invalid_input


HASH_ALGORITHM = "PBKDF2"
PSEUDO_RANDOM_FUNCTION = "HMACSHA256"
SALT_SIZE = 16
KEY_SIZE = 20
DEFAULT_ITERATIONS = 1_000_000
MIN_ITERATIONS = 10_000
MAX_ITERATIONS = 2**31 - 1

_DELIMITER = "$"
_FIELD_COUNT = 5


def _derive_key(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac(
        "sha256",
        # Lone surrogates (legal in JSON) encode instead of raising.
        password.encode("utf-8", "surrogatepass"),
        salt,
        iterations,
        dklen=KEY_SIZE,
    )


def _split(encoded: str) -> list[str]:
    # Empty segments are dropped, so "a$$b" counts as two fields.
    return [part for part in encoded.split(_DELIMITER) if part]


def _parse_iterations(field: str) -> int | None:
    """
    Plain ASCII digits with an optional leading '-', within 32-bit range.
    Anything else (underscores, padding, other digit scripts) is None.
    """
    digits = field[1:] if field.startswith("-") else field
    if not (digits.isascii() and digits.isdigit()):
        return None
    value = int(field)
    if not -MAX_ITERATIONS - 1 <= value <= MAX_ITERATIONS:
        return None
    return value


def hash_password(password: str, iterations: int = DEFAULT_ITERATIONS) -> str:
    """
    Hashes `password` with a fresh random salt.

    Two calls with the same password return different strings; both verify.

    Raises:
      AppError(INVALID_INPUT, 400) — password is None.
    """
    if password is None:
        raise invalid_input("Password must not be null.", field="password")
    if not 1 <= iterations <= MAX_ITERATIONS:
        raise invalid_input("Iteration count must be between 1 and 2**31 - 1.")

    salt = secrets.token_bytes(SALT_SIZE)
    derived = _derive_key(password, salt, iterations)

    return _DELIMITER.join((
        HASH_ALGORITHM,
        PSEUDO_RANDOM_FUNCTION,
        str(iterations),
        base64.b64encode(salt).decode("ascii"),
        base64.b64encode(derived).decode("ascii"),
    ))


def is_well_formed_hash(encoded: str | None) -> bool:
    """
    Structural check only: five fields, expected tags, integer iteration count.
    Says nothing about whether the salt or key decode.
    """
    if encoded is None or not encoded.strip():
        return False

    parts = _split(encoded)
    if len(parts) != _FIELD_COUNT:
        return False
    if parts[0] != HASH_ALGORITHM or parts[1] != PSEUDO_RANDOM_FUNCTION:
        return False
    return _parse_iterations(parts[2]) is not None


def verify_password(
        password: str,
        encoded: str | None,
        min_iterations: int = MIN_ITERATIONS,
) -> bool:
    """
    Returns True if `password` matches the `encoded` hash.

    Returns False (never raises) for malformed encodings, undecodable salt or
    key, iteration counts below `min_iterations`, and mismatches.

    Raises:
      AppError(INVALID_INPUT, 400) — password is None.
    """
    if password is None:
        raise invalid_input("Password must not be null.", field="password")

    if not is_well_formed_hash(encoded):
        return False

    parts = _split(encoded)
    iterations = _parse_iterations(parts[2])
    if iterations < max(min_iterations, 1):
        return False

    try:
        salt = base64.b64decode(parts[3], validate=True)
        expected = base64.b64decode(parts[4], validate=True)
    except (binascii.Error, ValueError):
        return False

    # The stored key length is not secret.
    if not salt or len(expected) != KEY_SIZE:
        return False

    actual = _derive_key(password, salt, iterations)
    return hmac.compare_digest(actual, expected)


def needs_rehash(encoded: str | None, iterations: int = DEFAULT_ITERATIONS) -> bool:
    """True when `encoded` is malformed or weaker than the current `iterations`."""
    if not is_well_formed_hash(encoded):
        return True
    return _parse_iterations(_split(encoded)[2]) < iterations
