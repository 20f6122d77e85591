"""Password hashing and signed session token encoding."""

from datetime import UTC, datetime
from typing import Any

import bcrypt
import jwt

# Bcrypt cost (rounds); matches the cost of hashes already stored by registration.
BCRYPT_ROUNDS = 12

EMAIL_MAX_LEN = 320
NAME_MAX_LEN = 50


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    # bcrypt has a 72-byte limit; truncate to avoid errors (validation already limits length).
    pw_bytes = plain_password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    """Verify a plain password against a stored hash (constant-time)."""
    pw_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def normalize_email(email: str) -> str:
    """Canonical stored form of an email address."""
    return email.strip().lower()


def utc_timestamp(now: datetime | None = None) -> int:
    """Unix seconds for now (or the given aware datetime)."""
    return int((now or datetime.now(UTC)).timestamp())


def encode_token(payload: dict[str, Any], secret: str, algorithm: str) -> str:
    """Sign a claims payload. exp/iat must already be set by the caller."""
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_token(token: str, secret: str, algorithm: str) -> dict[str, Any]:
    """
    Decode and validate a signed token; return its payload.
    Raises jwt.PyJWTError on invalid signature or expired token.
    """
    return jwt.decode(
        token,
        secret,
        algorithms=[algorithm],
        options={"require": ["sub", "exp", "iat"]},
    )
