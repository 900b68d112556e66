"""Password hashing and verification for authenticable entities."""

from __future__ import annotations

import hashlib
import hmac
import secrets

PBKDF2_ITERATIONS = 100000


def hash_password(password: str, salt: str | None = None) -> str:
    """Hash a password with salt using PBKDF2-SHA256. Returns ``salt$hexdigest``."""
    if salt is None:
        salt = secrets.token_hex(16)

    key = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt.encode("utf-8"),
        PBKDF2_ITERATIONS,
    )

    return f"{salt}${key.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash (constant-time comparison)."""
    try:
        salt, _ = password_hash.split("$")
    except ValueError:
        return False
    return hmac.compare_digest(hash_password(password, salt), password_hash)

