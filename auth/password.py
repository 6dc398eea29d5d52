"""
Password hashing and verification with bcrypt.

bcrypt only looks at the first 72 bytes of a password (and recent
releases refuse longer input), so longer passwords are rejected up front.
"""

from __future__ import annotations

import bcrypt

from config.settings import config

MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    """Hash a password with bcrypt; raises ValueError past 72 bytes."""
    raw = password.encode()
    if len(raw) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=config.bcrypt_rounds)).decode()


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time comparison against a bcrypt hash."""
    raw = password.encode()
    if len(raw) > MAX_PASSWORD_BYTES or not password_hash:
        return False
    try:
        return bcrypt.checkpw(raw, password_hash.encode())
    except (ValueError, TypeError):
        return False
