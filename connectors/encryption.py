"""
Secret encryption — encrypt / decrypt connector credentials at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
The key is loaded from ``config.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``).

Without a key, encryption is **disabled** and secrets (OAuth tokens and the
Orange CalDAV password) are stored as plaintext, with a startup warning.
Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from config.settings import config

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None
_initialised = False


def _init_fernet() -> None:
    """Lazy-initialise the Fernet cipher once."""
    global _fernet, _initialised

    _initialised = True
    key = config.token_encryption_key
    if not key:
        logger.warning(
            "TOKEN_ENCRYPTION_KEY not set — connector secrets will be stored as plaintext"
        )
        _fernet = None
        return

    try:
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
        logger.info("Connector secret encryption enabled (Fernet)")
    except ValueError as exc:
        logger.error("Failed to initialise Fernet with provided key: %s", exc)
        _fernet = None


def reset_cipher() -> None:
    """Forget the cached cipher so the next call re-reads the key."""
    global _fernet, _initialised
    _fernet = None
    _initialised = False


def encrypt_secret(plaintext: str) -> str:
    """
    Encrypt a secret for database storage.

    Returns the Fernet ciphertext (URL-safe base64), or the plaintext
    unchanged when encryption is disabled.
    """
    if not _initialised:
        _init_fernet()
    if _fernet is None or not plaintext:
        return plaintext
    return _fernet.encrypt(plaintext.encode()).decode()


def decrypt_secret(ciphertext: str) -> str:
    """
    Decrypt a secret read from the database.

    Values written before encryption was enabled are not valid Fernet
    tokens and are returned as-is.
    """
    if not _initialised:
        _init_fernet()
    if _fernet is None or not ciphertext:
        return ciphertext
    try:
        return _fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        return ciphertext


def is_encryption_enabled() -> bool:
    if not _initialised:
        _init_fernet()
    return _fernet is not None
