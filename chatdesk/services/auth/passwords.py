from __future__ import annotations

import logging

import bcrypt


logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6
# bcrypt only considers the first 72 bytes; newer releases reject longer input.
_BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(_encode(password), password_hash.encode("utf-8"))
    except ValueError as exc:
        # Malformed stored hash; treat as a mismatch rather than a server error.
        logger.warning("password_hash_invalid error=%s", exc)
        return False
