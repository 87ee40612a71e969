"""
Password hashing helpers for the credential store.
"""

import logging

import bcrypt

logger = logging.getLogger(__name__)

# bcrypt only reads this many bytes of input
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    # Truncated the same way on hash and verify so long passwords still match
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str, work_factor: int) -> str:
    """
    Hash a password with a fresh bcrypt salt.

    Args:
        password: Plaintext password; only its first 72 bytes are used
        work_factor: bcrypt cost (log2 rounds, 4-31)

    Returns:
        The bcrypt hash as text
    """
    logger.debug(f"Hashing password with work factor {work_factor}")
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=work_factor)).decode("utf-8")


def verify_password(password: str, hashed: str) -> bool:
    """
    Check a password against a stored bcrypt hash.

    bcrypt.checkpw compares in constant time.
    """
    is_valid = bcrypt.checkpw(_password_bytes(password), hashed.encode("utf-8"))
    logger.info(f"Password verification: {'valid' if is_valid else 'invalid'}")
    return is_valid
