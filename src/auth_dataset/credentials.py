"""Password hashing for the users table.

Hashes are Argon2id encoded strings. The salt is also stored on its own in
users.salt so the exercises can talk about it without decoding the hash.
"""

import secrets
import sqlite3
from pathlib import Path

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError
from argon2.low_level import hash_secret

DEFAULT_TIME_COST = 2
DEFAULT_MEMORY_COST = 19456  # KiB


def new_salt() -> str:
    """A fresh random 16-byte salt as hex."""
    return secrets.token_hex(16)


def hash_password(
    password: str,
    salt: str,
    time_cost: int = DEFAULT_TIME_COST,
    memory_cost: int = DEFAULT_MEMORY_COST,
) -> str:
    """Hash a password with Argon2id using an explicit hex salt.

    A caller-supplied salt keeps the output reproducible, which the fixture
    generator relies on. The encoded string embeds every parameter, so
    ``verify_password`` does not need them.
    """
    encoded = hash_secret(
        password.encode(),
        bytes.fromhex(salt),
        time_cost=time_cost,
        memory_cost=memory_cost,
        parallelism=1,
        hash_len=32,
        type=Type.ID,
    )
    return encoded.decode("ascii")


def verify_password(password_hash: str, password: str) -> bool:
    """Check a password against an encoded Argon2 hash."""
    try:
        return PasswordHasher().verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def reset_password(db_path: Path, username: str, password: str) -> str:
    """Rehash a user's password with a fresh salt. Returns the new hash."""
    salt = new_salt()
    password_hash = hash_password(password, salt)

    conn = sqlite3.connect(db_path)
    try:
        with conn:
            cursor = conn.execute(
                "UPDATE users SET password_hash = ?, salt = ? WHERE username = ?",
                (password_hash, salt, username),
            )
        if cursor.rowcount == 0:
            raise ValueError(f"User '{username}' not found")
    finally:
        conn.close()
    return password_hash
