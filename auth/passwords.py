"""
auth/passwords.py -- Password hashing behind a narrow two-method interface.

The credential provider never touches bcrypt itself. It is handed a
PasswordHasher at construction and only ever calls:

  hash(plain)            -> str   stored in the users collection
  verify(plain, hashed)  -> bool  used by authenticate_user()

Passwords: bcrypt, used directly (no passlib wrapper). passlib's internal
wrap-bug detection hashes a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage avoids the shim.

Layer rule: no imports from api/ or store/.
"""

from __future__ import annotations

import logging
from typing import Protocol

import bcrypt

logger = logging.getLogger("kvauth.auth.passwords")

_DEFAULT_ROUNDS = 12

# bcrypt only reads the first 72 bytes; bcrypt 5.x raises on longer input.
_BCRYPT_MAX_BYTES = 72


class PasswordHasher(Protocol):
    """One-way hashing capability supplied by the host application."""

    def hash(self, plain: str) -> str: ...

    def verify(self, plain: str, hashed: str) -> bool: ...


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str, rounds: int = _DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Only the first 72 bytes of the UTF-8 encoding are hashed. verify_password()
    cuts at the same place, so long passwords still verify.
    """
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is a deny, not an error.
    """
    try:
        return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


class BcryptHasher:
    """PasswordHasher backed by bcrypt.

    rounds is the bcrypt cost factor. Tests use 4 (the minimum) to keep the
    suite fast; production reads BCRYPT_ROUNDS from settings.
    """

    def __init__(self, rounds: int = _DEFAULT_ROUNDS) -> None:
        self.rounds = rounds

    def hash(self, plain: str) -> str:
        return hash_password(plain, rounds=self.rounds)

    def verify(self, plain: str, hashed: str) -> bool:
        return verify_password(plain, hashed)
