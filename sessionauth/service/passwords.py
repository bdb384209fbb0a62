from __future__ import annotations

import bcrypt
from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from sessionauth.logging import get_logger

logger = get_logger(__name__)

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


class PasswordHashing:
    """Salted slow hashing for local passwords.

    New hashes are argon2id. Hashes written by the previous Node service are
    bcrypt (cost 12) and still verify, but are never produced here.
    """

    def __init__(self) -> None:
        self._hasher = PasswordHasher(type=Type.ID)

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    @staticmethod
    def is_legacy(stored_hash: str) -> bool:
        return stored_hash.startswith(_BCRYPT_PREFIXES)

    def verify(self, stored_hash: str, password: str) -> bool:
        if not stored_hash:
            return False
        if self.is_legacy(stored_hash):
            try:
                return bcrypt.checkpw(password.encode("utf-8"), stored_hash.encode("utf-8"))
            except ValueError:
                logger.warning("password_hash_malformed", scheme="bcrypt")
                return False
        try:
            return self._hasher.verify(stored_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHash, VerificationError):
            logger.warning("password_hash_malformed", scheme="argon2id")
            return False
