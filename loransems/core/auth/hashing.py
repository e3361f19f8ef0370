"""
Password Hashing
================

Salted, non-reversible password storage.

New hashes are Argon2id. Accounts migrated from the PHP deployment still
carry bcrypt hashes (``$2y$``); those verify normally and report that they
need rehashing so the next successful login upgrades them.

Parameters (OWASP recommendations):
- memory_cost: 102400 KiB (100 MB)
- time_cost: 2 iterations
- parallelism: 4 threads
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from loransems.security.constants import (
    ARGON2_HASH_LENGTH,
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_SALT_LENGTH,
    ARGON2_TIME_COST,
)


_BCRYPT_PREFIXES = ("$2y$", "$2b$", "$2a$")


class HashScheme(Enum):
    """Recognised encodings of a stored password hash."""
    ARGON2ID = "argon2id"
    BCRYPT = "bcrypt"
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, encoded: str) -> "HashScheme":
        if encoded.startswith("$argon2id$"):
            return cls.ARGON2ID
        if encoded.startswith(_BCRYPT_PREFIXES):
            return cls.BCRYPT
        return cls.UNKNOWN


class CredentialHasher:
    """
    Hashes and verifies user passwords.

    Usage:
        hasher = CredentialHasher()
        stored = hasher.hash("correct horse")
        hasher.verify("correct horse", stored)  # True
        hasher.needs_rehash(stored)             # False

    Verification is constant-time in the underlying libraries and never
    raises for a malformed hash; it simply returns False.
    """

    __slots__ = ("_hasher", "_dummy_hash")

    def __init__(
        self,
        memory_cost: int = ARGON2_MEMORY_COST,
        time_cost: int = ARGON2_TIME_COST,
        parallelism: int = ARGON2_PARALLELISM,
        hash_length: int = ARGON2_HASH_LENGTH,
        salt_length: int = ARGON2_SALT_LENGTH,
    ) -> None:
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        if memory_cost < 8 * parallelism:
            raise ValueError("memory_cost must be at least 8 KiB per lane")
        if time_cost < 1:
            raise ValueError("time_cost must be at least 1")
        if hash_length < 16:
            raise ValueError("hash_length must be at least 16 bytes")
        if salt_length < 8:
            raise ValueError("salt_length must be at least 8 bytes")

        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_length,
            salt_len=salt_length,
        )
        self._dummy_hash: Optional[str] = None

    @property
    def parameters(self) -> dict[str, int]:
        """Current Argon2id parameters."""
        return {
            "memory_cost": self._hasher.memory_cost,
            "time_cost": self._hasher.time_cost,
            "parallelism": self._hasher.parallelism,
            "hash_length": self._hasher.hash_len,
            "salt_length": self._hasher.salt_len,
        }

    def hash(self, password: str) -> str:
        """Hash a password and return the encoded string for storage."""
        if not password:
            raise ValueError("Password cannot be empty")
        return self._hasher.hash(password)

    def verify(self, password: str, encoded: str) -> bool:
        """Check a password against a stored hash of any supported scheme."""
        if not password or not encoded:
            return False

        scheme = HashScheme.of(encoded)

        if scheme is HashScheme.ARGON2ID:
            try:
                return self._hasher.verify(encoded, password)
            except (VerifyMismatchError, VerificationError, InvalidHashError):
                return False
            except UnicodeEncodeError:
                # Lone surrogates cannot be UTF-8 encoded; no stored hash can match
                return False

        if scheme is HashScheme.BCRYPT:
            try:
                return bcrypt.checkpw(password.encode("utf-8"), encoded.encode("ascii"))
            except (ValueError, UnicodeEncodeError):
                # bcrypt rejects malformed salts and passwords over 72 bytes
                return False

        return False

    def burn(self, password: str) -> None:
        """
        Spend the cost of one verification without a real account.

        Used on unknown usernames so response time does not reveal
        whether the account exists.
        """
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash("loransems-dummy-credential")
        self.verify(password or "x", self._dummy_hash)

    def needs_rehash(self, encoded: str) -> bool:
        """True for legacy schemes and for Argon2 hashes with outdated parameters."""
        if HashScheme.of(encoded) is not HashScheme.ARGON2ID:
            return True
        try:
            return self._hasher.check_needs_rehash(encoded)
        except InvalidHashError:
            return True
