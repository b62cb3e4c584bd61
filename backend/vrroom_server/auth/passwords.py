"""
Password hashing for VRroom accounts.

Passwords are hashed with Argon2id over an explicit random salt; the raw
hash and the salt are stored hex-encoded on the account record.

Invariants:
    - A fresh salt is generated for every hash (registration, password change)
    - Verification compares digests in constant time
    - Hashing never runs while the store lock is held
"""

from __future__ import annotations

import hmac
import secrets

from argon2.low_level import Type, hash_secret_raw

from ..config import PasswordConfig


def generate_secret(length: int = 32) -> str:
    """Generate a URL-safe random secret (verification codes, game tokens)."""
    return secrets.token_urlsafe(length)


class PasswordHasher:
    """Argon2id hasher with configurable cost parameters.

    Example:
        >>> hasher = PasswordHasher(PasswordConfig(time_cost=1, memory_cost_kib=8, parallelism=1))
        >>> digest, salt = hasher.hash("correct horse")
        >>> hasher.verify("correct horse", digest, salt)
        True
    """

    def __init__(self, config: PasswordConfig | None = None) -> None:
        self.config = config or PasswordConfig()

    def _derive(self, password: str, salt: bytes) -> bytes:
        return hash_secret_raw(
            secret=password.encode("utf-8"),
            salt=salt,
            time_cost=self.config.time_cost,
            memory_cost=self.config.memory_cost_kib,
            parallelism=self.config.parallelism,
            hash_len=self.config.hash_len,
            type=Type.ID,
        )

    def hash(self, password: str) -> tuple[str, str]:
        """Hash a password with a fresh salt.

        Args:
            password: Plaintext password

        Returns:
            Tuple of (hex hash, hex salt)
        """
        salt = secrets.token_bytes(self.config.salt_len)
        return self._derive(password, salt).hex(), salt.hex()

    def verify(self, password: str, password_hash: str, password_salt: str) -> bool:
        """Check a password against a stored hash and salt."""
        try:
            salt = bytes.fromhex(password_salt)
            expected = bytes.fromhex(password_hash)
        except ValueError:
            return False
        return hmac.compare_digest(self._derive(password, salt), expected)
