"""
Argon2id derivation of the key that protects a stored identity private key.
"""

import os

from argon2.low_level import hash_secret_raw, Type

from .errors import EntropyUnavailable, InvalidKeyError


class PassphraseDeriver:
    """Derives keystore encryption keys from passphrases using Argon2id."""

    # Argon2id parameters (OWASP recommended)
    TIME_COST = 3  # iterations
    MEMORY_COST = 65536  # 64 MB
    PARALLELISM = 4
    HASH_LEN = 32  # 256 bits for AES-256
    SALT_LEN = 16  # 128 bits
    MIN_PASSPHRASE_LEN = 8

    @classmethod
    def check_passphrase(cls, passphrase: str) -> None:
        """Reject passphrases too short to protect an identity key."""
        if not passphrase or len(passphrase) < cls.MIN_PASSPHRASE_LEN:
            raise InvalidKeyError(
                f"Passphrase must be at least {cls.MIN_PASSPHRASE_LEN} characters"
            )

    @classmethod
    def derive_key(cls, passphrase: str, salt: bytes | None = None) -> tuple[bytes, bytes]:
        """
        Derive a 256-bit keystore key from a passphrase.

        Args:
            passphrase: The identity owner's passphrase
            salt: Salt stored next to the encrypted key. A random salt is
                drawn when omitted (new keystore).

        Returns:
            Tuple of (derived_key, salt)
        """
        if salt is None:
            try:
                salt = os.urandom(cls.SALT_LEN)
            except OSError as e:
                raise EntropyUnavailable(str(e)) from e

        derived_key = hash_secret_raw(
            secret=passphrase.encode("utf-8"),
            salt=salt,
            time_cost=cls.TIME_COST,
            memory_cost=cls.MEMORY_COST,
            parallelism=cls.PARALLELISM,
            hash_len=cls.HASH_LEN,
            type=Type.ID,
        )

        return derived_key, salt
