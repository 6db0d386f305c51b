"""
Exceptions raised by the MedVault cryptographic helpers.

Cryptographic failures are fatal for the operation that raised them.
Retrying with the same inputs fails the same way; only
``EntropyUnavailable`` is worth retrying as-is.
"""


class CryptoError(Exception):
    """Base class for all cryptographic failures."""


class InvalidKeyError(CryptoError, ValueError):
    """A symmetric or asymmetric key has the wrong size or encoding."""


class AuthenticationError(CryptoError):
    """AES-GCM tag verification failed, or the IV length is wrong."""


class KeyRecoveryError(CryptoError):
    """A wrapped key could not be recovered with the given private key."""


class MalformedPackageError(CryptoError, ValueError):
    """A record package or wrapped key package has invalid framing."""


class EntropyUnavailable(CryptoError):
    """The operating system could not supply random bytes (transient)."""
