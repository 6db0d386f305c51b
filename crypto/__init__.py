"""
Cryptographic module for the MedVault client.

Handles:
- Record encryption (AES-256-GCM)
- Record key wrapping per recipient (secp256k1 ECDH)
- Record package framing
- Identity keys (secp256k1) protected by Argon2id passphrases
"""

from .errors import (
    AuthenticationError,
    CryptoError,
    EntropyUnavailable,
    InvalidKeyError,
    KeyRecoveryError,
    MalformedPackageError,
)
from .key_manager import KeyManager
from .key_wrap import WrappedKeyPackage, unwrap_key, wrap_key
from .package import FileMetadata, PackedRecord, pack_record, read_metadata, unpack_record
from .passphrase import PassphraseDeriver

__all__ = [
    "AuthenticationError",
    "CryptoError",
    "EntropyUnavailable",
    "FileMetadata",
    "InvalidKeyError",
    "KeyManager",
    "KeyRecoveryError",
    "MalformedPackageError",
    "PackedRecord",
    "PassphraseDeriver",
    "WrappedKeyPackage",
    "pack_record",
    "read_metadata",
    "unpack_record",
    "unwrap_key",
    "wrap_key",
]
