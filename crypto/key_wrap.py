"""
Per-recipient wrapping of record keys (ECIES-style, secp256k1).

The record key is encrypted under a key agreed between a fresh ephemeral
key pair and the recipient's identity key:

    shared   = ECDH(ephemeral_private, recipient_public)   # x-coordinate
    wrap_key = SHA-256(shared)
    package  = ephemeral_public[33] || iv[12] || AES-GCM(wrap_key, record_key)

Only the holder of the recipient private key can recompute ``wrap_key``.
Wrap and unwrap must derive it from exactly the same bytes.
"""

import hashlib
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from . import cipher
from .errors import AuthenticationError, InvalidKeyError, KeyRecoveryError, MalformedPackageError

CURVE = ec.SECP256K1()

EPHEMERAL_KEY_LEN = 33  # compressed SEC1 point
HEADER_LEN = EPHEMERAL_KEY_LEN + cipher.IV_LEN


def load_public_key(public_key: ec.EllipticCurvePublicKey | bytes) -> ec.EllipticCurvePublicKey:
    """
    Accept a public key object or SEC1-encoded bytes (33 or 65 bytes).

    Raises:
        InvalidKeyError: If the bytes are not a point on secp256k1
    """
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        if not isinstance(public_key.curve, ec.SECP256K1):
            raise InvalidKeyError(f"Expected a secp256k1 key, got {public_key.curve.name}")
        return public_key

    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, bytes(public_key))
    except (ValueError, TypeError) as e:
        raise InvalidKeyError(f"Invalid secp256k1 public key: {e}") from e


def compress_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    """Encode a public key as a 33-byte compressed point."""
    return public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.CompressedPoint,
    )


def derive_wrapping_key(private_key: ec.EllipticCurvePrivateKey, peer_public: ec.EllipticCurvePublicKey) -> bytes:
    """SHA-256 over the x-coordinate of the ECDH shared point."""
    shared_x = private_key.exchange(ec.ECDH(), peer_public)
    return hashlib.sha256(shared_x).digest()


@dataclass(frozen=True)
class WrappedKeyPackage:
    """Byte-level artifact stored in the registry for one recipient."""
    ephemeral_public_key: bytes
    iv: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return self.ephemeral_public_key + self.iv + self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes) -> "WrappedKeyPackage":
        """
        Split a wrapped key at its fixed offsets.

        Raises:
            MalformedPackageError: If the buffer cannot hold a header and tag
        """
        data = bytes(data)
        if len(data) < HEADER_LEN + cipher.TAG_LEN:
            raise MalformedPackageError(
                f"Wrapped key too short: {len(data)} bytes (minimum {HEADER_LEN + cipher.TAG_LEN})"
            )
        return cls(
            ephemeral_public_key=data[:EPHEMERAL_KEY_LEN],
            iv=data[EPHEMERAL_KEY_LEN:HEADER_LEN],
            ciphertext=data[HEADER_LEN:],
        )


def wrap_key(symmetric_key: bytes, recipient_public_key: ec.EllipticCurvePublicKey | bytes) -> bytes:
    """
    Wrap a record key for a single recipient.

    Args:
        symmetric_key: The raw record key bytes
        recipient_public_key: The recipient's identity public key, taken from
            the public-key directory

    Returns:
        The serialized wrapped key package
    """
    recipient = load_public_key(recipient_public_key)

    # Fresh ephemeral key pair for every wrap
    ephemeral_private = ec.generate_private_key(CURVE)
    wrapping_key = derive_wrapping_key(ephemeral_private, recipient)

    ciphertext, iv = cipher.encrypt(symmetric_key, wrapping_key)

    package = WrappedKeyPackage(
        ephemeral_public_key=compress_public_key(ephemeral_private.public_key()),
        iv=iv,
        ciphertext=ciphertext,
    )
    return package.to_bytes()


def unwrap_key(package: bytes | WrappedKeyPackage, recipient_private_key: ec.EllipticCurvePrivateKey) -> bytes:
    """
    Recover a record key with the recipient's private key.

    Raises:
        KeyRecoveryError: On a wrong recipient, corrupted package or tampering
    """
    try:
        if not isinstance(package, WrappedKeyPackage):
            package = WrappedKeyPackage.from_bytes(package)
        ephemeral_public = load_public_key(package.ephemeral_public_key)
        wrapping_key = derive_wrapping_key(recipient_private_key, ephemeral_public)
        return cipher.decrypt(package.ciphertext, wrapping_key, package.iv)
    except (MalformedPackageError, InvalidKeyError, AuthenticationError) as e:
        raise KeyRecoveryError(f"Could not unwrap record key: {e}") from e
