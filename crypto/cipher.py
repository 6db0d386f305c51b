"""
AES-256-GCM encryption of record bytes.

Every call to :func:`encrypt` draws a fresh 96-bit IV, so the same key can
be reused for many messages. The 128-bit authentication tag is appended to
the ciphertext, matching the layout produced by WebCrypto's ``AES-GCM``.
"""

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import AuthenticationError, EntropyUnavailable, InvalidKeyError

KEY_LEN = 32  # 256 bits
IV_LEN = 12  # 96 bits for AES-GCM
TAG_LEN = 16  # 128 bits


def random_bytes(n: int) -> bytes:
    """
    Return ``n`` bytes from the OS entropy source.

    Raises:
        EntropyUnavailable: If the entropy source cannot be read
    """
    try:
        return os.urandom(n)
    except (OSError, NotImplementedError) as e:
        raise EntropyUnavailable(f"Random source unavailable: {e}") from e


def generate_key() -> bytes:
    """Generate a random 256-bit record key."""
    return random_bytes(KEY_LEN)


def _aead(key: bytes) -> AESGCM:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LEN:
        raise InvalidKeyError(f"Record key must be {KEY_LEN} bytes")
    return AESGCM(bytes(key))


def encrypt(plaintext: bytes | str, key: bytes) -> tuple[bytes, bytes]:
    """
    Encrypt ``plaintext`` with AES-256-GCM.

    Args:
        plaintext: Bytes to encrypt; strings are encoded as UTF-8
        key: 32-byte record key

    Returns:
        Tuple of (ciphertext_with_tag, iv)
    """
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")

    aesgcm = _aead(key)
    iv = random_bytes(IV_LEN)
    ciphertext = aesgcm.encrypt(iv, bytes(plaintext), None)
    return ciphertext, iv


def decrypt(ciphertext: bytes, key: bytes, iv: bytes) -> bytes:
    """
    Decrypt and authenticate ``ciphertext``.

    Args:
        ciphertext: Ciphertext with the 16-byte tag appended
        key: 32-byte record key
        iv: The 12-byte IV returned by :func:`encrypt`

    Raises:
        AuthenticationError: If the tag does not verify or the IV is malformed
    """
    aesgcm = _aead(key)
    if len(iv) != IV_LEN:
        raise AuthenticationError(f"IV must be {IV_LEN} bytes, got {len(iv)}")
    if len(ciphertext) < TAG_LEN:
        raise AuthenticationError("Ciphertext is shorter than the authentication tag")

    try:
        return aesgcm.decrypt(bytes(iv), bytes(ciphertext), None)
    except InvalidTag as e:
        raise AuthenticationError("Authentication tag mismatch") from e
