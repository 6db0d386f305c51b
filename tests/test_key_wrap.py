"""
Tests for per-recipient record key wrapping.
"""

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from crypto import cipher
from crypto.errors import InvalidKeyError, KeyRecoveryError, MalformedPackageError
from crypto.key_wrap import (
    EPHEMERAL_KEY_LEN,
    HEADER_LEN,
    WrappedKeyPackage,
    derive_wrapping_key,
    load_public_key,
    unwrap_key,
    wrap_key,
)


@pytest.fixture
def recipient_key():
    return ec.generate_private_key(ec.SECP256K1())


def test_wrap_unwrap_symmetry(recipient_key):
    record_key = cipher.generate_key()
    wrapped = wrap_key(record_key, recipient_key.public_key())
    assert unwrap_key(wrapped, recipient_key) == record_key


def test_package_layout(recipient_key):
    wrapped = wrap_key(cipher.generate_key(), recipient_key.public_key())

    assert len(wrapped) == HEADER_LEN + cipher.KEY_LEN + cipher.TAG_LEN
    package = WrappedKeyPackage.from_bytes(wrapped)
    assert len(package.ephemeral_public_key) == EPHEMERAL_KEY_LEN
    assert package.ephemeral_public_key[0] in (0x02, 0x03)
    assert len(package.iv) == cipher.IV_LEN
    assert package.to_bytes() == wrapped


def test_each_wrap_uses_a_fresh_ephemeral_key(recipient_key):
    record_key = cipher.generate_key()
    first = WrappedKeyPackage.from_bytes(wrap_key(record_key, recipient_key.public_key()))
    second = WrappedKeyPackage.from_bytes(wrap_key(record_key, recipient_key.public_key()))
    assert first.ephemeral_public_key != second.ephemeral_public_key


def test_accepts_encoded_public_keys(recipient_key):
    record_key = cipher.generate_key()
    public_key = recipient_key.public_key()
    compressed = public_key.public_bytes(serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint)
    uncompressed = public_key.public_bytes(serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint)

    assert unwrap_key(wrap_key(record_key, compressed), recipient_key) == record_key
    assert unwrap_key(wrap_key(record_key, uncompressed), recipient_key) == record_key


def test_wrapping_key_agreement_is_symmetric(recipient_key):
    ephemeral = ec.generate_private_key(ec.SECP256K1())
    assert derive_wrapping_key(ephemeral, recipient_key.public_key()) == derive_wrapping_key(
        recipient_key, ephemeral.public_key()
    )


def test_wrong_recipient_cannot_unwrap(recipient_key):
    wrapped = wrap_key(cipher.generate_key(), recipient_key.public_key())
    stranger = ec.generate_private_key(ec.SECP256K1())
    with pytest.raises(KeyRecoveryError):
        unwrap_key(wrapped, stranger)


@pytest.mark.parametrize("position", [0, EPHEMERAL_KEY_LEN, HEADER_LEN, -1])
def test_tampered_package_fails(recipient_key, position):
    wrapped = bytearray(wrap_key(cipher.generate_key(), recipient_key.public_key()))
    wrapped[position] ^= 0x04
    with pytest.raises(KeyRecoveryError):
        unwrap_key(bytes(wrapped), recipient_key)


def test_truncated_package(recipient_key):
    wrapped = wrap_key(cipher.generate_key(), recipient_key.public_key())
    with pytest.raises(MalformedPackageError):
        WrappedKeyPackage.from_bytes(wrapped[: HEADER_LEN + cipher.TAG_LEN - 1])
    with pytest.raises(KeyRecoveryError):
        unwrap_key(wrapped[:HEADER_LEN], recipient_key)


def test_rejects_keys_on_other_curves():
    p256 = ec.generate_private_key(ec.SECP256R1()).public_key()
    with pytest.raises(InvalidKeyError):
        load_public_key(p256)
    with pytest.raises(InvalidKeyError):
        wrap_key(cipher.generate_key(), b"\x02" + b"\x00" * 5)
