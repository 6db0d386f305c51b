"""
Tests for AES-256-GCM record encryption.
"""

import pytest

from crypto import cipher
from crypto.errors import AuthenticationError, EntropyUnavailable, InvalidKeyError


def test_encrypt_decrypt_round_trip():
    key = cipher.generate_key()
    ciphertext, iv = cipher.encrypt(b"blood type: O negative", key)

    assert len(key) == cipher.KEY_LEN
    assert len(iv) == cipher.IV_LEN
    assert len(ciphertext) == len(b"blood type: O negative") + cipher.TAG_LEN
    assert cipher.decrypt(ciphertext, key, iv) == b"blood type: O negative"


def test_string_plaintext_is_utf8_encoded():
    key = cipher.generate_key()
    ciphertext, iv = cipher.encrypt("allergie: pénicilline", key)
    assert cipher.decrypt(ciphertext, key, iv) == "allergie: pénicilline".encode("utf-8")


def test_empty_plaintext():
    key = cipher.generate_key()
    ciphertext, iv = cipher.encrypt(b"", key)
    assert len(ciphertext) == cipher.TAG_LEN
    assert cipher.decrypt(ciphertext, key, iv) == b""


def test_fresh_iv_per_message():
    key = cipher.generate_key()
    first, iv1 = cipher.encrypt(b"same message", key)
    second, iv2 = cipher.encrypt(b"same message", key)
    assert iv1 != iv2
    assert first != second


def test_wrong_key_fails_authentication():
    ciphertext, iv = cipher.encrypt(b"record", cipher.generate_key())
    with pytest.raises(AuthenticationError):
        cipher.decrypt(ciphertext, cipher.generate_key(), iv)


@pytest.mark.parametrize("position", [0, 5, -1])
def test_tampered_ciphertext_fails_authentication(position):
    key = cipher.generate_key()
    ciphertext, iv = cipher.encrypt(b"critical medication list", key)
    tampered = bytearray(ciphertext)
    tampered[position] ^= 0x01

    with pytest.raises(AuthenticationError):
        cipher.decrypt(bytes(tampered), key, iv)


def test_tampered_iv_fails_authentication():
    key = cipher.generate_key()
    ciphertext, iv = cipher.encrypt(b"record", key)
    with pytest.raises(AuthenticationError):
        cipher.decrypt(ciphertext, key, bytes([iv[0] ^ 0xFF]) + iv[1:])


def test_malformed_iv_and_short_ciphertext():
    key = cipher.generate_key()
    ciphertext, iv = cipher.encrypt(b"record", key)

    with pytest.raises(AuthenticationError):
        cipher.decrypt(ciphertext, key, iv[:8])
    with pytest.raises(AuthenticationError):
        cipher.decrypt(ciphertext[:10], key, iv)


@pytest.mark.parametrize("key", [b"", b"\x00" * 16, b"\x00" * 33])
def test_invalid_key_length(key):
    with pytest.raises(InvalidKeyError):
        cipher.encrypt(b"record", key)
    # Also usable as a plain ValueError by callers
    with pytest.raises(ValueError):
        cipher.decrypt(b"\x00" * 32, key, b"\x00" * 12)


def test_entropy_failure_is_reported(monkeypatch):
    def broken_urandom(n):
        raise OSError("no entropy")

    monkeypatch.setattr(cipher.os, "urandom", broken_urandom)
    with pytest.raises(EntropyUnavailable):
        cipher.generate_key()
