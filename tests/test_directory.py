"""
Tests for the public-key directory.
"""

import pytest
from cryptography.hazmat.primitives import serialization

from crypto.key_wrap import compress_public_key
from registry import EmptyInput, InvalidProof, KeyAlreadyRegistered, UnknownIdentity


def test_register_and_lookup(directory, responder):
    compressed = directory.register(responder.name, responder.public_key, responder.proof())

    assert compressed == responder.public_key_bytes
    assert directory.is_registered(responder.name)
    assert directory.public_key_bytes(responder.name) == compressed
    assert compress_public_key(directory.lookup(responder.name)) == compressed


def test_uncompressed_key_is_stored_compressed(directory, responder):
    uncompressed = responder.public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
    )
    assert directory.register(responder.name, uncompressed, responder.proof()) == responder.public_key_bytes


def test_proof_must_match_identity(directory, responder, make_identity):
    other = make_identity("someone-else")
    with pytest.raises(InvalidProof):
        directory.register(responder.name, responder.public_key, other.proof())
    with pytest.raises(InvalidProof):
        # Signed by the right key, but for another identity
        directory.register("someone-else", responder.public_key, responder.proof())
    assert not directory.is_registered(responder.name)


def test_malformed_key_or_proof(directory, responder):
    with pytest.raises(InvalidProof):
        directory.register(responder.name, b"\x02" + b"\x11" * 10, responder.proof())
    with pytest.raises(InvalidProof):
        directory.register(responder.name, responder.public_key, b"not-a-signature")


def test_rebinding(directory, responder, make_identity):
    directory.register(responder.name, responder.public_key, responder.proof())
    # Same key again is accepted
    directory.register(responder.name, responder.public_key, responder.proof())

    impostor = make_identity(responder.name)
    with pytest.raises(KeyAlreadyRegistered):
        directory.register(impostor.name, impostor.public_key, impostor.proof())
    assert directory.public_key_bytes(responder.name) == responder.public_key_bytes


def test_unknown_and_empty_identity(directory, responder):
    with pytest.raises(UnknownIdentity):
        directory.lookup("nobody")
    with pytest.raises(EmptyInput):
        directory.register("", responder.public_key, responder.proof())
