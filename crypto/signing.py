"""
ECDSA (secp256k1, SHA-256) signatures over identity keys.

Signatures prove possession of an identity private key: when a public key is
registered in the directory, and on every authenticated service request.
"""

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from .key_wrap import load_public_key
from .errors import InvalidKeyError

REGISTRATION_DOMAIN = b"medvault:register-identity:"


def registration_message(identity: str) -> bytes:
    """The message an identity signs to bind its public key in the directory."""
    return REGISTRATION_DOMAIN + identity.encode("utf-8")


def sign_message(private_key: ec.EllipticCurvePrivateKey, message: bytes) -> bytes:
    """Return a DER-encoded ECDSA signature."""
    return private_key.sign(message, ec.ECDSA(hashes.SHA256()))


def verify_signature(public_key: ec.EllipticCurvePublicKey | bytes, signature: bytes, message: bytes) -> bool:
    """
    Verify a DER-encoded ECDSA signature.

    Returns:
        True if the signature is valid, False otherwise
    """
    try:
        key = load_public_key(public_key)
        key.verify(signature, message, ec.ECDSA(hashes.SHA256()))
        return True
    except (InvalidSignature, InvalidKeyError, ValueError):
        return False
