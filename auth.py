"""
Request authentication for the MedVault service.

A caller proves its identity by signing each request with the identity key
it registered in the public-key directory. Possession of that key is the
only identity check (no accounts, no sessions).

Headers:
    X-MedVault-Identity   the caller's identity
    X-MedVault-Timestamp  seconds since the epoch
    X-MedVault-Signature  hex DER ECDSA signature over the canonical request

Canonical request:
    METHOD \\n PATH[?QUERY] \\n TIMESTAMP \\n sha256_hex(BODY)
"""

import hashlib
import logging
import time
from typing import Callable, Optional

from crypto.signing import verify_signature
from registry import PublicKeyDirectory, UnknownIdentity

logger = logging.getLogger(__name__)

IDENTITY_HEADER = "X-MedVault-Identity"
TIMESTAMP_HEADER = "X-MedVault-Timestamp"
SIGNATURE_HEADER = "X-MedVault-Signature"


class AuthenticationFailed(Exception):
    """The request signature is missing, stale or invalid."""


def canonical_request(method: str, path: str, timestamp: int, body: bytes = b"") -> bytes:
    """The bytes a caller signs for one request."""
    body_hash = hashlib.sha256(body or b"").hexdigest()
    return f"{method.upper()}\n{path}\n{timestamp}\n{body_hash}".encode("utf-8")


def sign_request(
    sign: Callable[[bytes], bytes],
    identity: str,
    method: str,
    path: str,
    body: bytes = b"",
    timestamp: Optional[int] = None,
) -> dict[str, str]:
    """
    Build the authentication headers for a request.

    Args:
        sign: Signs a message with the caller's identity key, e.g. ``KeyManager.sign``
        identity: The caller's registered identity
        method: HTTP method
        path: Request path including any query string
        body: Raw request body
        timestamp: Override the signing time (seconds since the epoch)
    """
    if timestamp is None:
        timestamp = int(time.time())
    signature = sign(canonical_request(method, path, timestamp, body))
    return {
        IDENTITY_HEADER: identity,
        TIMESTAMP_HEADER: str(timestamp),
        SIGNATURE_HEADER: signature.hex(),
    }


class RequestAuthenticator:
    """Verifies signed requests against the public-key directory."""

    def __init__(self, directory: PublicKeyDirectory, max_skew_seconds: int = 300):
        """
        Args:
            directory: Where callers' public keys are registered
            max_skew_seconds: Accepted distance between the signed timestamp and now
        """
        self.directory = directory
        self.max_skew_seconds = max_skew_seconds

    def authenticate(
        self,
        identity: Optional[str],
        timestamp: Optional[str],
        signature_hex: Optional[str],
        method: str,
        path: str,
        body: bytes,
        now: Optional[int] = None,
    ) -> str:
        """
        Verify a request and return the caller's identity.

        Raises:
            AuthenticationFailed: If any part of the signature check fails
        """
        if not identity or not timestamp or not signature_hex:
            raise AuthenticationFailed("Missing authentication headers")

        try:
            signed_at = int(timestamp)
            signature = bytes.fromhex(signature_hex)
        except ValueError:
            raise AuthenticationFailed("Malformed timestamp or signature") from None

        now = int(time.time()) if now is None else now
        if abs(now - signed_at) > self.max_skew_seconds:
            raise AuthenticationFailed("Request timestamp outside the accepted window")

        try:
            public_key = self.directory.public_key_bytes(identity)
        except UnknownIdentity:
            raise AuthenticationFailed(f"Unknown identity {identity}") from None

        if not verify_signature(public_key, signature, canonical_request(method, path, signed_at, body)):
            logger.warning("Rejected request signature from %s on %s %s", identity, method, path)
            raise AuthenticationFailed("Invalid request signature")

        return identity
