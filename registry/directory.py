"""
Public-key directory.

Recipients' identity keys are looked up here before a record key is
wrapped for them. A key is only accepted together with a signature over
``registration_message(identity)`` made with the matching private key, and
an identity stays bound to the first key it registered.
"""

import logging
import threading

from cryptography.hazmat.primitives.asymmetric import ec

from crypto.errors import InvalidKeyError
from crypto.key_wrap import compress_public_key, load_public_key
from crypto.signing import registration_message, verify_signature

from .errors import EmptyInput, InvalidProof, KeyAlreadyRegistered, UnknownIdentity

logger = logging.getLogger(__name__)


class PublicKeyDirectory:
    """Maps identities to verified secp256k1 public keys."""

    def __init__(self):
        self._keys: dict[str, bytes] = {}
        self._lock = threading.RLock()

    def register(self, identity: str, public_key: ec.EllipticCurvePublicKey | bytes, proof: bytes) -> bytes:
        """
        Bind ``identity`` to ``public_key``.

        Args:
            identity: The participant's identity string
            public_key: secp256k1 public key (object or SEC1 bytes)
            proof: DER ECDSA signature over ``registration_message(identity)``

        Returns:
            The compressed public key now bound to the identity

        Raises:
            InvalidProof: If the key is malformed or the signature does not verify
            KeyAlreadyRegistered: If the identity holds a different key
        """
        if not identity:
            raise EmptyInput("identity must not be empty")

        try:
            key = load_public_key(public_key)
        except InvalidKeyError as e:
            raise InvalidProof(f"Invalid public key: {e}") from e

        if not verify_signature(key, proof, registration_message(identity)):
            raise InvalidProof(f"Proof of possession failed for {identity}")

        compressed = compress_public_key(key)
        with self._lock:
            existing = self._keys.get(identity)
            if existing is not None and existing != compressed:
                raise KeyAlreadyRegistered(f"{identity} is already bound to another key")
            self._keys[identity] = compressed

        if existing is None:
            logger.info("Registered public key for %s", identity)
        return compressed

    def is_registered(self, identity: str) -> bool:
        with self._lock:
            return identity in self._keys

    def public_key_bytes(self, identity: str) -> bytes:
        """Compressed public key of ``identity``."""
        with self._lock:
            try:
                return self._keys[identity]
            except KeyError:
                raise UnknownIdentity(f"No public key registered for {identity}") from None

    def lookup(self, identity: str) -> ec.EllipticCurvePublicKey:
        return load_public_key(self.public_key_bytes(identity))
