"""
Key management for secp256k1 identity keypairs.

Handles generation, storage, and loading of a participant's identity key.
The same key signs service requests and receives wrapped record keys.
Private keys are encrypted with AES-256-GCM using a passphrase-derived key.
"""

import json
import base64
import logging
from pathlib import Path
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from . import cipher
from .key_wrap import CURVE, compress_public_key, unwrap_key
from .passphrase import PassphraseDeriver
from .signing import registration_message, sign_message

logger = logging.getLogger(__name__)

PRIVATE_KEY_LEN = 32


class KeyManager:
    """Manages a secp256k1 identity keypair with encrypted storage."""

    def __init__(self, storage_dir: Path):
        """
        Initialize the key manager.

        Args:
            storage_dir: Directory for storing key files
        """
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)

        self.public_key_path = self.storage_dir / "identity_public.pem"
        self.private_key_path = self.storage_dir / "identity_private.enc"

        # In-memory unlocked private key (cleared on lock)
        self._unlocked_private_key: Optional[ec.EllipticCurvePrivateKey] = None

    @property
    def has_keys(self) -> bool:
        """Check if keys have been generated."""
        return self.public_key_path.exists() and self.private_key_path.exists()

    @property
    def is_unlocked(self) -> bool:
        """Check if the private key is currently unlocked in memory."""
        return self._unlocked_private_key is not None

    def generate_keypair(self, passphrase: str) -> bytes:
        """
        Generate a new identity keypair and store it encrypted.

        Args:
            passphrase: Passphrase to encrypt the private key

        Returns:
            The compressed public key (33 bytes)
        """
        PassphraseDeriver.check_passphrase(passphrase)
        if self.has_keys:
            raise ValueError("Identity keys already exist. Delete existing keys first.")

        private_key = ec.generate_private_key(CURVE)
        public_key = private_key.public_key()

        public_key_pem = public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        private_scalar = private_key.private_numbers().private_value.to_bytes(PRIVATE_KEY_LEN, "big")

        # Derive encryption key from passphrase
        derived_key, salt = PassphraseDeriver.derive_key(passphrase)

        # Encrypt private key with AES-256-GCM
        nonce = cipher.random_bytes(cipher.IV_LEN)
        ciphertext = AESGCM(derived_key).encrypt(nonce, private_scalar, None)

        encrypted_data = {
            "salt": base64.b64encode(salt).decode("ascii"),
            "nonce": base64.b64encode(nonce).decode("ascii"),
            "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
            "algorithm": "secp256k1",
            "kdf": "argon2id",
        }

        self.public_key_path.write_bytes(public_key_pem)
        self.private_key_path.write_text(json.dumps(encrypted_data, indent=2))

        self._unlocked_private_key = private_key
        logger.info("Generated new secp256k1 identity key in %s", self.storage_dir)

        return compress_public_key(public_key)

    def unlock(self, passphrase: str) -> bool:
        """
        Unlock the private key using the passphrase.

        Returns:
            True if successful, False if the passphrase is wrong
        """
        if not self.has_keys:
            raise ValueError("No keys found. Generate keys first.")

        encrypted_data = json.loads(self.private_key_path.read_text())
        salt = base64.b64decode(encrypted_data["salt"])
        nonce = base64.b64decode(encrypted_data["nonce"])
        ciphertext = base64.b64decode(encrypted_data["ciphertext"])

        derived_key, _ = PassphraseDeriver.derive_key(passphrase, salt)

        try:
            private_scalar = AESGCM(derived_key).decrypt(nonce, ciphertext, None)
        except InvalidTag:
            logger.warning("Identity key unlock failed: wrong passphrase")
            return False

        self._unlocked_private_key = ec.derive_private_key(int.from_bytes(private_scalar, "big"), CURVE)
        return True

    def lock(self) -> None:
        """Lock the private key (clear from memory)."""
        self._unlocked_private_key = None

    def get_public_key(self) -> Optional[ec.EllipticCurvePublicKey]:
        """Get the public key."""
        if not self.public_key_path.exists():
            return None
        return serialization.load_pem_public_key(self.public_key_path.read_bytes())

    def get_public_key_bytes(self) -> Optional[bytes]:
        """Get the public key as a compressed point."""
        public_key = self.get_public_key()
        if public_key is None:
            return None
        return compress_public_key(public_key)

    def _require_unlocked(self) -> ec.EllipticCurvePrivateKey:
        if self._unlocked_private_key is None:
            raise ValueError("Private key must be unlocked first.")
        return self._unlocked_private_key

    def sign(self, message: bytes) -> bytes:
        """Sign ``message`` with the identity key (DER ECDSA)."""
        return sign_message(self._require_unlocked(), message)

    def registration_proof(self, identity: str) -> bytes:
        """Proof of possession for registering this key under ``identity``."""
        return self.sign(registration_message(identity))

    def unwrap(self, wrapped_key: bytes) -> bytes:
        """Recover a record key that was wrapped for this identity."""
        return unwrap_key(wrapped_key, self._require_unlocked())
