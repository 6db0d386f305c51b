import itertools
import os
import tempfile
from dataclasses import dataclass

import pytest

# Keep key files and logs out of the working tree; config reads this at import
os.environ.setdefault("MEDVAULT_STORAGE_DIR", tempfile.mkdtemp(prefix="medvault-test-"))

from cryptography.hazmat.primitives.asymmetric import ec

from crypto.key_wrap import compress_public_key
from crypto.passphrase import PassphraseDeriver
from crypto.signing import registration_message, sign_message
from registry import AuditLog, AuthorizationRegistry, PublicKeyDirectory


@dataclass
class Identity:
    """A participant with an in-memory secp256k1 identity key."""
    name: str
    private_key: ec.EllipticCurvePrivateKey

    @property
    def public_key(self) -> ec.EllipticCurvePublicKey:
        return self.private_key.public_key()

    @property
    def public_key_bytes(self) -> bytes:
        return compress_public_key(self.public_key)

    def sign(self, message: bytes) -> bytes:
        return sign_message(self.private_key, message)

    def proof(self) -> bytes:
        return self.sign(registration_message(self.name))


@pytest.fixture
def make_identity():
    def _make(name: str) -> Identity:
        return Identity(name=name, private_key=ec.generate_private_key(ec.SECP256K1()))
    return _make


@pytest.fixture
def patient(make_identity) -> Identity:
    return make_identity("patient-p")


@pytest.fixture
def responder(make_identity) -> Identity:
    return make_identity("responder-m")


@pytest.fixture
def clock():
    """Deterministic, strictly increasing event timestamps."""
    counter = itertools.count(1_700_000_000)
    return lambda: next(counter)


@pytest.fixture
def audit() -> AuditLog:
    return AuditLog()


@pytest.fixture
def registry(audit, clock) -> AuthorizationRegistry:
    return AuthorizationRegistry(audit=audit, clock=clock)


@pytest.fixture
def directory() -> PublicKeyDirectory:
    return PublicKeyDirectory()


@pytest.fixture
def fast_argon2(monkeypatch):
    """Cheap Argon2id parameters so keystore tests stay fast."""
    monkeypatch.setattr(PassphraseDeriver, "TIME_COST", 1)
    monkeypatch.setattr(PassphraseDeriver, "MEMORY_COST", 1024)
    monkeypatch.setattr(PassphraseDeriver, "PARALLELISM", 1)
