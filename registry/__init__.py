"""
Authorization registry for MedVault.

Handles:
- Record pointers and per-recipient permissions
- Wrapped-key storage
- The append-only, hash-chained audit trail
- The public-key directory used to find recipients' identity keys
"""

from .audit import AuditEntry, AuditLog, ChainVerification
from .directory import PublicKeyDirectory
from .errors import (
    AccessDenied,
    AuditIntegrityError,
    EmptyInput,
    InvalidProof,
    InvalidRecipient,
    KeyAlreadyRegistered,
    NotOwner,
    RecordNotFound,
    RegistryError,
    UnknownIdentity,
)
from .models import AccessAttempted, AccessDecision, PermissionChanged, Record, RecordUploaded
from .registry import AuthorizationRegistry

__all__ = [
    "AccessAttempted",
    "AccessDecision",
    "AccessDenied",
    "AuditEntry",
    "AuditIntegrityError",
    "AuditLog",
    "AuthorizationRegistry",
    "ChainVerification",
    "EmptyInput",
    "InvalidProof",
    "InvalidRecipient",
    "KeyAlreadyRegistered",
    "NotOwner",
    "PermissionChanged",
    "PublicKeyDirectory",
    "Record",
    "RecordNotFound",
    "RecordUploaded",
    "RegistryError",
    "UnknownIdentity",
]
