"""
Client-side flows for patients and emergency responders.

Patient: encrypt -> package -> store ciphertext -> register the reference ->
wrap the record key for each responder -> grant.

Responder: ask the registry for the reference (logged) and the wrapped key,
unwrap it, fetch the ciphertext and decrypt.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from blobstore import BlobStore
from crypto import FileMetadata, KeyManager, pack_record, unpack_record, wrap_key
from registry import (
    AuthorizationRegistry,
    PermissionChanged,
    PublicKeyDirectory,
    RecordNotFound,
    RegistryError,
    UnknownIdentity,
)

logger = logging.getLogger(__name__)


class RecordKeyUnavailable(RegistryError):
    """The record exists, but this session does not hold its record key."""
    code = "RECORD_KEY_UNAVAILABLE"


@dataclass(frozen=True)
class UploadedRecord:
    """What the patient learns from an upload."""
    content_reference: str
    metadata: FileMetadata
    # Grants revoked because their key could not be re-wrapped
    dropped_grants: tuple[str, ...] = ()


class PatientClient:
    """Uploads a patient's record and manages who can open it."""

    def __init__(
        self,
        identity: str,
        registry: AuthorizationRegistry,
        directory: PublicKeyDirectory,
        blob_store: BlobStore,
    ):
        self.identity = identity
        self.registry = registry
        self.directory = directory
        self.blob_store = blob_store
        # The record key stays in memory only; there is no key recovery
        self._record_key: Optional[bytes] = None

    @property
    def has_record_key(self) -> bool:
        return self._record_key is not None

    async def upload(self, plaintext: bytes, file_name: str, file_type: str = "application/octet-stream") -> UploadedRecord:
        """
        Encrypt, store and register a record.

        A fresh record key is generated for every upload. It is wrapped for
        every recipient that already holds a grant before anything is
        registered, and the new reference and keys are written together.
        Grantees whose public key is not in the directory cannot receive the
        new key; their grants are revoked and reported in ``dropped_grants``.
        """
        packed = pack_record(plaintext, file_name, file_type)
        content_reference = await self.blob_store.put(packed.blob, name=f"{file_name}.enc")

        wrapped_keys = {}
        for recipient in self.registry.granted_recipients(self.identity):
            try:
                wrapped_keys[recipient] = wrap_key(packed.key, self.directory.lookup(recipient))
            except UnknownIdentity:
                logger.warning("No public key for %s; their grant will be revoked", recipient)

        events = self.registry.replace_record(self.identity, content_reference, wrapped_keys)
        self._record_key = packed.key

        dropped = tuple(e.recipient for e in events if isinstance(e, PermissionChanged) and not e.granted)
        logger.info("Uploaded %s for %s (%d grant(s) re-wrapped)", file_name, self.identity, len(events) - 1 - len(dropped))
        return UploadedRecord(content_reference=content_reference, metadata=packed.metadata, dropped_grants=dropped)

    def _require_key(self) -> bytes:
        if self._record_key is None:
            if self.registry.has_record(self.identity):
                raise RecordKeyUnavailable(
                    f"{self.identity}'s record key is not held by this session; upload the record again to grant access"
                )
            raise RecordNotFound(f"{self.identity} has no record; upload one before granting access")
        return self._record_key

    def wrap_for(self, recipient: str) -> bytes:
        """Wrap the record key with ``recipient``'s registered public key."""
        return wrap_key(self._require_key(), self.directory.lookup(recipient))

    def grant(self, recipient: str) -> PermissionChanged:
        return self.registry.grant_access(self.identity, recipient, self.wrap_for(recipient))

    def grant_many(self, recipients: Sequence[str]) -> list[PermissionChanged]:
        wrapped = [self.wrap_for(recipient) for recipient in recipients]
        return self.registry.batch_grant_access(self.identity, list(recipients), wrapped)

    def revoke(self, recipient: str) -> Optional[PermissionChanged]:
        return self.registry.revoke_access(self.identity, recipient)

    def revoke_many(self, recipients: Sequence[str]) -> list[PermissionChanged]:
        return self.registry.batch_revoke_access(self.identity, list(recipients))


class ResponderClient:
    """Opens a patient's record with an identity key that was granted access."""

    def __init__(
        self,
        identity: str,
        key_manager: KeyManager,
        registry: AuthorizationRegistry,
        blob_store: BlobStore,
    ):
        self.identity = identity
        self.key_manager = key_manager
        self.registry = registry
        self.blob_store = blob_store

    async def fetch(self, patient: str) -> tuple[bytes, FileMetadata]:
        """
        Retrieve and decrypt ``patient``'s record.

        Raises:
            RecordNotFound: If the patient has no record
            AccessDenied: If this responder holds no grant (the attempt is logged)
            KeyRecoveryError: If the wrapped key does not open with this identity
        """
        if not self.registry.has_record(patient):
            raise RecordNotFound(f"{patient} has no record")

        content_reference = self.registry.get_record_reference(self.identity, patient)
        wrapped_key = self.registry.get_wrapped_key(self.identity, patient)
        record_key = self.key_manager.unwrap(wrapped_key)

        blob = await self.blob_store.get(content_reference)
        plaintext, metadata = unpack_record(blob, record_key)
        logger.info("%s opened %s's record %s", self.identity, patient, metadata.file_name)
        return plaintext, metadata
