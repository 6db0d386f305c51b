"""
Content-addressed blob storage interface.

The registry only stores references; ciphertext lives in a blob store.
Blobs are already encrypted before they reach any implementation here.
"""

import hashlib
from abc import ABC, abstractmethod
from typing import Any, Optional


class BlobStoreError(Exception):
    """A blob store operation failed. Network failures are retryable."""

    def __init__(self, message: str, code: str = "BLOB_STORE_ERROR", details: Optional[Any] = None):
        super().__init__(message)
        self.code = code
        self.details = details


class BlobStore(ABC):
    """Async put/get of opaque blobs by content id."""

    @abstractmethod
    async def put(self, blob: bytes, name: str = "record.enc") -> str:
        """Store ``blob`` and return its content id."""

    @abstractmethod
    async def get(self, content_id: str) -> bytes:
        """Fetch the blob stored under ``content_id``."""

    async def close(self) -> None:
        """Release any network resources."""


class InMemoryBlobStore(BlobStore):
    """Process-local store keyed by ``sha256:<hex>``; used for tests and demos."""

    def __init__(self):
        self._blobs: dict[str, bytes] = {}

    async def put(self, blob: bytes, name: str = "record.enc") -> str:
        content_id = "sha256:" + hashlib.sha256(blob).hexdigest()
        self._blobs[content_id] = bytes(blob)
        return content_id

    async def get(self, content_id: str) -> bytes:
        try:
            return self._blobs[content_id]
        except KeyError:
            raise BlobStoreError(f"No blob stored under {content_id}", code="NOT_FOUND") from None
