"""
Blob storage for encrypted record packages.
"""

from .base import BlobStore, BlobStoreError, InMemoryBlobStore
from .pinata import PinataBlobStore, PinResult, validate_cid

__all__ = [
    "BlobStore",
    "BlobStoreError",
    "InMemoryBlobStore",
    "PinataBlobStore",
    "PinResult",
    "validate_cid",
]
