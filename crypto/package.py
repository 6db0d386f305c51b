"""
Record package framing.

A packaged record is a single opaque blob ready for the blob store:

    metadata_length[4, u32 little-endian] || metadata JSON || ciphertext+tag

The metadata JSON carries the original file name, MIME type, size, the
hex-encoded IV and the encryption timestamp, using the same field names and
formatting as the MedVault browser client so both can read each other's
packages.
"""

import json
import struct
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from . import cipher
from .errors import MalformedPackageError

LENGTH_PREFIX = struct.Struct("<I")

_FIELDS = ("fileName", "fileType", "fileSize", "iv", "encryptedAt")


def _utc_timestamp() -> str:
    """ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iv_to_hex(iv: bytes) -> str:
    return "0x" + iv.hex()


def iv_from_hex(value: str) -> bytes:
    """Parse an IV written with or without a ``0x`` prefix."""
    if not isinstance(value, str):
        raise MalformedPackageError("Metadata field 'iv' must be a hex string")
    digits = value[2:] if value[:2].lower() == "0x" else value
    try:
        return bytes.fromhex(digits)
    except ValueError as e:
        raise MalformedPackageError(f"Metadata field 'iv' is not valid hex: {value!r}") from e


@dataclass(frozen=True)
class FileMetadata:
    """Plaintext metadata stored in front of the ciphertext."""
    file_name: str
    file_type: str
    file_size: int
    iv: str
    encrypted_at: str

    @property
    def iv_bytes(self) -> bytes:
        return iv_from_hex(self.iv)

    def to_dict(self) -> dict[str, Any]:
        """Field order matches the browser client's JSON."""
        return {
            "fileName": self.file_name,
            "fileType": self.file_type,
            "fileSize": self.file_size,
            "iv": self.iv,
            "encryptedAt": self.encrypted_at,
        }

    def to_json_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileMetadata":
        if not isinstance(data, dict):
            raise MalformedPackageError("Metadata must be a JSON object")

        missing = [name for name in _FIELDS if name not in data]
        if missing:
            raise MalformedPackageError(f"Metadata missing fields: {', '.join(missing)}")

        file_size = data["fileSize"]
        if isinstance(file_size, bool) or not isinstance(file_size, int):
            raise MalformedPackageError("Metadata field 'fileSize' must be an integer")

        return cls(
            file_name=str(data["fileName"]),
            file_type=str(data["fileType"]),
            file_size=file_size,
            iv=data["iv"],
            encrypted_at=str(data["encryptedAt"]),
        )


@dataclass(frozen=True)
class PackedRecord:
    """Result of packaging a record: the blob plus what the owner must keep."""
    blob: bytes
    key: bytes
    metadata: FileMetadata


def pack_record(
    plaintext: bytes | str,
    file_name: str,
    file_type: str = "application/octet-stream",
    key: bytes | None = None,
) -> PackedRecord:
    """
    Encrypt a record and frame it with its metadata.

    Args:
        plaintext: The record bytes; strings are encoded as UTF-8
        file_name: Original file name
        file_type: MIME type of the original file
        key: Record key to use; a new one is generated when omitted

    Returns:
        PackedRecord with the blob, the record key and the metadata
    """
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    if key is None:
        key = cipher.generate_key()

    ciphertext, iv = cipher.encrypt(plaintext, key)

    metadata = FileMetadata(
        file_name=file_name,
        file_type=file_type,
        file_size=len(plaintext),
        iv=iv_to_hex(iv),
        encrypted_at=_utc_timestamp(),
    )
    metadata_bytes = metadata.to_json_bytes()

    blob = LENGTH_PREFIX.pack(len(metadata_bytes)) + metadata_bytes + ciphertext
    return PackedRecord(blob=blob, key=key, metadata=metadata)


def _split(blob: bytes) -> tuple[FileMetadata, bytes]:
    blob = bytes(blob)
    if len(blob) < LENGTH_PREFIX.size:
        raise MalformedPackageError("Package is shorter than its length prefix")

    (metadata_len,) = LENGTH_PREFIX.unpack_from(blob, 0)
    end = LENGTH_PREFIX.size + metadata_len
    if end > len(blob):
        raise MalformedPackageError(
            f"Metadata length {metadata_len} exceeds package size {len(blob)}"
        )

    try:
        raw = json.loads(blob[LENGTH_PREFIX.size:end].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedPackageError(f"Metadata is not valid UTF-8 JSON: {e}") from e

    return FileMetadata.from_dict(raw), blob[end:]


def read_metadata(blob: bytes) -> FileMetadata:
    """Parse the metadata header without decrypting the record."""
    metadata, _ = _split(blob)
    return metadata


def unpack_record(blob: bytes, key: bytes) -> tuple[bytes, FileMetadata]:
    """
    Parse and decrypt a packaged record.

    Raises:
        MalformedPackageError: If the framing or metadata is invalid
        AuthenticationError: If the ciphertext fails authentication
    """
    metadata, ciphertext = _split(blob)
    plaintext = cipher.decrypt(ciphertext, key, metadata.iv_bytes)
    return plaintext, metadata
