"""
Entities owned by the authorization registry and the audit trail.
"""

from dataclasses import dataclass
from typing import Any, ClassVar


@dataclass(frozen=True)
class Record:
    """The current record pointer of one patient."""
    owner: str
    content_reference: str
    exists: bool = True


@dataclass(frozen=True)
class Permission:
    """Access state of one (owner, recipient) pair."""
    granted: bool = False
    wrapped_key: bytes = b""


NO_ACCESS = Permission()


# Audit events. Field order is part of the replay format.

@dataclass(frozen=True)
class RecordUploaded:
    owner: str
    reference: str
    timestamp: int

    kind: ClassVar[str] = "Uploaded"

    def to_dict(self) -> dict[str, Any]:
        return {"owner": self.owner, "reference": self.reference, "timestamp": self.timestamp}

    def involves(self, identity: str) -> bool:
        return False


@dataclass(frozen=True)
class PermissionChanged:
    owner: str
    recipient: str
    granted: bool
    timestamp: int

    kind: ClassVar[str] = "PermissionChanged"

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "recipient": self.recipient,
            "granted": self.granted,
            "timestamp": self.timestamp,
        }

    def involves(self, identity: str) -> bool:
        return self.recipient == identity


@dataclass(frozen=True)
class AccessAttempted:
    accessor: str
    owner: str
    success: bool
    timestamp: int

    kind: ClassVar[str] = "AccessAttempted"

    def to_dict(self) -> dict[str, Any]:
        return {
            "accessor": self.accessor,
            "owner": self.owner,
            "success": self.success,
            "timestamp": self.timestamp,
        }

    def involves(self, identity: str) -> bool:
        return self.accessor == identity


AuditEvent = RecordUploaded | PermissionChanged | AccessAttempted

EVENT_TYPES: dict[str, type] = {
    cls.kind: cls for cls in (RecordUploaded, PermissionChanged, AccessAttempted)
}


def event_from_dict(kind: str, data: dict[str, Any]) -> AuditEvent:
    """Rebuild an audit event from its journal form."""
    try:
        cls = EVENT_TYPES[kind]
    except KeyError:
        raise ValueError(f"Unknown audit event kind: {kind}") from None
    return cls(**data)


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an access attempt; denial is a normal result, not an error."""
    accessor: str
    owner: str
    authorized: bool
    record_exists: bool
    content_reference: str | None = None

    @property
    def success(self) -> bool:
        """What the audit trail records: the accessor was authorized."""
        return self.authorized

    @property
    def readable(self) -> bool:
        """Authorized and there is a record to read."""
        return self.authorized and self.record_exists
