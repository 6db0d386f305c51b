"""
Append-only audit trail.

Every upload, permission change and access attempt is appended as an
immutable entry. Entries are linked in a SHA-256 hash chain so that any
edit, reordering or deletion of history is detectable:

    payload_hash = SHA-256(canonical JSON of {seq, kind, event})
    entry_hash   = SHA-256(prev_entry_hash || payload_hash)

There is no API to delete or compact entries. An optional JSONL journal
persists the chain; it is replayed and verified when the log is opened.
"""

import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from logging_config import audit_log

from .errors import AuditIntegrityError
from .models import AccessAttempted, AuditEvent, event_from_dict

logger = logging.getLogger(__name__)


def canonicalize(obj: Any) -> bytes:
    """Sorted keys, no whitespace, UTF-8."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sha256_hex(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def payload_hash(seq: int, event: AuditEvent) -> str:
    return sha256_hex(canonicalize({"seq": seq, "kind": event.kind, "event": event.to_dict()}))


def chain_entry_hash(prev_entry_hash: Optional[str], payload: str) -> str:
    """Link a payload hash to the previous entry (empty for the first)."""
    return sha256_hex((prev_entry_hash or "") + payload)


@dataclass(frozen=True)
class AuditEntry:
    """One chained entry of the audit trail."""
    seq: int
    event: AuditEvent
    prev_hash: Optional[str]
    entry_hash: str

    @property
    def kind(self) -> str:
        return self.event.kind

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "kind": self.kind,
            "event": self.event.to_dict(),
            "prev_hash": self.prev_hash,
            "entry_hash": self.entry_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditEntry":
        return cls(
            seq=data["seq"],
            event=event_from_dict(data["kind"], data["event"]),
            prev_hash=data.get("prev_hash"),
            entry_hash=data["entry_hash"],
        )


@dataclass(frozen=True)
class ChainVerification:
    """Result of recomputing the hash chain."""
    valid: bool
    entries_checked: int
    broken_at: Optional[int] = None
    reason: str = ""


def verify_entries(entries: Iterable[AuditEntry]) -> ChainVerification:
    """Recompute the hash chain over ``entries`` in order."""
    prev: Optional[str] = None
    checked = 0
    for expected_seq, entry in enumerate(entries):
        if entry.seq != expected_seq:
            return ChainVerification(False, checked, entry.seq, f"expected seq {expected_seq}")
        if entry.prev_hash != prev:
            return ChainVerification(False, checked, entry.seq, "prev_hash does not link")
        if chain_entry_hash(prev, payload_hash(entry.seq, entry.event)) != entry.entry_hash:
            return ChainVerification(False, checked, entry.seq, "entry_hash mismatch")
        prev = entry.entry_hash
        checked += 1
    return ChainVerification(True, checked)


class AuditLog:
    """Append-only, hash-chained sequence of audit events."""

    def __init__(self, journal_path: Optional[Path] = None):
        """
        Args:
            journal_path: Optional JSONL file that persists the chain
        """
        self._entries: list[AuditEntry] = []
        self._lock = threading.Lock()
        self._journal_path = Path(journal_path) if journal_path else None

        if self._journal_path and self._journal_path.exists():
            self._load_journal()

    def _load_journal(self) -> None:
        with open(self._journal_path, "r", encoding="utf-8") as f:
            entries = [AuditEntry.from_dict(json.loads(line)) for line in f if line.strip()]

        result = verify_entries(entries)
        if not result.valid:
            raise AuditIntegrityError(
                f"Audit journal {self._journal_path} broken at seq {result.broken_at}: {result.reason}"
            )
        self._entries = entries
        logger.info("Loaded %d audit entries from %s", len(entries), self._journal_path)

    def append(self, event: AuditEvent) -> AuditEntry:
        """Append an event and return its chained entry."""
        return self.append_many([event])[0]

    def append_many(self, events: Sequence[AuditEvent]) -> list[AuditEntry]:
        """
        Append several events as one unit.

        The journal is written before any entry becomes visible, so a failed
        write leaves the log exactly as it was.

        Raises:
            OSError: If the journal cannot be written
        """
        with self._lock:
            entries = []
            prev = self._entries[-1].entry_hash if self._entries else None
            for seq, event in enumerate(events, start=len(self._entries)):
                entry = AuditEntry(
                    seq=seq,
                    event=event,
                    prev_hash=prev,
                    entry_hash=chain_entry_hash(prev, payload_hash(seq, event)),
                )
                entries.append(entry)
                prev = entry.entry_hash

            if self._journal_path and entries:
                self._journal_path.parent.mkdir(parents=True, exist_ok=True)
                lines = "".join(json.dumps(entry.to_dict(), separators=(",", ":")) + "\n" for entry in entries)
                with open(self._journal_path, "a", encoding="utf-8") as f:
                    f.write(lines)

            self._entries.extend(entries)

        for entry in entries:
            event = entry.event
            level = logging.WARNING if isinstance(event, AccessAttempted) and not event.success else logging.INFO
            audit_log.event(event.kind, level=level, seq=entry.seq, **event.to_dict())
        return entries

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[AuditEntry]:
        """Snapshot of all entries in append order."""
        with self._lock:
            return list(self._entries)

    def events(self) -> list[AuditEvent]:
        return [entry.event for entry in self.entries()]

    def query(
        self,
        kind: Optional[str] = None,
        owner: Optional[str] = None,
        party: Optional[str] = None,
        since: Optional[int] = None,
        until: Optional[int] = None,
    ) -> list[AuditEntry]:
        """
        Filter entries by event kind, entity and time range.

        Args:
            kind: "Uploaded", "PermissionChanged" or "AccessAttempted"
            owner: Patient whose record the event concerns
            party: Accessor or recipient named in the event
            since: Inclusive lower bound on the event timestamp
            until: Inclusive upper bound on the event timestamp
        """
        result = []
        for entry in self.entries():
            event = entry.event
            if kind is not None and event.kind != kind:
                continue
            if owner is not None and event.owner != owner:
                continue
            if party is not None and not event.involves(party):
                continue
            if since is not None and event.timestamp < since:
                continue
            if until is not None and event.timestamp > until:
                continue
            result.append(entry)
        return result

    def verify_chain(self) -> ChainVerification:
        """Recompute the hash chain over the in-memory entries."""
        return verify_entries(self.entries())
