"""
In-memory state behind the authorization registry.

Keyed by ``owner`` for records and ``(owner, recipient)`` for permissions.
Only :class:`registry.registry.AuthorizationRegistry` mutates it; the lock
here only guarantees that each read or write sees a consistent map.
"""

import threading
from typing import Iterable, Optional

from .models import NO_ACCESS, Permission, Record


class RegistryStore:
    """Record and permission tables."""

    def __init__(self):
        self._records: dict[str, Record] = {}
        self._permissions: dict[tuple[str, str], Permission] = {}
        self._lock = threading.RLock()

    def get_record(self, owner: str) -> Optional[Record]:
        with self._lock:
            return self._records.get(owner)

    def put_record(self, record: Record) -> None:
        with self._lock:
            self._records[record.owner] = record

    def get_permission(self, owner: str, recipient: str) -> Permission:
        with self._lock:
            return self._permissions.get((owner, recipient), NO_ACCESS)

    def set_permissions(self, owner: str, changes: Iterable[tuple[str, Permission]]) -> None:
        """Apply several permission changes for one owner in one step."""
        with self._lock:
            for recipient, permission in changes:
                if permission.granted:
                    self._permissions[(owner, recipient)] = permission
                else:
                    # Revocation erases the stored key together with the flag
                    self._permissions.pop((owner, recipient), None)

    def granted_recipients(self, owner: str) -> list[str]:
        with self._lock:
            return sorted(
                recipient
                for (key_owner, recipient), permission in self._permissions.items()
                if key_owner == owner and permission.granted
            )
