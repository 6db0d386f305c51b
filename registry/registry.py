"""
Authorization registry.

Owns every patient's record pointer and the per-recipient permission
state, and decides who may read what. Each ``(owner, recipient)`` pair is
either *NoAccess* (initial) or *Granted*; an owner may move a pair back and
forth indefinitely.

Writes for the same owner are serialized with a per-owner lock and are
all-or-nothing: preconditions are checked before anything changes, the
audit events are persisted next, and the tables change only once the audit
trail holds the events. Reads only take the store's short critical section.

Wrapped keys are opaque bytes here; the registry never sees a record key.
"""

import logging
import threading
import time
import weakref
from typing import Callable, Mapping, Optional, Sequence

from .audit import AuditLog
from .errors import AccessDenied, EmptyInput, InvalidRecipient, RecordNotFound
from .models import (
    AccessAttempted,
    AccessDecision,
    AuditEvent,
    Permission,
    PermissionChanged,
    Record,
    RecordUploaded,
)
from .store import RegistryStore

logger = logging.getLogger(__name__)


def _epoch_now() -> int:
    return int(time.time())


class AuthorizationRegistry:
    """State machine gating access to patients' encrypted records."""

    def __init__(
        self,
        audit: Optional[AuditLog] = None,
        store: Optional[RegistryStore] = None,
        clock: Callable[[], int] = _epoch_now,
    ):
        """
        Args:
            audit: Audit trail receiving every event (a fresh in-memory log by default)
            store: Backing tables (fresh in-memory tables by default)
            clock: Source of event timestamps, seconds since the epoch
        """
        self.audit = audit if audit is not None else AuditLog()
        self._store = store if store is not None else RegistryStore()
        self._clock = clock
        # Entries disappear once no writer holds the owner's lock
        self._owner_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._owner_locks_guard = threading.Lock()

    def _owner_lock(self, owner: str) -> threading.Lock:
        with self._owner_locks_guard:
            lock = self._owner_locks.get(owner)
            if lock is None:
                lock = threading.Lock()
                self._owner_locks[owner] = lock
            return lock

    # ------------------------------------------------------------------ #
    # Preconditions
    # ------------------------------------------------------------------ #

    @staticmethod
    def _require_identity(value: str, name: str) -> None:
        if not value:
            raise EmptyInput(f"{name} must not be empty")

    def _require_record(self, owner: str) -> Record:
        record = self._store.get_record(owner)
        if record is None or not record.exists:
            raise RecordNotFound(f"{owner} has no record")
        return record

    @staticmethod
    def _require_recipient(caller: str, recipient: str) -> None:
        if not recipient:
            raise InvalidRecipient("recipient must not be empty")
        if recipient == caller:
            raise InvalidRecipient("owners always have access to their own record")

    # ------------------------------------------------------------------ #
    # State-changing operations
    # ------------------------------------------------------------------ #

    def upload_record(self, caller: str, content_reference: str) -> RecordUploaded:
        """
        Register or replace the caller's record pointer.

        Re-uploading overwrites the reference; the owner never changes and
        existing grants stay in place with their current wrapped keys.
        """
        self._require_identity(caller, "caller")
        if not content_reference:
            raise EmptyInput("content reference must not be empty")

        with self._owner_lock(caller):
            event = RecordUploaded(owner=caller, reference=content_reference, timestamp=self._clock())
            self.audit.append(event)
            self._store.put_record(Record(owner=caller, content_reference=content_reference))

        logger.info("Record uploaded by %s", caller)
        return event

    def replace_record(
        self,
        caller: str,
        content_reference: str,
        wrapped_keys: Mapping[str, bytes],
    ) -> list[AuditEvent]:
        """
        Register a new record pointer and re-key its grants in one step.

        A new upload is encrypted under a new record key, so every current
        grant needs a new wrapped key. Recipients granted at the time of the
        call get the key supplied for them in ``wrapped_keys``; granted
        recipients without one are revoked, since their old key no longer
        opens the record. Keys for recipients that are not granted are ignored.

        Returns:
            The ``RecordUploaded`` event followed by one ``PermissionChanged``
            per re-keyed (granted) or dropped (revoked) recipient
        """
        self._require_identity(caller, "caller")
        if not content_reference:
            raise EmptyInput("content reference must not be empty")
        for recipient, wrapped_key in wrapped_keys.items():
            self._require_recipient(caller, recipient)
            if not wrapped_key:
                raise EmptyInput(f"wrapped key for {recipient} must not be empty")

        with self._owner_lock(caller):
            now = self._clock()
            changes: list[tuple[str, Permission]] = []
            events: list[AuditEvent] = [RecordUploaded(owner=caller, reference=content_reference, timestamp=now)]
            for recipient in self._store.granted_recipients(caller):
                wrapped_key = wrapped_keys.get(recipient)
                if wrapped_key:
                    changes.append((recipient, Permission(granted=True, wrapped_key=bytes(wrapped_key))))
                else:
                    changes.append((recipient, Permission()))
                events.append(
                    PermissionChanged(owner=caller, recipient=recipient, granted=bool(wrapped_key), timestamp=now)
                )

            self.audit.append_many(events)
            self._store.put_record(Record(owner=caller, content_reference=content_reference))
            self._store.set_permissions(caller, changes)

        dropped = [e.recipient for e in events[1:] if not e.granted]
        if dropped:
            logger.warning("Record replaced by %s; revoked %d grant(s) without a new key", caller, len(dropped))
        logger.info("Record replaced by %s; re-keyed %d grant(s)", caller, len(events) - 1 - len(dropped))
        return events

    def grant_access(self, caller: str, recipient: str, wrapped_key: bytes) -> PermissionChanged:
        """Grant ``recipient`` access to the caller's record, storing its wrapped key."""
        return self.batch_grant_access(caller, [recipient], [wrapped_key])[0]

    def batch_grant_access(
        self,
        caller: str,
        recipients: Sequence[str],
        wrapped_keys: Sequence[bytes],
    ) -> list[PermissionChanged]:
        """
        Grant several recipients at once.

        The batch is atomic: every item is validated before any permission
        changes, so one bad item leaves the state untouched and emits no
        events. A successful batch emits one event per item.
        """
        self._require_identity(caller, "caller")
        if not recipients:
            raise EmptyInput("recipients must not be empty")
        if len(recipients) != len(wrapped_keys):
            raise EmptyInput(
                f"got {len(recipients)} recipients but {len(wrapped_keys)} wrapped keys"
            )
        if len(set(recipients)) != len(recipients):
            raise InvalidRecipient("a recipient appears more than once in the batch")
        for recipient, wrapped_key in zip(recipients, wrapped_keys):
            self._require_recipient(caller, recipient)
            if not wrapped_key:
                raise EmptyInput(f"wrapped key for {recipient} must not be empty")

        with self._owner_lock(caller):
            self._require_record(caller)
            now = self._clock()
            events = [
                PermissionChanged(owner=caller, recipient=recipient, granted=True, timestamp=now)
                for recipient in recipients
            ]
            self.audit.append_many(events)
            self._store.set_permissions(
                caller,
                [
                    (recipient, Permission(granted=True, wrapped_key=bytes(wrapped_key)))
                    for recipient, wrapped_key in zip(recipients, wrapped_keys)
                ],
            )

        logger.info("%s granted access to %d recipient(s)", caller, len(events))
        return events

    def revoke_access(self, caller: str, recipient: str) -> Optional[PermissionChanged]:
        """
        Revoke ``recipient``'s access and erase its wrapped key.

        Revoking a pair that is not granted is a silent no-op: nothing
        changes and no event is emitted.

        Returns:
            The emitted event, or None for a no-op
        """
        events = self.batch_revoke_access(caller, [recipient])
        return events[0] if events else None

    def batch_revoke_access(self, caller: str, recipients: Sequence[str]) -> list[PermissionChanged]:
        """Revoke several recipients; only pairs that were granted emit events."""
        self._require_identity(caller, "caller")
        if not recipients:
            raise EmptyInput("recipients must not be empty")
        for recipient in recipients:
            if not recipient:
                raise InvalidRecipient("recipient must not be empty")

        with self._owner_lock(caller):
            self._require_record(caller)
            # Duplicates in the batch only revoke (and log) once
            revoked = [
                recipient
                for recipient in dict.fromkeys(recipients)
                if self._store.get_permission(caller, recipient).granted
            ]
            if not revoked:
                return []

            now = self._clock()
            events = [
                PermissionChanged(owner=caller, recipient=recipient, granted=False, timestamp=now)
                for recipient in revoked
            ]
            self.audit.append_many(events)
            self._store.set_permissions(caller, [(recipient, Permission()) for recipient in revoked])

        logger.info("%s revoked access for %d recipient(s)", caller, len(events))
        return events

    # ------------------------------------------------------------------ #
    # Access
    # ------------------------------------------------------------------ #

    def attempt_access(self, accessor: str, owner: str) -> AccessDecision:
        """
        Decide whether ``accessor`` may read ``owner``'s record pointer.

        Always appends exactly one ``AccessAttempted`` event, whatever the
        outcome; the event records whether the accessor was authorized.
        Denial is returned, not raised.
        """
        self._require_identity(accessor, "accessor")
        self._require_identity(owner, "owner")

        authorized = self.check_access(owner, accessor)
        record = self._store.get_record(owner)
        exists = record is not None and record.exists

        decision = AccessDecision(
            accessor=accessor,
            owner=owner,
            authorized=authorized,
            record_exists=exists,
            content_reference=record.content_reference if (authorized and exists) else None,
        )
        self.audit.append(
            AccessAttempted(accessor=accessor, owner=owner, success=decision.success, timestamp=self._clock())
        )

        if not decision.success:
            logger.warning("Access by %s to %s's record denied", accessor, owner)
        return decision

    def get_record_reference(self, accessor: str, owner: str) -> str:
        """
        Return ``owner``'s content reference if ``accessor`` is authorized.

        Raises:
            AccessDenied: If the accessor has no permission (the attempt is logged)
            RecordNotFound: If the owner has no record (the attempt is logged)
        """
        decision = self.attempt_access(accessor, owner)
        if not decision.authorized:
            raise AccessDenied(f"{accessor} may not read {owner}'s record")
        if not decision.record_exists:
            raise RecordNotFound(f"{owner} has no record")
        return decision.content_reference

    def get_wrapped_key(self, accessor: str, owner: str) -> bytes:
        """
        Return the wrapped record key stored for ``accessor``.

        Pure lookup: unlike :meth:`get_record_reference` this is not logged.

        Raises:
            AccessDenied: If no grant exists for the pair
        """
        permission = self._store.get_permission(owner, accessor)
        if not permission.granted:
            raise AccessDenied(f"{accessor} holds no key for {owner}'s record")
        return permission.wrapped_key

    def check_access(self, owner: str, accessor: str) -> bool:
        """Pure predicate: the owner, or a granted recipient."""
        if not owner or not accessor:
            return False
        return accessor == owner or self._store.get_permission(owner, accessor).granted

    # ------------------------------------------------------------------ #
    # Views
    # ------------------------------------------------------------------ #

    def has_record(self, owner: str) -> bool:
        record = self._store.get_record(owner)
        return record is not None and record.exists

    def granted_recipients(self, owner: str) -> list[str]:
        """Recipients currently holding a grant on ``owner``'s record."""
        return self._store.granted_recipients(owner)
