"""
Errors raised by the authorization registry and the public-key directory.

Every precondition violation fails fast with one of these; nothing is
retried inside the registry.
"""


class RegistryError(Exception):
    """Base class for registry failures."""

    code = "REGISTRY_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__


# Input errors

class EmptyInput(RegistryError):
    """A required argument was empty."""
    code = "EMPTY_INPUT"


class InvalidRecipient(RegistryError):
    """The recipient identity is empty or refers to the owner."""
    code = "INVALID_RECIPIENT"


# Authorization errors

class NotOwner(RegistryError):
    """The caller does not own the record it is trying to change."""
    code = "NOT_OWNER"


class RecordNotFound(RegistryError):
    """The patient has no record."""
    code = "RECORD_NOT_FOUND"


class AccessDenied(RegistryError):
    """The accessor has no permission on the patient's record."""
    code = "ACCESS_DENIED"


# Public-key directory errors

class UnknownIdentity(RegistryError):
    """No public key is registered for the identity."""
    code = "UNKNOWN_IDENTITY"


class KeyAlreadyRegistered(RegistryError):
    """The identity is already bound to a different public key."""
    code = "KEY_ALREADY_REGISTERED"


class InvalidProof(RegistryError):
    """The proof-of-possession signature does not verify."""
    code = "INVALID_PROOF"


# Audit trail errors

class AuditIntegrityError(RegistryError):
    """The audit hash chain does not verify."""
    code = "AUDIT_INTEGRITY"
