"""Exception hierarchy for the journal sync application."""


class JournalError(Exception):
    """Base exception for all journal errors."""


class RemoteStoreError(JournalError):
    """A remote object-store call failed (network, timeout, auth, server error).

    These are transient: the affected entry stays ``error`` or the tombstone
    stays pending, and the next sync pass tries again.
    """


class ObjectNotFoundError(RemoteStoreError):
    """The requested remote object does not exist."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Remote object not found: {key}")


class MalformedEntryError(JournalError, ValueError):
    """An entry document could not be parsed."""


class LocalStorageError(JournalError):
    """Local persistence failed. Never retried, always surfaced to the caller."""


class SyncInProgressError(JournalError):
    """A sync pass is already running for this owner."""

    def __init__(self, owner: str):
        self.owner = owner
        super().__init__(f"A sync is already running for {owner}")


class AuthenticationError(JournalError):
    """Credentials or session token were rejected."""
