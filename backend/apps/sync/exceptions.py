"""Sync-specific exceptions."""


class SyncError(Exception):
    """Base exception for sync errors."""

    pass


class ValidationError(SyncError):
    """Raised when a request is malformed; nothing has been persisted."""

    pass


class InvalidStateError(SyncError):
    """Raised when an operation is attempted from a disallowed state."""

    pass


class RetryExhaustedError(SyncError):
    """Raised when a retry is requested past max_retries."""

    pass


class ConcurrentSyncError(SyncError):
    """Raised when a device already has a session in progress."""

    pass


class UnsupportedMergeError(SyncError):
    """Raised when MERGE is requested for an entity type with no merge function."""

    pass


class ConflictUnresolvedError(SyncError):
    """Raised when an item is finalized while its conflict is not RESOLVED."""

    pass


class UnknownEntityTypeError(SyncError):
    """Raised when entity type is not registered."""

    pass


class ApplyUnavailableError(SyncError):
    """
    Raised when authoritative state cannot be reached.

    Apply functions raise this for transport-level failures. Unlike a
    per-item apply error, it aborts the whole session.
    """

    pass
