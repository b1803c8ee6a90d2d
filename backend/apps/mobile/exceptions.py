"""Mobile cache exceptions."""


class CacheError(Exception):
    """Base exception for mobile cache errors."""

    pass


class CacheEntryNotFoundError(CacheError):
    """Raised when refreshing a cache entry that does not exist."""

    pass


class CacheValidationError(CacheError):
    """Raised when a cache write is malformed; nothing has been persisted."""

    pass
