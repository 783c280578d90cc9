"""Custom exceptions for contactsync."""

from enum import Enum


class ErrorKind(str, Enum):
    """Error categories surfaced to callers as flags, counters or results."""

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    ALREADY_IN_PROGRESS = "already_in_progress"
    EXTERNAL_UNAVAILABLE = "external_unavailable"
    PERSISTENCE_FAILURE = "persistence_failure"


class ContactSyncError(Exception):
    """Base exception for all contactsync errors."""

    kind: ErrorKind | None = None


class ConfigurationError(ContactSyncError):
    """Configuration or environment variable error."""


class ContactNotFoundError(ContactSyncError):
    """A mutation or merge referenced an id absent from the store."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, contact_id: str):
        self.contact_id = contact_id
        super().__init__(f"Contact not found: {contact_id}")


class PermissionDeniedError(ContactSyncError):
    """An external source reports missing authorization."""

    kind = ErrorKind.PERMISSION_DENIED

    def __init__(self, source: str):
        self.source = source
        super().__init__(f"Access to '{source}' contacts not granted")


class SyncInProgressError(ContactSyncError):
    """A bulk pass was requested while another one runs against the same source."""

    kind = ErrorKind.ALREADY_IN_PROGRESS

    def __init__(self, source: str):
        self.source = source
        super().__init__(f"Sync already in progress for '{source}'")


class ExternalUnavailableError(ContactSyncError):
    """Transient failure talking to an external source."""

    kind = ErrorKind.EXTERNAL_UNAVAILABLE


class GoogleAPIError(ExternalUnavailableError):
    """Error from Google People API."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class GoogleAuthError(GoogleAPIError):
    """Google OAuth authentication error."""


class RateLimitError(GoogleAPIError):
    """Rate limit exceeded error."""

    def __init__(self, retry_after: int | None = None):
        self.retry_after = retry_after
        message = f"Rate limited (retry after {retry_after}s)" if retry_after else "Rate limited"
        super().__init__(message, status_code=429)


class PersistenceError(ContactSyncError):
    """Durable storage read or write failed."""

    kind = ErrorKind.PERSISTENCE_FAILURE

    def __init__(self, key: str, original_error: Exception):
        self.key = key
        self.original_error = original_error
        super().__init__(f"Storage failure for '{key}': {original_error}")


class SyncError(ContactSyncError):
    """Error syncing a specific contact."""

    kind = ErrorKind.EXTERNAL_UNAVAILABLE

    def __init__(self, contact_id: str, name: str, original_error: Exception):
        self.contact_id = contact_id
        self.name = name
        self.original_error = original_error
        super().__init__(f"Failed to sync '{name}' ({contact_id}): {original_error}")
