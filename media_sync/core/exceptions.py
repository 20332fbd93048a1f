"""
Exception classes for media-sync.

This module defines all custom exceptions used throughout the application.
Each exception carries a human-readable message and an optional details
dictionary, so callers can log context without parsing strings.

Exception Hierarchy:
    MediaSyncError (base)
        ConfigError - Configuration file issues
        RemoteError - Media server transport/API issues
        PersistenceError - Local SQLite cache issues
        AlreadySyncingError - A sync is already running for the source
        SyncCancelledError - A sync observed a cancellation request
        SourceNotFoundError - Unknown source id or name
"""


class MediaSyncError(Exception):
    """
    Base exception for all media-sync errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch every media-sync error with a single
    except clause if desired.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (source id, URL, ...).

    Example:
        try:
            await coordinator.perform_full_sync(source)
        except MediaSyncError as e:
            logger.error(f"Sync failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Common keys include:
                     - 'source_id': Source the operation was running for
                     - 'url': URL that caused the error
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(MediaSyncError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml not found
        - config.yaml has invalid YAML syntax
        - Required fields missing (servers, storage.directory)
        - Invalid field values (unknown server kind, two active servers)
    """
    pass


class RemoteError(MediaSyncError):
    """
    Raised when a request to the media server fails.

    A RemoteError during the fetch phase aborts the whole sync before
    any local write happens; no partial snapshot is ever imported.

    Common causes:
        - Network connectivity issues or request timeout
        - Invalid or expired access token (is_auth_error)
        - Unexpected HTTP status or malformed JSON payload

    Attributes:
        is_auth_error: True if the server rejected the credentials (401/403).
        status_code: HTTP status code, when the server answered at all.

    Example:
        raise RemoteError(
            "Failed to fetch albums: HTTP 500",
            details={'url': url},
            status_code=500
        )
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        is_auth_error: bool = False,
        status_code: int | None = None
    ) -> None:
        super().__init__(message, details)
        self.is_auth_error = is_auth_error
        self.status_code = status_code


class PersistenceError(MediaSyncError):
    """
    Raised when the local library cache cannot be read or written.

    When raised inside a unit of work the whole run is rolled back,
    so a failed import never leaves partial writes behind.

    Common causes:
        - Database file locked by another writer for too long
        - Disk full or permission denied
        - Schema version mismatch
    """
    pass


class AlreadySyncingError(MediaSyncError):
    """
    Raised when a full sync is requested for a source that is already syncing.

    Requests are never queued or coalesced: the caller is told immediately
    and the in-flight run is left untouched.
    """
    pass


class SyncCancelledError(MediaSyncError):
    """
    Raised when a sync observes a cancellation request at a phase boundary.

    Phases that already committed stay committed; the coordinator clears
    its single-flight guard before this error reaches the caller.
    """
    pass


class SourceNotFoundError(MediaSyncError):
    """Raised when a source id or name is not known to the local store."""
    pass
