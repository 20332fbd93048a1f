"""
Core module for media-sync.

This module provides the foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - models: Cached library entities
    - database: Thread-safe SQLite library cache with per-run units of work
    - logger: Logging system with multiple outputs

Usage:
    from media_sync.core import (
        Config, load_config,
        LibraryStore,
        setup_logging, get_logger,
        MediaSyncError, ConfigError, PersistenceError
    )
"""

from media_sync.core.config import (
    Config,
    ServerConfig,
    StorageConfig,
    SyncConfig,
    load_config,
)
from media_sync.core.database import LibraryStore, UnitOfWork
from media_sync.core.exceptions import (
    AlreadySyncingError,
    ConfigError,
    MediaSyncError,
    PersistenceError,
    RemoteError,
    SourceNotFoundError,
    SyncCancelledError,
)
from media_sync.core.logger import (
    get_logger,
    log_cleanup_failure,
    setup_logging,
    shutdown_logging,
)
from media_sync.core.models import (
    Album,
    Artist,
    Genre,
    Playlist,
    ServerKind,
    Source,
    Track,
)

__all__ = [
    # Config
    "Config",
    "ServerConfig",
    "StorageConfig",
    "SyncConfig",
    "load_config",
    # Database
    "LibraryStore",
    "UnitOfWork",
    # Exceptions
    "MediaSyncError",
    "ConfigError",
    "RemoteError",
    "PersistenceError",
    "AlreadySyncingError",
    "SyncCancelledError",
    "SourceNotFoundError",
    # Logger
    "setup_logging",
    "get_logger",
    "log_cleanup_failure",
    "shutdown_logging",
    # Models
    "ServerKind",
    "Source",
    "Artist",
    "Album",
    "Genre",
    "Track",
    "Playlist",
]
