"""
media-sync: keep a local music library cache in step with media servers.

This package mirrors the catalog of a Jellyfin or Emby server (artists,
albums, genres, tracks, playlists) into a local SQLite cache that a
client UI reads from, and keeps it reconciled over time.

Architecture:
    A full sync runs these phases for one Source, strictly in order:

    FETCH (remote/): Retrieve the remote snapshot
        - Artists, albums and tracks requested concurrently
        - Progress estimated from elapsed time while tracks load

    IMPORT (sync/importer.py): Upsert into the cache
        - Artists, then albums (linked to artists by name), then
          genres (normalized, mapped to umbrella categories), then tracks

    CLEANUP (sync/cleanup.py): Remove orphans
        - Anything cached but absent from the snapshot is deleted
        - Offline audio copies of removed tracks are deleted in the background

    PLAYLISTS (sync/playlists.py): Reconcile playlists
        - Committed separately from the catalog

    Read paths that fetch a few tracks directly (liked tracks, playlist
    items) use incremental sync (sync/incremental.py) instead, which
    fills in missing references without deleting anything.

Modules:
    core/       - Configuration, cache database, logging, exceptions, progress bar
    remote/     - Media server client and snapshot fetcher
    sync/       - Genre classifier, importer, cleanup, playlists, coordinator
    downloads.py - Offline audio copies
    cli.py      - Command-line interface

Usage:
    Command Line:
        media-sync sync
        media-sync sync --server home --playlists-only
        media-sync liked

    Python API:
        from media_sync import LibraryStore, SyncCoordinator, load_config, setup_logging
        from media_sync.remote import MediaServerClient

        config = load_config()
        setup_logging(config.storage.directory)
        store = LibraryStore(config.storage.database_path)
        source, *_ = store.ensure_sources(config.servers)

        async with MediaServerClient(config.active_server, config.sync) as client:
            coordinator = SyncCoordinator(store, lambda _source: client)
            report = await coordinator.perform_full_sync(source)

Configuration:
    Requires a config.yaml file in the current directory:

        servers:
          - name: home
            kind: jellyfin
            url: "https://music.example.org"
            user_id: "..."
            access_token: "..."

        storage:
          directory: "~/.media-sync"

Dependencies:
    - aiohttp: Media server HTTP client
    - pyyaml: Configuration file parsing
    - rich / rich-click: Progress bar and CLI colors
    - tqdm: Log output that does not break progress bars
"""

__version__ = "0.1.0"
__author__ = "media-sync"
__license__ = "MIT"

# Convenience imports for common usage
from media_sync.core import (
    AlreadySyncingError,
    Config,
    ConfigError,
    LibraryStore,
    MediaSyncError,
    PersistenceError,
    RemoteError,
    SyncCancelledError,
    get_logger,
    load_config,
    setup_logging,
)
from media_sync.sync import SyncCoordinator, SyncReport

__all__ = [
    # Version
    "__version__",
    # Core
    "Config",
    "load_config",
    "LibraryStore",
    "setup_logging",
    "get_logger",
    # Exceptions
    "MediaSyncError",
    "ConfigError",
    "RemoteError",
    "PersistenceError",
    "AlreadySyncingError",
    "SyncCancelledError",
    # Sync
    "SyncCoordinator",
    "SyncReport",
]
