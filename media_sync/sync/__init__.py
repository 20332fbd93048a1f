"""
Sync module for media-sync.

Components:
    - genres: Genre splitting, normalization and umbrella classification
    - importer: Snapshot upserts (artists, albums, genres, tracks)
    - cleanup: Orphan removal and offline-file cleanup dispatch
    - playlists: Playlist reconciliation and playlist items
    - incremental: Missing-reference fill-in and liked-status sync
    - coordinator: Single-flight, cancellable full sync

Usage:
    from media_sync.sync import SyncCoordinator

    coordinator = SyncCoordinator(store, lambda source: client, download_manager)
    report = await coordinator.perform_full_sync(source, on_progress=bar.update)
"""

from media_sync.sync.cleanup import DownloadCleanupDispatcher, OrphanReport, remove_orphans
from media_sync.sync.coordinator import CancellationToken, SyncCoordinator, SyncReport
from media_sync.sync.genres import (
    GenreClassification,
    classify_genres,
    normalize_genre,
    resolve_umbrella,
    split_genres,
)
from media_sync.sync.importer import EntityCounts, ImportResult, SnapshotImporter
from media_sync.sync.incremental import IncrementalResult, IncrementalSync
from media_sync.sync.playlists import PlaylistSyncer, is_read_only_playlist

__all__ = [
    "SyncCoordinator",
    "SyncReport",
    "CancellationToken",
    "SnapshotImporter",
    "ImportResult",
    "EntityCounts",
    "remove_orphans",
    "OrphanReport",
    "DownloadCleanupDispatcher",
    "PlaylistSyncer",
    "is_read_only_playlist",
    "IncrementalSync",
    "IncrementalResult",
    "split_genres",
    "normalize_genre",
    "resolve_umbrella",
    "classify_genres",
    "GenreClassification",
]
