"""
Sync coordinator for media-sync.

Entry point for every sync operation on a Source. A full sync runs:

    Fetch -> Artists -> Albums -> Genres -> Tracks -> Cleanup -> Playlists

The four upsert phases and orphan cleanup share one unit of work and
commit together. The playlist phase commits separately afterwards, so a
playlist failure never invalidates the catalog already stored.

Single-flight:
    Each Source is either idle or syncing. A second perform_full_sync()
    for a Source that is already syncing fails at once with
    AlreadySyncingError; it is never queued. The syncing flag is cleared
    on every exit path (success, failure, cancellation), so a crashed run
    never blocks the next one. Different Sources sync independently.

Cancellation:
    cancel_sync() is cooperative. The running sync checks for it after
    the fetch, after the import, and before the playlist phase, then
    raises SyncCancelledError. A phase already running finishes first,
    and phases that already committed stay committed.

Usage:
    coordinator = SyncCoordinator(store, lambda source: client, downloads)
    report = await coordinator.perform_full_sync(source, on_progress=bar.update)
"""

import asyncio
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from media_sync.core.config import SyncConfig
from media_sync.core.database import LibraryStore
from media_sync.core.exceptions import AlreadySyncingError, SyncCancelledError
from media_sync.core.logger import get_logger
from media_sync.core.models import Source
from media_sync.remote.client import RemoteCatalogClient
from media_sync.remote.fetcher import CatalogFetcher, LibrarySnapshot, ProgressCallback
from media_sync.remote.models import TrackRecord
from media_sync.sync.cleanup import (
    DownloadCleanupDispatcher,
    DownloadManager,
    OrphanReport,
    remove_orphans,
)
from media_sync.sync.importer import EntityCounts, ImportResult, SnapshotImporter
from media_sync.sync.incremental import IncrementalResult, IncrementalSync
from media_sync.sync.playlists import PlaylistSyncer

logger = get_logger(__name__)


ClientFactory = Callable[[Source], RemoteCatalogClient]

STAGE_PROCESSING_ARTISTS = "Processing artists..."
STAGE_CLEANUP = "Removing deleted items..."
STAGE_PROCESSING_LIBRARY = "Processing library..."
STAGE_PLAYLISTS = "Syncing playlists..."
STAGE_COMPLETE = "Complete"


class CancellationToken:
    """Cooperative cancellation flag for one sync run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, source: Source, stage: str) -> None:
        if self._event.is_set():
            raise SyncCancelledError(
                "Sync cancelled",
                details={"source": source.name, "stage": stage}
            )


@dataclass
class SyncReport:
    """Outcome of a successful full sync."""
    source_name: str
    artists: EntityCounts = field(default_factory=EntityCounts)
    albums: EntityCounts = field(default_factory=EntityCounts)
    genres: EntityCounts = field(default_factory=EntityCounts)
    tracks: EntityCounts = field(default_factory=EntityCounts)
    playlists: EntityCounts = field(default_factory=EntityCounts)
    removed_track_ids: list[str] = field(default_factory=list)
    duration: float = 0.0

    @classmethod
    def from_results(
        cls,
        source: Source,
        imported: ImportResult,
        orphans: OrphanReport
    ) -> "SyncReport":
        imported.artists.deleted = orphans.artists
        imported.albums.deleted = orphans.albums
        imported.tracks.deleted = orphans.tracks
        return cls(
            source_name=source.name,
            artists=imported.artists,
            albums=imported.albums,
            genres=imported.genres,
            tracks=imported.tracks,
            removed_track_ids=list(orphans.removed_track_ids),
        )


class SyncCoordinator:
    """
    Runs and guards sync operations for any number of Sources.

    All public coroutines must be awaited on the same event loop.

    Attributes:
        store: Library cache.
        client_factory: Returns the remote client for a Source.
        sync_config: Estimator settings for the fetch phase.
    """

    def __init__(
        self,
        store: LibraryStore,
        client_factory: ClientFactory,
        download_manager: DownloadManager | None = None,
        sync_config: SyncConfig | None = None
    ) -> None:
        self.store = store
        self.client_factory = client_factory
        self.sync_config = sync_config or SyncConfig()
        self._cleanup = DownloadCleanupDispatcher(download_manager)

        self._syncing: set[int] = set()
        self._tasks: dict[int, asyncio.Task] = {}
        self._tokens: dict[int, CancellationToken] = {}
        self._last_stage: dict[int, str] = {}

    # =========================================================================
    # Full sync
    # =========================================================================

    async def perform_full_sync(
        self,
        source: Source,
        on_progress: ProgressCallback | None = None
    ) -> SyncReport:
        """
        Reconcile the cache for source against a fresh remote snapshot.

        Args:
            source: Source to sync.
            on_progress: Optional (ratio 0.0-1.0, stage label) callback.

        Returns:
            SyncReport with per-entity counts.

        Raises:
            AlreadySyncingError: If a full sync for source is in flight.
            SyncCancelledError: If cancel_sync() was observed at a phase boundary.
            RemoteError: If fetching fails (nothing written).
            PersistenceError: If the import fails (nothing written).
        """
        if source.id in self._syncing:
            raise AlreadySyncingError(
                f"A sync for '{source.name}' is already running",
                details={"source": source.name}
            )
        self._syncing.add(source.id)

        try:
            stale = self._tasks.pop(source.id, None)
            if stale is not None and not stale.done():
                logger.debug(f"Cancelling stale sync task for '{source.name}'")
                stale.cancel()

            token = CancellationToken()
            self._tokens[source.id] = token

            task = asyncio.create_task(self._run_full_sync(source, token, on_progress))
            self._tasks[source.id] = task
            return await task
        finally:
            self._syncing.discard(source.id)
            self._tokens.pop(source.id, None)
            self._tasks.pop(source.id, None)

    def cancel_sync(self, source: Source) -> None:
        """Request cancellation of source's running sync. No-op when idle."""
        token = self._tokens.get(source.id)
        if token is not None and not token.is_cancelled:
            logger.info(f"Cancellation requested for '{source.name}'")
            token.cancel()

    def is_syncing(self, source: Source) -> bool:
        return source.id in self._syncing

    def last_stage(self, source: Source) -> str | None:
        """Last progress stage reported for source, kept after failures."""
        return self._last_stage.get(source.id)

    async def wait_for_cleanup(self) -> None:
        """Wait for dispatched offline-file cleanups to finish."""
        await self._cleanup.wait()

    async def _run_full_sync(
        self,
        source: Source,
        token: CancellationToken,
        on_progress: ProgressCallback | None
    ) -> SyncReport:
        started = time.monotonic()
        report = self._progress_reporter(source, on_progress)
        client = self.client_factory(source)

        logger.info(f"Starting full sync of '{source.name}'")

        try:
            fetcher = CatalogFetcher(
                client,
                estimate_seconds=self.sync_config.track_fetch_estimate,
                interval=self.sync_config.progress_interval,
            )
            snapshot = await fetcher.fetch_full_library(report)
            token.raise_if_cancelled(source, "fetch")

            report(0.30, STAGE_PROCESSING_ARTISTS)
            loop = asyncio.get_running_loop()

            def report_from_thread(ratio: float, stage: str) -> None:
                loop.call_soon_threadsafe(report, ratio, stage)

            imported, orphans = await asyncio.to_thread(
                self._import_snapshot, source, snapshot, report_from_thread
            )
            self._cleanup.dispatch(orphans.removed_track_ids)
            sync_report = SyncReport.from_results(source, imported, orphans)
            token.raise_if_cancelled(source, "import")

            report(0.98, STAGE_PROCESSING_LIBRARY)
            token.raise_if_cancelled(source, "playlists")
            report(0.99, STAGE_PLAYLISTS)
            sync_report.playlists = await PlaylistSyncer(self.store, client).sync_playlists(source)

            report(1.0, STAGE_COMPLETE)
        except SyncCancelledError as e:
            logger.warning(f"Sync of '{source.name}' cancelled after {e.details['stage']}")
            raise
        except Exception as e:
            logger.error(
                f"Sync of '{source.name}' failed during "
                f"'{self._last_stage.get(source.id)}': {e}"
            )
            raise

        sync_report.duration = time.monotonic() - started
        logger.info(f"Full sync of '{source.name}' finished in {sync_report.duration:.1f}s")
        return sync_report

    def _import_snapshot(
        self,
        source: Source,
        snapshot: LibrarySnapshot,
        report: ProgressCallback
    ) -> tuple[ImportResult, OrphanReport]:
        """Upsert phases plus orphan cleanup in one transaction (worker thread)."""
        with self.store.unit_of_work() as uow:
            importer = SnapshotImporter(uow, source.id, report)
            state = importer.load_state()
            imported = importer.import_snapshot(snapshot, state)

            report(0.96, STAGE_CLEANUP)
            orphans = remove_orphans(uow, state, snapshot)
            uow.mark_full_sync(source.id)

        return imported, orphans

    def _progress_reporter(
        self,
        source: Source,
        on_progress: ProgressCallback | None
    ) -> ProgressCallback:
        def report(ratio: float, stage: str) -> None:
            self._last_stage[source.id] = stage
            if on_progress is not None:
                on_progress(ratio, stage)
        return report

    # =========================================================================
    # Standalone operations
    # =========================================================================

    async def sync_playlists(self, source: Source) -> EntityCounts:
        """Reconcile playlists only (also the tail of a full sync)."""
        return await PlaylistSyncer(self.store, self.client_factory(source)).sync_playlists(source)

    async def sync_playlist_items(self, source: Source, playlist_remote_id: str) -> int:
        syncer = PlaylistSyncer(self.store, self.client_factory(source))
        return await syncer.sync_playlist_items(source, playlist_remote_id)

    async def sync_missing_metadata(
        self,
        source: Source,
        tracks: Sequence[TrackRecord]
    ) -> IncrementalResult:
        """Cache a track batch from a read path, with everything it references."""
        incremental = IncrementalSync(self.store, self.client_factory(source))
        return await incremental.sync_missing_metadata(source, tracks)

    async def sync_liked_tracks(self, source: Source) -> int:
        incremental = IncrementalSync(self.store, self.client_factory(source))
        return await incremental.sync_liked_tracks(source)
