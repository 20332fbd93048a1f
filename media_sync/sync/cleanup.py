"""
Orphan cleanup for media-sync.

After the four upsert phases of a full sync, every cached artist, album
and track whose remote id is not in the fetched snapshot is deleted. The
snapshot is the sole authority for existence; placeholder artists that
no remote artist adopted are orphans as well.

Deleting a track may leave an offline copy of its audio on disk. Those
files are removed by a DownloadCleanupDispatcher AFTER the catalog
transaction commits: the dispatcher runs in the background, and a file
that cannot be removed is logged (see log_cleanup_failure) without ever
failing or delaying the sync.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, Protocol

from media_sync.core.database import UnitOfWork
from media_sync.core.logger import get_logger, log_cleanup_failure
from media_sync.remote.fetcher import LibrarySnapshot
from media_sync.sync.importer import LocalState

logger = get_logger(__name__)


@dataclass
class OrphanReport:
    """What remove_orphans deleted. removed_track_ids holds remote ids."""
    artists: int = 0
    albums: int = 0
    tracks: int = 0
    removed_track_ids: list[str] = field(default_factory=list)


def remove_orphans(uow: UnitOfWork, state: LocalState, snapshot: LibrarySnapshot) -> OrphanReport:
    """
    Delete cached entities absent from the snapshot.

    Must run after all upsert phases of the same sync: state holds the
    entities loaded before those phases, mutated in place by them (an
    adopted placeholder has its remote id filled in and is kept).

    Args:
        uow: The sync run's unit of work.
        state: Entities loaded before the upsert phases.
        snapshot: The remote snapshot just imported.

    Returns:
        OrphanReport with counts and the remote ids of removed tracks.
    """
    remote_artists = snapshot.artist_ids
    remote_albums = snapshot.album_ids
    remote_tracks = snapshot.track_ids

    orphan_tracks = [t for t in state.tracks if t.remote_id not in remote_tracks]
    orphan_albums = [a for a in state.albums if a.remote_id not in remote_albums]
    orphan_artists = [a for a in state.artists if a.remote_id not in remote_artists]

    report = OrphanReport(
        tracks=uow.delete_tracks(t.id for t in orphan_tracks),
        albums=uow.delete_albums(a.id for a in orphan_albums),
        artists=uow.delete_artists(a.id for a in orphan_artists),
        removed_track_ids=[t.remote_id for t in orphan_tracks],
    )

    if report.tracks or report.albums or report.artists:
        logger.info(
            f"Removed {report.artists} artists, {report.albums} albums and "
            f"{report.tracks} tracks no longer on the server"
        )
    return report


class DownloadManager(Protocol):
    """Anything that can delete the offline copy of a track by remote id."""

    def delete_download(self, track_id: str) -> bool: ...


class DownloadCleanupDispatcher:
    """
    Best-effort, fire-and-forget deletion of offline copies.

    dispatch() returns immediately; deletions run in a worker thread. Each
    track id is handed to the download manager exactly once per dispatch,
    and a failure for one id does not stop the others.

    Attributes:
        download_manager: Collaborator deleting files, or None to disable.
    """

    def __init__(self, download_manager: DownloadManager | None) -> None:
        self.download_manager = download_manager
        self._tasks: set[asyncio.Task] = set()

    def dispatch(self, track_ids: Iterable[str]) -> asyncio.Task | None:
        """Schedule cleanup for removed tracks. Must be called from the event loop."""
        ids = list(dict.fromkeys(track_ids))
        if not ids or self.download_manager is None:
            return None

        task = asyncio.create_task(asyncio.to_thread(self._cleanup, ids))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cleanup(self, track_ids: list[str]) -> None:
        removed = 0
        for track_id in track_ids:
            try:
                if self.download_manager.delete_download(track_id):
                    removed += 1
            except Exception as e:
                # A leftover file never fails a sync
                log_cleanup_failure(logger, track_id, getattr(e, "filename", None), str(e))
        if removed:
            logger.info(f"Deleted {removed} offline downloads of removed tracks")

    async def wait(self) -> None:
        """Wait for every dispatched cleanup to finish (used at shutdown and in tests)."""
        if self._tasks:
            await asyncio.wait(set(self._tasks))
