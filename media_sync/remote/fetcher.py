"""
Remote catalog fetcher for media-sync (full sync, fetch phase).

This module retrieves the complete remote snapshot (artists, albums,
tracks) that a full sync reconciles the local cache against.

Fetch Workflow:
    1. Start the artist, album and track requests as concurrent tasks
    2. Start the progress estimator beside the track request (the dominant cost)
    3. Join artists and albums, then tracks
    4. Tear the estimator down the moment the track request finishes
    5. Return an immutable LibrarySnapshot

Progress Estimation:
    The server gives no row or byte progress for a list request, so while
    the track request is outstanding an estimator ticks on a timer and
    reports a guess from elapsed wall-clock time:

        progress = min(0.28, 0.05 + elapsed / estimate * 0.23)

    The estimate is purely cosmetic; sync correctness never depends on it.

Failure:
    Any RemoteError aborts the whole fetch. Outstanding requests are
    cancelled and no partial snapshot is returned.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from media_sync.core.logger import get_logger
from media_sync.remote.client import RemoteCatalogClient
from media_sync.remote.models import AlbumRecord, ArtistRecord, TrackRecord

logger = get_logger(__name__)


ProgressCallback = Callable[[float, str], None]

STAGE_FETCH_METADATA = "Fetching artists and albums..."
STAGE_FETCH_TRACKS = "Fetching tracks from server..."

ESTIMATE_START = 0.05
ESTIMATE_SPAN = 0.23
ESTIMATE_CAP = 0.28


@dataclass(frozen=True)
class LibrarySnapshot:
    """
    A complete remote catalog as fetched for one full sync.

    The snapshot is the sole authority for existence: anything cached
    locally but absent here is an orphan.
    """
    artists: tuple[ArtistRecord, ...]
    albums: tuple[AlbumRecord, ...]
    tracks: tuple[TrackRecord, ...]

    @property
    def artist_ids(self) -> set[str]:
        return {a.id for a in self.artists}

    @property
    def album_ids(self) -> set[str]:
        return {a.id for a in self.albums}

    @property
    def track_ids(self) -> set[str]:
        return {t.id for t in self.tracks}


def estimate_track_progress(elapsed: float, estimate_seconds: float) -> float:
    """Progress guess while the track request is in flight, capped at 0.28."""
    return min(ESTIMATE_CAP, ESTIMATE_START + (elapsed / estimate_seconds) * ESTIMATE_SPAN)


class CatalogFetcher:
    """
    Fetches the full remote catalog through a RemoteCatalogClient.

    Attributes:
        estimate_seconds: Assumed track fetch duration driving the estimator.
        interval: Seconds between estimator ticks.
    """

    def __init__(
        self,
        client: RemoteCatalogClient,
        estimate_seconds: float = 60.0,
        interval: float = 0.3
    ) -> None:
        self._client = client
        self.estimate_seconds = estimate_seconds
        self.interval = interval

    async def fetch_full_library(
        self,
        on_progress: ProgressCallback | None = None
    ) -> LibrarySnapshot:
        """
        Fetch artists, albums and tracks.

        Args:
            on_progress: Optional (ratio, stage) callback for UI feedback.

        Returns:
            LibrarySnapshot with everything the server listed.

        Raises:
            RemoteError: If any of the three requests fails.
        """
        report = on_progress or (lambda ratio, stage: None)
        report(0.0, STAGE_FETCH_METADATA)

        artist_task = asyncio.create_task(self._client.fetch_artists())
        album_task = asyncio.create_task(self._client.fetch_albums())
        track_task = asyncio.create_task(self._client.fetch_tracks())
        requests = (artist_task, album_task, track_task)

        estimator = asyncio.create_task(self._estimate_progress(report))
        track_task.add_done_callback(lambda _: estimator.cancel())

        try:
            artists, albums = await asyncio.gather(artist_task, album_task)
            logger.info(f"Fetched {len(artists)} artists and {len(albums)} albums")

            tracks = await track_task
            logger.info(f"Fetched {len(tracks)} tracks")
        finally:
            estimator.cancel()
            for task in requests:
                if not task.done():
                    task.cancel()
            await asyncio.wait((estimator, *requests))
            for task in requests:
                # Retrieve sibling failures so they are not reported as unhandled
                if not task.cancelled():
                    task.exception()

        return LibrarySnapshot(
            artists=tuple(artists),
            albums=tuple(albums),
            tracks=tuple(tracks),
        )

    async def _estimate_progress(self, report: ProgressCallback) -> None:
        started = time.monotonic()
        while True:
            await asyncio.sleep(self.interval)
            elapsed = time.monotonic() - started
            report(estimate_track_progress(elapsed, self.estimate_seconds), STAGE_FETCH_TRACKS)


async def fetch_full_library(
    client: RemoteCatalogClient,
    on_progress: ProgressCallback | None = None,
    estimate_seconds: float = 60.0,
    interval: float = 0.3
) -> LibrarySnapshot:
    """
    Convenience function for the fetch phase of a full sync.

    Example:
        snapshot = await fetch_full_library(client, on_progress=print)
    """
    fetcher = CatalogFetcher(client, estimate_seconds=estimate_seconds, interval=interval)
    return await fetcher.fetch_full_library(on_progress)
