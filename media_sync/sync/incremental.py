"""
Incremental metadata sync for media-sync.

Read paths such as "recently played", "liked" or a playlist's items fetch
a small batch of tracks straight from the server. Before those tracks can
be cached, everything they reference must exist locally. This module
fills the gaps without running a full catalog fetch:

    - Missing albums are fetched from the server and upserted
    - Missing artists are NOT fetched: a placeholder (name only, no remote
      id) is created instead, and the next full sync adopts it by name
    - Missing genres are upserted through the genre classifier
    - The tracks themselves are then upserted

This path never deletes anything and never fills in a placeholder's
remote id itself.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Sequence

from media_sync.core.database import LibraryStore
from media_sync.core.logger import get_logger
from media_sync.core.models import Album, Artist, Source, Track
from media_sync.remote.client import RemoteCatalogClient
from media_sync.remote.models import AlbumRecord, TrackRecord
from media_sync.sync.genres import split_genres
from media_sync.sync.importer import (
    ArtistIndex,
    EntityCounts,
    GenreRegistry,
    apply_album_record,
    apply_track_record,
)

logger = get_logger(__name__)


@dataclass
class IncrementalResult:
    placeholder_artists: int = 0
    albums: EntityCounts = field(default_factory=EntityCounts)
    genres: EntityCounts = field(default_factory=EntityCounts)
    tracks: EntityCounts = field(default_factory=EntityCounts)


class IncrementalSync:
    """
    On-demand referential integrity for small track batches.

    Attributes:
        store: Library cache.
        client: Remote catalog client for the source being synced.
    """

    def __init__(self, store: LibraryStore, client: RemoteCatalogClient) -> None:
        self.store = store
        self.client = client

    async def sync_missing_metadata(
        self,
        source: Source,
        tracks: Sequence[TrackRecord]
    ) -> IncrementalResult:
        """
        Cache a batch of remote tracks together with what they reference.

        Args:
            source: Source the tracks belong to.
            tracks: Track records fetched by a read path.

        Returns:
            IncrementalResult with what was created or updated.

        Raises:
            RemoteError: If fetching missing albums fails (nothing is written).
            PersistenceError: If the cache write fails (nothing is written).
        """
        if not tracks:
            return IncrementalResult()

        album_ids = {t.album_id for t in tracks if t.album_id}
        cached_album_ids = await asyncio.to_thread(self._cached_album_ids, source.id)
        missing_album_ids = album_ids - cached_album_ids

        albums: list[AlbumRecord] = []
        if missing_album_ids:
            logger.debug(f"Fetching {len(missing_album_ids)} albums missing from the cache")
            remote_albums = await self.client.fetch_albums(None)
            albums = [a for a in remote_albums if a.id in missing_album_ids]
            if len(albums) < len(missing_album_ids):
                logger.warning(
                    f"{len(missing_album_ids) - len(albums)} referenced albums "
                    "were not found on the server"
                )

        return await asyncio.to_thread(self._apply, source, list(tracks), albums)

    async def sync_liked_tracks(self, source: Source) -> int:
        """
        Mirror the server's liked tracks into the cache.

        Fetches the liked list, caches those tracks (with their references)
        and sets every cached track's liked flag to membership in that list.

        Returns:
            Number of tracks whose liked flag differs from before the call,
            newly cached liked tracks included.
        """
        liked = await self.client.fetch_liked_tracks()
        liked_ids = {t.id for t in liked}

        liked_before = await asyncio.to_thread(self._liked_ids, source.id)
        await self.sync_missing_metadata(source, liked)
        await asyncio.to_thread(self._apply_liked, source.id, liked_ids)

        changed = len(liked_before ^ liked_ids)
        logger.info(f"{len(liked_ids)} liked tracks on server, {changed} flags changed locally")
        return changed

    # -------------------------------------------------------------------------
    # Worker-thread side
    # -------------------------------------------------------------------------

    def _cached_album_ids(self, source_id: int) -> set[str]:
        return {a.remote_id for a in self.store.list_albums(source_id)}

    def _liked_ids(self, source_id: int) -> set[str]:
        return {t.remote_id for t in self.store.list_tracks(source_id) if t.liked}

    def _apply_liked(self, source_id: int, liked_ids: set[str]) -> None:
        with self.store.unit_of_work() as uow:
            uow.set_liked(source_id, liked_ids)

    def _apply(
        self,
        source: Source,
        tracks: list[TrackRecord],
        albums: list[AlbumRecord]
    ) -> IncrementalResult:
        result = IncrementalResult()

        with self.store.unit_of_work() as uow:
            artists = ArtistIndex(uow.artists(source.id))

            names = dict.fromkeys(name for t in tracks for name in t.artists if name)
            for name in names:
                if name in artists:
                    continue
                placeholder = uow.save_artist(
                    Artist(source_id=source.id, remote_id=None, name=name, sort_name=name)
                )
                artists.add(placeholder)
                result.placeholder_artists += 1

            cached_albums = {a.remote_id: a for a in uow.albums(source.id)}
            for record in albums:
                album = cached_albums.get(record.id)
                if album is None:
                    album = Album(source_id=source.id, remote_id=record.id, title=record.name)
                    result.albums.created += 1
                else:
                    result.albums.updated += 1
                apply_album_record(album, record, artists)
                uow.save_album(album)
                cached_albums[record.id] = album

            genres = GenreRegistry(uow, source.id, uow.genres(source.id))
            for raw_name in dict.fromkeys(g for t in tracks for g in split_genres(t.genres)):
                if not genres.has(raw_name):
                    genres.upsert(raw_name)

            cached_tracks = uow.find_tracks(source.id, (t.id for t in tracks))
            for record in tracks:
                track = cached_tracks.get(record.id)
                if track is None:
                    track = Track(source_id=source.id, remote_id=record.id, title=record.name)
                    result.tracks.created += 1
                else:
                    result.tracks.updated += 1

                album = cached_albums.get(record.album_id) if record.album_id else None
                apply_track_record(track, record, album, artists, genres)
                uow.save_track(track)
                cached_tracks[record.id] = track

            result.genres = genres.counts

        if result.placeholder_artists:
            logger.info(f"Created {result.placeholder_artists} placeholder artists")
        logger.debug(
            f"Incremental sync: albums {result.albums}, genres {result.genres}, "
            f"tracks {result.tracks}"
        )
        return result
