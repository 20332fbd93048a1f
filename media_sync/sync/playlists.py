"""
Playlist sync for media-sync.

Mirrors the server's playlist list into the cache and, on demand, a
single playlist's ordered items. Playlists carry an origin tag (the
server kind that produced them); reconciliation only ever touches
playlists whose origin matches the source being synced, so playlists
created locally or by another server kind survive.

Read-only detection:
    File-backed playlists (.m3u/.m3u8 in the media library) cannot be
    edited through the API. The two server kinds expose this differently:

    - Jellyfin: the playlist path ends with a playlist file extension.
      When the server sends no path, a "FileSystem" location type counts
      as file-backed.
    - Emby: every playlist has a path, including editable ones stored in
      the server's config directory. A playlist is read-only only if its
      path lies in a media location AND ends with a playlist extension.
"""

import asyncio
from typing import Sequence

from media_sync.core.database import LibraryStore
from media_sync.core.exceptions import MediaSyncError
from media_sync.core.logger import get_logger
from media_sync.core.models import Playlist, ServerKind, Source
from media_sync.remote.client import RemoteCatalogClient
from media_sync.remote.models import PlaylistRecord, TrackRecord
from media_sync.sync.importer import EntityCounts
from media_sync.sync.incremental import IncrementalSync

logger = get_logger(__name__)


PLAYLIST_FILE_EXTENSIONS = (".m3u", ".m3u8")

# Emby keeps editable playlists here
_EMBY_CONFIG_LOCATIONS = ("/config/data/playlists/", "/config/playlists/", "data/playlists/")
_EMBY_MEDIA_LOCATIONS = ("/media/", "/mnt/", "/volume/", "/music/", "/audio/")


# =============================================================================
# Read-only heuristic
# =============================================================================

def is_read_only_playlist(
    kind: ServerKind,
    path: str | None,
    location_type: str | None = None
) -> bool:
    """
    Whether a playlist is backed by a playlist file and cannot be edited.

    Args:
        kind: Server kind the playlist comes from.
        path: Server-side path of the playlist, if sent.
        location_type: Jellyfin location type, if sent.
    """
    if kind == ServerKind.EMBY:
        return _is_emby_file_playlist(path)

    if path:
        return path.lower().endswith(PLAYLIST_FILE_EXTENSIONS)
    return location_type == "FileSystem"


def _is_emby_file_playlist(path: str | None) -> bool:
    if not path:
        return False

    lowered = path.lower()
    in_config = (
        any(location in lowered for location in _EMBY_CONFIG_LOCATIONS)
        or ("playlists/" in lowered and "/media/" not in lowered)
    )
    if in_config:
        return False

    has_extension = lowered.endswith(PLAYLIST_FILE_EXTENSIONS)
    in_media = (
        any(location in lowered for location in _EMBY_MEDIA_LOCATIONS)
        or ("/home/" in lowered and has_extension)
    )
    return in_media and has_extension


# =============================================================================
# Playlist Syncer
# =============================================================================

class PlaylistSyncer:
    """
    Reconciles cached playlists of one origin with the server.

    Attributes:
        store: Library cache.
        client: Remote catalog client for the source being synced.
    """

    def __init__(self, store: LibraryStore, client: RemoteCatalogClient) -> None:
        self.store = store
        self.client = client

    async def sync_playlists(self, source: Source) -> EntityCounts:
        """
        Mirror the server's playlist list.

        Upserts every remote playlist by remote id and deletes cached
        playlists of the same origin that the server no longer lists.

        Returns:
            EntityCounts of created, updated and deleted playlists.

        Raises:
            RemoteError: If the listing cannot be fetched (cache untouched).
        """
        records = await self.client.fetch_playlists()
        return await asyncio.to_thread(self._apply_playlists, source, records)

    async def sync_playlist_items(self, source: Source, playlist_remote_id: str) -> int:
        """
        Refresh one playlist's ordered items.

        The items' tracks (and whatever they reference) are cached first,
        then the playlist membership is replaced in server order.

        Returns:
            Number of items stored.

        Raises:
            MediaSyncError: If the playlist is not cached; run sync_playlists first.
            RemoteError: If the items cannot be fetched.
        """
        playlist = await asyncio.to_thread(self._find_playlist, source.id, playlist_remote_id)
        if playlist is None:
            raise MediaSyncError(
                "Playlist is not cached, sync playlists first",
                details={"playlist_id": playlist_remote_id}
            )

        records = await self.client.fetch_playlist_items(playlist_remote_id)
        await IncrementalSync(self.store, self.client).sync_missing_metadata(source, records)
        return await asyncio.to_thread(self._apply_items, source.id, playlist, records)

    # -------------------------------------------------------------------------
    # Worker-thread side
    # -------------------------------------------------------------------------

    def _find_playlist(self, source_id: int, remote_id: str) -> Playlist | None:
        for playlist in self.store.list_playlists(source_id):
            if playlist.remote_id == remote_id:
                return playlist
        return None

    def _apply_playlists(self, source: Source, records: Sequence[PlaylistRecord]) -> EntityCounts:
        origin = source.kind.value
        counts = EntityCounts()

        with self.store.unit_of_work() as uow:
            cached = {p.remote_id: p for p in uow.playlists(source.id, origin)}
            remote_ids = set()

            for record in records:
                remote_ids.add(record.id)
                playlist = cached.get(record.id)
                if playlist is None:
                    playlist = Playlist(
                        source_id=source.id,
                        remote_id=record.id,
                        name=record.name,
                        origin=origin,
                    )
                    counts.created += 1
                else:
                    counts.updated += 1

                playlist.name = record.name
                playlist.summary = record.summary
                playlist.owner_id = record.owner_user_id
                playlist.is_read_only = is_read_only_playlist(
                    source.kind, record.path, record.location_type
                )
                uow.save_playlist(playlist)
                cached[record.id] = playlist

            stale = [p.id for remote_id, p in cached.items() if remote_id not in remote_ids]
            counts.deleted = uow.delete_playlists(stale)

        logger.info(f"Synced {len(records)} playlists ({counts})")
        return counts

    def _apply_items(
        self,
        source_id: int,
        playlist: Playlist,
        records: Sequence[TrackRecord]
    ) -> int:
        with self.store.unit_of_work() as uow:
            tracks = uow.find_tracks(source_id, (r.id for r in records))
            items = [
                (tracks[r.id].id, r.playlist_item_id)
                for r in records
                if r.id in tracks
            ]
            stored = uow.replace_playlist_items(playlist.id, items)

        if stored < len(records):
            logger.warning(
                f"Playlist '{playlist.name}': {len(records) - stored} items "
                "could not be matched to cached tracks"
            )
        logger.debug(f"Playlist '{playlist.name}' now has {stored} items")
        return stored
