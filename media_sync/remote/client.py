"""
Media server API client for media-sync.

The sync engine depends only on the RemoteCatalogClient protocol: a small
set of async fetch operations returning the record types from
media_sync.remote.models. MediaServerClient is the aiohttp implementation
used by the CLI; tests substitute an in-memory fake.

Transport:
    Jellyfin and Emby share the same REST dialect. Every request carries
    an "Authorization: MediaBrowser Token=..." header. List endpoints are
    paginated with StartIndex/Limit and return {"Items": [...],
    "TotalRecordCount": n}.

Usage:
    async with MediaServerClient(server_config, sync_config) as client:
        artists = await client.fetch_artists()

Error Handling:
    Every transport failure, timeout, non-2xx status or malformed payload
    is raised as RemoteError. 401/403 set is_auth_error.
"""

import asyncio
from typing import Any, Protocol

import aiohttp

from media_sync import __version__
from media_sync.core.config import ServerConfig, SyncConfig
from media_sync.core.exceptions import RemoteError
from media_sync.core.logger import get_logger
from media_sync.core.models import ServerKind
from media_sync.remote.models import (
    AlbumRecord,
    ArtistRecord,
    PlaylistRecord,
    TrackRecord,
)

logger = get_logger(__name__)


CLIENT_NAME = "media-sync"
DEVICE_NAME = "cli"

_TRACK_FIELDS = (
    "Name,RunTimeTicks,AlbumId,Album,Artists,Genres,IndexNumber,"
    "ParentIndexNumber,ImageTags,UserData,DateCreated,PlayCount,Container"
)
_PLAYLIST_FIELDS = "Overview,IsFolder,Path,LocationType,DateCreated,DateModified"


class RemoteCatalogClient(Protocol):
    """
    Data contract between the sync engine and a media server.

    Each method may raise RemoteError, which aborts the calling phase.
    """

    @property
    def server_kind(self) -> ServerKind: ...

    async def fetch_artists(self) -> list[ArtistRecord]: ...

    async def fetch_albums(self, artist_id: str | None = None) -> list[AlbumRecord]: ...

    async def fetch_tracks(self, album_id: str | None = None) -> list[TrackRecord]: ...

    async def fetch_playlists(self) -> list[PlaylistRecord]: ...

    async def fetch_playlist_items(self, playlist_id: str) -> list[TrackRecord]: ...

    async def fetch_liked_tracks(self) -> list[TrackRecord]: ...


class MediaServerClient:
    """
    aiohttp implementation of RemoteCatalogClient.

    Owns one aiohttp.ClientSession for its lifetime; use it as an async
    context manager, or call open()/close() explicitly.

    Attributes:
        server: Connection settings (URL, token, user id).
        page_size: Items requested per page.
    """

    def __init__(self, server: ServerConfig, sync: SyncConfig) -> None:
        self.server = server
        self.page_size = sync.page_size
        self._timeout = aiohttp.ClientTimeout(total=sync.request_timeout)
        self._session: aiohttp.ClientSession | None = None

    @property
    def server_kind(self) -> ServerKind:
        return self.server.kind

    async def __aenter__(self) -> "MediaServerClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def open(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers=self._build_headers(),
                timeout=self._timeout,
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _build_headers(self) -> dict[str, str]:
        auth = (
            f'MediaBrowser Client="{CLIENT_NAME}", Device="{DEVICE_NAME}", '
            f'DeviceId="{CLIENT_NAME}-{self.server.name}", Version="{__version__}"'
        )
        headers = {
            "Accept": "application/json",
            "X-Emby-Authorization": auth,
        }
        if self.server.access_token:
            headers["Authorization"] = f'MediaBrowser Token="{self.server.access_token}"'
        return headers

    # =========================================================================
    # Transport
    # =========================================================================

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET a JSON document.

        Raises:
            RemoteError: On connection failure, timeout, HTTP error status
                         or a body that is not JSON.
        """
        if self._session is None:
            raise RemoteError(
                "MediaServerClient is not open. Use 'async with MediaServerClient(...)'.",
                details={"server": self.server.name}
            )

        query = {k: v for k, v in (params or {}).items() if v is not None}
        url = f"{self.server.url}/{path}"
        logger.debug(f"GET {url} {query}")

        try:
            async with self._session.get(url, params=query) as response:
                if response.status in (401, 403):
                    raise RemoteError(
                        f"Server rejected credentials (HTTP {response.status})",
                        details={"url": url},
                        is_auth_error=True,
                        status_code=response.status
                    )
                if response.status >= 400:
                    raise RemoteError(
                        f"Request failed: HTTP {response.status}",
                        details={"url": url},
                        status_code=response.status
                    )
                return await response.json(content_type=None)
        except RemoteError:
            raise
        except asyncio.TimeoutError as e:
            raise RemoteError(
                f"Request timed out: {url}",
                details={"url": url, "original_error": str(e)}
            ) from e
        except (aiohttp.ClientError, ValueError) as e:
            raise RemoteError(
                f"Request failed: {e}",
                details={"url": url, "original_error": str(e)}
            ) from e

    async def _get_all_items(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """Follow StartIndex/Limit pagination until every item is collected."""
        items: list[dict[str, Any]] = []
        start_index = 0

        while True:
            page = await self._get(path, {**params, "StartIndex": start_index, "Limit": self.page_size})
            if not isinstance(page, dict):
                raise RemoteError(
                    "Unexpected response shape: expected an object with 'Items'",
                    details={"path": path}
                )

            page_items = page.get("Items") or []
            items.extend(page_items)
            start_index += len(page_items)

            total = page.get("TotalRecordCount")
            if len(page_items) < self.page_size:
                break
            if isinstance(total, int) and start_index >= total:
                break

        return items

    def _parse(self, factory, items: list[dict[str, Any]], kind: str) -> list:
        try:
            return [factory(item) for item in items]
        except (KeyError, TypeError) as e:
            raise RemoteError(
                f"Malformed {kind} record from server: {e}",
                details={"server": self.server.name, "original_error": str(e)}
            ) from e

    # =========================================================================
    # Catalog
    # =========================================================================

    async def fetch_artists(self) -> list[ArtistRecord]:
        items = await self._get_all_items("Artists/AlbumArtists", {
            "userId": self.server.user_id,
            "Fields": "SortName",
            "SortBy": "SortName",
        })
        return self._parse(ArtistRecord.from_api, items, "artist")

    async def fetch_albums(self, artist_id: str | None = None) -> list[AlbumRecord]:
        items = await self._get_all_items("Items", {
            "IncludeItemTypes": "MusicAlbum",
            "Recursive": "true",
            "Fields": "SortName,ProductionYear",
            "SortBy": "SortName",
            "ArtistIds": artist_id,
            "userId": self.server.user_id,
        })
        return self._parse(AlbumRecord.from_api, items, "album")

    async def fetch_tracks(self, album_id: str | None = None) -> list[TrackRecord]:
        items = await self._get_all_items("Items", {
            "IncludeItemTypes": "Audio",
            "Recursive": "true",
            "SortBy": "Album,IndexNumber",
            "Fields": _TRACK_FIELDS,
            "ParentId": album_id,
            "userId": self.server.user_id,
            "EnableUserData": "true" if self.server.user_id else None,
        })
        return self._parse(TrackRecord.from_api, items, "track")

    async def fetch_liked_tracks(self) -> list[TrackRecord]:
        items = await self._get_all_items(self._user_items_path(), {
            "IncludeItemTypes": "Audio",
            "Recursive": "true",
            "Filters": "IsFavorite",
            "Fields": _TRACK_FIELDS,
        })
        return self._parse(TrackRecord.from_api, items, "track")

    # =========================================================================
    # Playlists
    # =========================================================================

    async def fetch_playlists(self) -> list[PlaylistRecord]:
        items = await self._get_all_items(self._user_items_path(), {
            "IncludeItemTypes": "Playlist",
            "Recursive": "true",
            "Fields": _PLAYLIST_FIELDS,
            "SortBy": "SortName",
        })
        return self._parse(PlaylistRecord.from_api, items, "playlist")

    async def fetch_playlist_items(self, playlist_id: str) -> list[TrackRecord]:
        items = await self._get_all_items(f"Playlists/{playlist_id}/Items", {
            "userId": self.server.user_id,
            "Fields": _TRACK_FIELDS + ",PlaylistItemId",
        })
        return self._parse(TrackRecord.from_api, items, "track")

    def _user_items_path(self) -> str:
        if not self.server.user_id:
            raise RemoteError(
                f"Server '{self.server.name}' has no user_id configured",
                details={"server": self.server.name},
                is_auth_error=True
            )
        return f"Users/{self.server.user_id}/Items"
