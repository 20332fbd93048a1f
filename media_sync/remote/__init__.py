"""
Remote module for media-sync.

Everything that talks to a media server:
    - models: Frozen records parsed from server JSON
    - client: RemoteCatalogClient protocol and the aiohttp MediaServerClient
    - fetcher: Concurrent full-catalog fetch with progress estimation

Usage:
    from media_sync.remote import MediaServerClient, fetch_full_library

    async with MediaServerClient(server, sync_config) as client:
        snapshot = await fetch_full_library(client, on_progress=print)
"""

from media_sync.remote.client import MediaServerClient, RemoteCatalogClient
from media_sync.remote.fetcher import (
    CatalogFetcher,
    LibrarySnapshot,
    ProgressCallback,
    fetch_full_library,
)
from media_sync.remote.models import (
    AlbumRecord,
    ArtistRecord,
    PlaylistRecord,
    TrackRecord,
)

__all__ = [
    "RemoteCatalogClient",
    "MediaServerClient",
    "CatalogFetcher",
    "LibrarySnapshot",
    "ProgressCallback",
    "fetch_full_library",
    "ArtistRecord",
    "AlbumRecord",
    "TrackRecord",
    "PlaylistRecord",
]
