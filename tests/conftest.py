"""Test configuration and fixtures"""

import asyncio
import tempfile
from pathlib import Path

import pytest

from media_sync.core.config import SyncConfig
from media_sync.core.database import LibraryStore
from media_sync.core.exceptions import RemoteError
from media_sync.core.models import ServerKind
from media_sync.remote.models import (
    AlbumRecord,
    ArtistRecord,
    PlaylistRecord,
    TrackRecord,
)
from media_sync.sync.coordinator import SyncCoordinator


class FakeCatalogClient:
    """In-memory RemoteCatalogClient. Tests mutate the lists between syncs."""

    def __init__(self, server_kind: ServerKind = ServerKind.JELLYFIN):
        self.server_kind = server_kind
        self.artists: list[ArtistRecord] = []
        self.albums: list[AlbumRecord] = []
        self.tracks: list[TrackRecord] = []
        self.playlists: list[PlaylistRecord] = []
        self.playlist_items: dict[str, list[TrackRecord]] = {}
        self.liked: list[TrackRecord] = []

        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        # When set, fetch_tracks waits on it (keeps a sync in flight)
        self.track_gate: asyncio.Event | None = None

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise RemoteError(f"Failed to fetch {name}: HTTP 500", status_code=500)

    async def fetch_artists(self):
        self._call("artists")
        return list(self.artists)

    async def fetch_albums(self, artist_id=None):
        self._call("albums")
        return list(self.albums)

    async def fetch_tracks(self, album_id=None):
        self._call("tracks")
        if self.track_gate is not None:
            await self.track_gate.wait()
        return list(self.tracks)

    async def fetch_playlists(self):
        self._call("playlists")
        return list(self.playlists)

    async def fetch_playlist_items(self, playlist_id):
        self._call("playlist_items")
        return list(self.playlist_items.get(playlist_id, []))

    async def fetch_liked_tracks(self):
        self._call("liked")
        return list(self.liked)


class RecordingDownloadManager:
    """Download manager that records every deletion request."""

    def __init__(self):
        self.requested: list[str] = []
        self.fail_for: set[str] = set()

    def delete_download(self, track_id: str) -> bool:
        self.requested.append(track_id)
        if track_id in self.fail_for:
            raise OSError(13, "Permission denied", f"/downloads/{track_id}.m4a")
        return True


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def store(temp_dir):
    """Empty library cache"""
    library = LibraryStore(temp_dir / "library.db")
    yield library
    library.close()


@pytest.fixture
def source(store):
    """A registered Jellyfin source"""
    return store.add_source("home", ServerKind.JELLYFIN, "https://music.example.org", "user-1")


@pytest.fixture
def client():
    return FakeCatalogClient()


@pytest.fixture
def download_manager():
    return RecordingDownloadManager()


@pytest.fixture
def coordinator(store, client, download_manager):
    """Coordinator wired to the fake client, with a fast progress estimator"""
    return SyncCoordinator(
        store,
        lambda _source: client,
        download_manager=download_manager,
        sync_config=SyncConfig(track_fetch_estimate=1.0, progress_interval=0.01),
    )


@pytest.fixture
def scenario_library(client):
    """
    Remote library of 2 artists, 3 albums and 5 tracks.

    "Unknown Pleasures" names an artist the server does not list, one
    track carries a comma-joined genre string and one has no genre.
    """
    client.artists = [
        ArtistRecord(id="ar-floyd", name="Pink Floyd", sort_name="Pink Floyd",
                     image_tags={"Primary": "tag-floyd"}),
        ArtistRecord(id="ar-radiohead", name="Radiohead"),
    ]
    client.albums = [
        AlbumRecord(id="al-wall", name="The Wall", artist_name="Pink floyd",
                    production_year=1979, image_tags={"Thumb": "thumb-wall"}),
        AlbumRecord(id="al-okc", name="OK Computer", artist_name="Radiohead",
                    production_year=1997),
        AlbumRecord(id="al-up", name="Unknown Pleasures", artist_name="Joy Division"),
    ]
    client.tracks = [
        TrackRecord(id="t-1", name="Another Brick in the Wall", album_id="al-wall",
                    artists=("Pink Floyd",), genres=("Rock",),
                    run_time_ticks=2_450_000_000, index_number=5),
        TrackRecord(id="t-2", name="Comfortably Numb", album_id="al-wall",
                    artists=("Pink Floyd",), genres=("rock, alternative rock",)),
        TrackRecord(id="t-3", name="Paranoid Android", album_id="al-okc",
                    artists=("Radiohead",), genres=("Alternative Rock",),
                    date_created="2023-04-01T12:00:00.1234567Z"),
        TrackRecord(id="t-4", name="Karma Police", album_id="al-okc",
                    artists=("Radiohead",), genres=()),
        TrackRecord(id="t-5", name="Disorder", album_id="al-up",
                    artists=("Joy Division",), genres=("Rock",)),
    ]
    return client
