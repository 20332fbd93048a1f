"""Test playlist read-only detection and playlist sync"""

from dataclasses import replace

import pytest

from media_sync.core.exceptions import MediaSyncError
from media_sync.core.models import Playlist, ServerKind
from media_sync.remote.models import PlaylistRecord
from media_sync.sync.playlists import is_read_only_playlist


class TestReadOnlyHeuristic:
    """Test is_read_only_playlist for both server kinds"""

    @pytest.mark.parametrize("path, location_type, expected", [
        ("/music/playlists/road.m3u", None, True),
        ("/music/Road Trip.M3U8", None, True),
        ("/config/data/playlists/Road Trip/playlist.xml", "FileSystem", False),
        (None, "FileSystem", True),
        (None, "Virtual", False),
        (None, None, False),
    ])
    def test_jellyfin(self, path, location_type, expected):
        assert is_read_only_playlist(ServerKind.JELLYFIN, path, location_type) is expected

    @pytest.mark.parametrize("path, expected", [
        ("/config/data/playlists/Road Trip.m3u", False),
        ("/config/playlists/mix.m3u8", False),
        ("data/playlists/mix.m3u", False),
        ("/media/music/road.m3u8", True),
        ("/mnt/nas/Music/road.M3U", True),
        ("/volume1/music/road.m3u", True),
        ("/home/me/road.m3u", True),
        ("/media/music/road.txt", False),
        ("/srv/lists/road.m3u", False),
        ("", False),
        (None, False),
    ])
    def test_emby(self, path, expected):
        assert is_read_only_playlist(ServerKind.EMBY, path) is expected


class TestPlaylistSync:
    """Test playlist reconciliation"""

    @pytest.mark.asyncio
    async def test_playlists_are_created_updated_and_deleted(self, coordinator, store, source, client):
        client.playlists = [
            PlaylistRecord(id="p-1", name="Road Trip", summary="Long drives", owner_user_id="user-1"),
            PlaylistRecord(id="p-2", name="Focus"),
        ]
        counts = await coordinator.sync_playlists(source)
        assert (counts.created, counts.updated, counts.deleted) == (2, 0, 0)

        client.playlists = [PlaylistRecord(id="p-1", name="Road Trip 2024")]
        counts = await coordinator.sync_playlists(source)
        assert (counts.created, counts.updated, counts.deleted) == (0, 1, 1)

        playlists = store.list_playlists(source.id)
        assert [p.name for p in playlists] == ["Road Trip 2024"]
        assert playlists[0].origin == "jellyfin"
        assert playlists[0].summary is None

    @pytest.mark.asyncio
    async def test_playlist_keeps_identity_and_creation_time(self, coordinator, store, source, client):
        client.playlists = [PlaylistRecord(id="p-1", name="Road Trip")]
        await coordinator.sync_playlists(source)
        created = store.list_playlists(source.id)[0]

        await coordinator.sync_playlists(source)
        updated = store.list_playlists(source.id)[0]

        assert updated.id == created.id
        assert updated.created_at == created.created_at

    @pytest.mark.asyncio
    async def test_other_origins_are_left_alone(self, coordinator, store, source, client):
        with store.unit_of_work() as uow:
            uow.save_playlist(Playlist(source_id=source.id, remote_id="local-1",
                                       name="On this device", origin="local"))
        client.playlists = []

        counts = await coordinator.sync_playlists(source)

        assert counts.deleted == 0
        assert [p.name for p in store.list_playlists(source.id)] == ["On this device"]

    @pytest.mark.asyncio
    async def test_read_only_flag_is_stored(self, coordinator, store, source, client):
        client.playlists = [
            PlaylistRecord(id="p-1", name="From disk", path="/music/road.m3u"),
            PlaylistRecord(id="p-2", name="Editable", location_type="Virtual"),
        ]

        await coordinator.sync_playlists(source)

        flags = {p.remote_id: p.is_read_only for p in store.list_playlists(source.id)}
        assert flags == {"p-1": True, "p-2": False}

    @pytest.mark.asyncio
    async def test_listing_failure_leaves_cache_untouched(self, coordinator, store, source, client):
        client.playlists = [PlaylistRecord(id="p-1", name="Road Trip")]
        await coordinator.sync_playlists(source)
        client.fail_on = {"playlists"}

        with pytest.raises(MediaSyncError):
            await coordinator.sync_playlists(source)

        assert [p.remote_id for p in store.list_playlists(source.id)] == ["p-1"]


class TestPlaylistItems:
    """Test playlist item materialization"""

    @pytest.mark.asyncio
    async def test_items_are_stored_in_server_order(self, coordinator, store, source, scenario_library):
        await coordinator.perform_full_sync(source)
        scenario_library.playlists = [PlaylistRecord(id="p-1", name="Mix")]
        await coordinator.sync_playlists(source)
        tracks = {t.id: t for t in scenario_library.tracks}
        scenario_library.playlist_items["p-1"] = [
            replace(tracks["t-3"], playlist_item_id="e-1"),
            replace(tracks["t-1"], playlist_item_id="e-2"),
            replace(tracks["t-3"], playlist_item_id="e-3"),
        ]

        stored = await coordinator.sync_playlist_items(source, "p-1")

        playlist = store.list_playlists(source.id)[0]
        assert stored == 3
        assert store.playlist_items(playlist.id) == [("t-3", "e-1"), ("t-1", "e-2"), ("t-3", "e-3")]

    @pytest.mark.asyncio
    async def test_uncached_item_tracks_are_added(self, coordinator, store, source, scenario_library):
        scenario_library.playlists = [PlaylistRecord(id="p-1", name="Mix")]
        await coordinator.sync_playlists(source)
        scenario_library.playlist_items["p-1"] = [
            replace(scenario_library.tracks[0], playlist_item_id="e-1")
        ]

        stored = await coordinator.sync_playlist_items(source, "p-1")

        assert stored == 1
        assert store.get_track(source.id, "t-1") is not None

    @pytest.mark.asyncio
    async def test_items_replace_previous_membership(self, coordinator, store, source, scenario_library):
        await coordinator.perform_full_sync(source)
        scenario_library.playlists = [PlaylistRecord(id="p-1", name="Mix")]
        await coordinator.sync_playlists(source)
        scenario_library.playlist_items["p-1"] = list(scenario_library.tracks)
        await coordinator.sync_playlist_items(source, "p-1")

        scenario_library.playlist_items["p-1"] = [scenario_library.tracks[4]]
        await coordinator.sync_playlist_items(source, "p-1")

        playlist = store.list_playlists(source.id)[0]
        assert store.playlist_items(playlist.id) == [("t-5", None)]

    @pytest.mark.asyncio
    async def test_uncached_playlist_is_rejected(self, coordinator, source, client):
        with pytest.raises(MediaSyncError):
            await coordinator.sync_playlist_items(source, "p-unknown")

        assert "playlist_items" not in client.calls
