"""Test full sync through the coordinator"""

import asyncio
import sqlite3

import pytest

from media_sync.core.database import UnitOfWork
from media_sync.core.exceptions import (
    AlreadySyncingError,
    PersistenceError,
    RemoteError,
    SyncCancelledError,
)
from media_sync.remote.fetcher import STAGE_FETCH_METADATA, STAGE_FETCH_TRACKS
from media_sync.remote.models import ArtistRecord, PlaylistRecord
from media_sync.sync.coordinator import STAGE_CLEANUP, STAGE_PROCESSING_LIBRARY


def _catalog(store, source):
    return (
        store.list_artists(source.id),
        store.list_albums(source.id),
        store.list_genres(source.id),
        store.list_tracks(source.id),
    )


class TestFullSync:
    """Test perform_full_sync outcomes"""

    @pytest.mark.asyncio
    async def test_scenario(self, coordinator, store, source, scenario_library):
        report = await coordinator.perform_full_sync(source)

        assert report.artists.created == 2
        assert report.albums.created == 3
        assert report.tracks.created == 5
        assert {g.umbrella_name for g in store.list_genres(source.id)} == {"Rock", "Unknown"}

        genreless = store.get_track(source.id, "t-4")
        assert [g.raw_name for g in store.track_genres(genreless.id)] == ["Unknown"]

    @pytest.mark.asyncio
    async def test_second_sync_is_idempotent(self, coordinator, store, source, scenario_library):
        await coordinator.perform_full_sync(source)
        first = _catalog(store, source)

        report = await coordinator.perform_full_sync(source)

        assert _catalog(store, source) == first
        assert report.tracks.created == 0
        assert report.tracks.deleted == 0
        assert report.tracks.updated == 5
        assert report.removed_track_ids == []

    @pytest.mark.asyncio
    async def test_full_sync_records_timestamp(self, coordinator, store, source, scenario_library):
        assert store.get_source(source.id).last_full_sync is None

        await coordinator.perform_full_sync(source)

        assert store.get_source(source.id).last_full_sync is not None

    @pytest.mark.asyncio
    async def test_orphaned_track_is_removed_and_cleanup_notified_once(
        self, coordinator, store, source, scenario_library, download_manager
    ):
        await coordinator.perform_full_sync(source)
        scenario_library.tracks = [t for t in scenario_library.tracks if t.id != "t-4"]

        report = await coordinator.perform_full_sync(source)
        await coordinator.wait_for_cleanup()

        assert store.get_track(source.id, "t-4") is None
        assert report.tracks.deleted == 1
        assert report.removed_track_ids == ["t-4"]
        assert download_manager.requested == ["t-4"]

    @pytest.mark.asyncio
    async def test_orphaned_album_and_artist_are_removed(
        self, coordinator, store, source, scenario_library
    ):
        await coordinator.perform_full_sync(source)
        scenario_library.artists = scenario_library.artists[:1]
        scenario_library.albums = [a for a in scenario_library.albums if a.id == "al-wall"]
        scenario_library.tracks = [t for t in scenario_library.tracks if t.album_id == "al-wall"]

        report = await coordinator.perform_full_sync(source)

        assert [a.remote_id for a in store.list_artists(source.id)] == ["ar-floyd"]
        assert [a.remote_id for a in store.list_albums(source.id)] == ["al-wall"]
        assert sorted(t.remote_id for t in store.list_tracks(source.id)) == ["t-1", "t-2"]
        assert report.artists.deleted == 1
        assert report.albums.deleted == 2

    @pytest.mark.asyncio
    async def test_cleanup_failure_does_not_fail_sync(
        self, coordinator, store, source, scenario_library, download_manager
    ):
        await coordinator.perform_full_sync(source)
        download_manager.fail_for = {"t-4", "t-5"}
        scenario_library.tracks = scenario_library.tracks[:3]

        report = await coordinator.perform_full_sync(source)
        await coordinator.wait_for_cleanup()

        assert report.tracks.deleted == 2
        assert sorted(download_manager.requested) == ["t-4", "t-5"]

    @pytest.mark.asyncio
    async def test_remote_failure_writes_nothing(self, coordinator, store, source, scenario_library):
        scenario_library.fail_on = {"albums"}

        with pytest.raises(RemoteError):
            await coordinator.perform_full_sync(source)

        assert store.list_artists(source.id) == []
        assert store.list_tracks(source.id) == []
        assert not coordinator.is_syncing(source)
        assert coordinator.last_stage(source) in (STAGE_FETCH_METADATA, STAGE_FETCH_TRACKS)

    @pytest.mark.asyncio
    async def test_write_failure_rolls_back_whole_import(
        self, coordinator, store, source, scenario_library, download_manager, monkeypatch
    ):
        await coordinator.perform_full_sync(source)
        before = _catalog(store, source)
        scenario_library.tracks = scenario_library.tracks[:3]
        scenario_library.artists.append(ArtistRecord(id="ar-new", name="Portishead"))

        def failing_save_track(self, track):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(UnitOfWork, "save_track", failing_save_track)

        with pytest.raises(PersistenceError):
            await coordinator.perform_full_sync(source)
        await coordinator.wait_for_cleanup()

        assert _catalog(store, source) == before
        assert download_manager.requested == []
        assert not coordinator.is_syncing(source)
        assert coordinator.last_stage(source) == "Processing tracks..."

    @pytest.mark.asyncio
    async def test_failed_sync_does_not_block_next_sync(
        self, coordinator, store, source, scenario_library
    ):
        scenario_library.fail_on = {"tracks"}
        with pytest.raises(RemoteError):
            await coordinator.perform_full_sync(source)

        scenario_library.fail_on = set()
        report = await coordinator.perform_full_sync(source)

        assert report.tracks.created == 5

    @pytest.mark.asyncio
    async def test_playlist_failure_keeps_catalog(self, coordinator, store, source, scenario_library):
        scenario_library.fail_on = {"playlists"}

        with pytest.raises(RemoteError):
            await coordinator.perform_full_sync(source)

        assert len(store.list_tracks(source.id)) == 5
        assert coordinator.last_stage(source) == "Syncing playlists..."

    @pytest.mark.asyncio
    async def test_playlists_are_synced_at_the_end(self, coordinator, store, source, scenario_library):
        scenario_library.playlists = [PlaylistRecord(id="p-1", name="Road Trip")]

        report = await coordinator.perform_full_sync(source)

        assert report.playlists.created == 1
        assert [p.name for p in store.list_playlists(source.id)] == ["Road Trip"]

    @pytest.mark.asyncio
    async def test_progress_reports(self, coordinator, source, scenario_library):
        reports = []

        await coordinator.perform_full_sync(source, on_progress=lambda r, s: reports.append((r, s)))

        assert reports[0] == (0.0, STAGE_FETCH_METADATA)
        assert reports[-1] == (1.0, "Complete")
        stages = [stage for _, stage in reports]
        assert "Loading existing data..." in stages
        assert "Processing tracks..." in stages
        assert "Syncing playlists..." in stages
        assert all(0.0 <= ratio <= 1.0 for ratio, _ in reports)
        assert coordinator.last_stage(source) == "Complete"


class TestSingleFlight:
    """Test the one-sync-per-source guard and cancellation"""

    @pytest.mark.asyncio
    async def test_second_sync_fails_while_first_in_flight(
        self, coordinator, source, scenario_library
    ):
        scenario_library.track_gate = asyncio.Event()
        first = asyncio.create_task(coordinator.perform_full_sync(source))
        await asyncio.sleep(0)
        assert coordinator.is_syncing(source)

        with pytest.raises(AlreadySyncingError):
            await coordinator.perform_full_sync(source)

        scenario_library.track_gate.set()
        report = await first
        assert report.tracks.created == 5
        assert not coordinator.is_syncing(source)

    @pytest.mark.asyncio
    async def test_different_sources_sync_independently(
        self, coordinator, store, source, scenario_library
    ):
        other = store.add_source("office", source.kind, "https://office.example.org")

        first, second = await asyncio.gather(
            coordinator.perform_full_sync(source),
            coordinator.perform_full_sync(other),
        )

        assert first.tracks.created == 5
        assert second.tracks.created == 5
        assert len(store.list_tracks(other.id)) == 5

    @pytest.mark.asyncio
    async def test_cancel_after_fetch(self, coordinator, store, source, scenario_library):
        scenario_library.track_gate = asyncio.Event()
        running = asyncio.create_task(coordinator.perform_full_sync(source))
        await asyncio.sleep(0)

        coordinator.cancel_sync(source)
        scenario_library.track_gate.set()

        with pytest.raises(SyncCancelledError):
            await running
        assert store.list_tracks(source.id) == []
        assert not coordinator.is_syncing(source)

    @pytest.mark.asyncio
    async def test_cancel_when_idle_is_a_no_op(self, coordinator, source, scenario_library):
        coordinator.cancel_sync(source)
        coordinator.cancel_sync(source)

        report = await coordinator.perform_full_sync(source)

        assert report.tracks.created == 5

    @pytest.mark.asyncio
    async def test_cancelled_sync_can_be_retried(self, coordinator, store, source, scenario_library):
        scenario_library.track_gate = asyncio.Event()
        running = asyncio.create_task(coordinator.perform_full_sync(source))
        await asyncio.sleep(0)
        coordinator.cancel_sync(source)
        scenario_library.track_gate.set()
        with pytest.raises(SyncCancelledError):
            await running

        report = await coordinator.perform_full_sync(source)

        assert report.tracks.created == 5

    @pytest.mark.asyncio
    async def test_cancel_after_import_keeps_committed_catalog(
        self, coordinator, store, source, scenario_library
    ):
        scenario_library.playlists = [PlaylistRecord(id="p-1", name="Road Trip")]

        def cancel_on_cleanup(ratio, stage):
            if stage == STAGE_CLEANUP:
                coordinator.cancel_sync(source)

        with pytest.raises(SyncCancelledError) as exc_info:
            await coordinator.perform_full_sync(source, on_progress=cancel_on_cleanup)

        assert exc_info.value.details["stage"] == "import"
        assert len(store.list_tracks(source.id)) == 5
        assert store.list_playlists(source.id) == []
        assert "playlists" not in scenario_library.calls
        assert not coordinator.is_syncing(source)

    @pytest.mark.asyncio
    async def test_cancel_before_playlists(self, coordinator, store, source, scenario_library):
        def cancel_before_playlists(ratio, stage):
            if stage == STAGE_PROCESSING_LIBRARY:
                coordinator.cancel_sync(source)

        with pytest.raises(SyncCancelledError) as exc_info:
            await coordinator.perform_full_sync(source, on_progress=cancel_before_playlists)

        assert exc_info.value.details["stage"] == "playlists"
        assert len(store.list_tracks(source.id)) == 5
        assert store.get_source(source.id).last_full_sync is not None
        assert "playlists" not in scenario_library.calls
        assert not coordinator.is_syncing(source)
