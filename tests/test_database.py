"""Test the library cache"""

import pytest

from media_sync.core.config import ServerConfig
from media_sync.core.database import LibraryStore
from media_sync.core.exceptions import PersistenceError, SourceNotFoundError
from media_sync.core.models import Artist, Genre, ServerKind, Track


class TestSources:
    """Test source bookkeeping"""

    def test_first_source_becomes_active(self, store):
        home = store.add_source("home", ServerKind.JELLYFIN, "https://a")
        office = store.add_source("office", ServerKind.EMBY, "https://b")

        assert home.is_active
        assert not office.is_active
        assert store.get_active_source().name == "home"

    def test_exactly_one_source_is_active(self, store):
        home = store.add_source("home", ServerKind.JELLYFIN, "https://a")
        office = store.add_source("office", ServerKind.EMBY, "https://b")

        store.set_active_source(office.id)

        active = [s.name for s in store.list_sources() if s.is_active]
        assert active == ["office"]
        assert not store.get_source(home.id).is_active

    def test_failed_insert_keeps_active_source(self, store, source):
        with pytest.raises(PersistenceError):
            store.add_source("home", ServerKind.EMBY, "https://b", active=True)

        assert store.get_active_source().id == source.id
        with store.unit_of_work() as uow:
            uow.save_artist(Artist(source_id=source.id, remote_id="a1", name="Air"))
        assert [a.name for a in store.list_artists(source.id)] == ["Air"]

    def test_unknown_source(self, store):
        with pytest.raises(SourceNotFoundError):
            store.get_source(42)
        with pytest.raises(SourceNotFoundError):
            store.set_active_source(42)
        assert store.get_source_by_name("garage") is None

    def test_ensure_sources_registers_and_updates(self, store):
        servers = [
            ServerConfig(name="home", kind=ServerKind.JELLYFIN, url="https://a"),
            ServerConfig(name="office", kind=ServerKind.EMBY, url="https://b", active=True),
        ]
        sources = store.ensure_sources(servers)

        assert [s.name for s in sources] == ["home", "office"]
        assert store.get_active_source().name == "office"

        moved = [ServerConfig(name="home", kind=ServerKind.JELLYFIN, url="https://c")]
        store.ensure_sources(moved)

        assert store.get_source_by_name("home").url == "https://c"
        assert len(store.list_sources()) == 2


class TestUnitOfWork:
    """Test transactional writes"""

    def test_commit(self, store, source):
        with store.unit_of_work() as uow:
            artist = uow.save_artist(Artist(source_id=source.id, remote_id="a1", name="Air"))

        assert artist.id is not None
        assert [a.name for a in store.list_artists(source.id)] == ["Air"]

    def test_rollback_on_error(self, store, source):
        with pytest.raises(RuntimeError):
            with store.unit_of_work() as uow:
                uow.save_artist(Artist(source_id=source.id, remote_id="a1", name="Air"))
                raise RuntimeError("boom")

        assert store.list_artists(source.id) == []

    def test_sqlite_errors_become_persistence_errors(self, store, source):
        with pytest.raises(PersistenceError):
            with store.unit_of_work() as uow:
                uow.save_artist(Artist(source_id=source.id, remote_id="a1", name="Air"))
                uow.save_artist(Artist(source_id=source.id, remote_id="a1", name="Air again"))

        assert store.list_artists(source.id) == []

    def test_deleting_a_track_removes_its_genre_links(self, store, source):
        with store.unit_of_work() as uow:
            genre = uow.save_genre(Genre(source_id=source.id, raw_name="Rock",
                                         normalized_name="rock", umbrella_name="Rock"))
            track = uow.save_track(Track(source_id=source.id, remote_id="t1", title="Song",
                                         genre_ids=[genre.id, genre.id]))

        assert store.get_track(source.id, "t1").genre_ids == [genre.id]

        with store.unit_of_work() as uow:
            uow.delete_tracks([track.id])

        assert store.track_genres(track.id) == []
        assert len(store.list_genres(source.id)) == 1

    def test_sources_are_isolated(self, store, source):
        other = store.add_source("office", ServerKind.EMBY, "https://b")
        with store.unit_of_work() as uow:
            uow.save_artist(Artist(source_id=source.id, remote_id="a1", name="Air"))
            uow.save_artist(Artist(source_id=other.id, remote_id="a1", name="Air"))

        assert len(store.list_artists(source.id)) == 1
        assert len(store.list_artists(other.id)) == 1

    def test_library_stats(self, store, source):
        with store.unit_of_work() as uow:
            uow.save_artist(Artist(source_id=source.id, remote_id="a1", name="Air"))
            uow.save_artist(Artist(source_id=source.id, remote_id=None, name="Placeholder"))
            uow.save_track(Track(source_id=source.id, remote_id="t1", title="Song", liked=True))

        stats = store.get_library_stats(source.id)

        assert stats["artists"] == 2
        assert stats["placeholder_artists"] == 1
        assert stats["tracks"] == 1
        assert stats["liked_tracks"] == 1


class TestStoreSetup:
    """Test store construction"""

    def test_missing_directory(self, temp_dir):
        with pytest.raises(PersistenceError):
            LibraryStore(temp_dir / "missing" / "library.db")

    def test_reopen_existing_database(self, temp_dir):
        first = LibraryStore(temp_dir / "library.db")
        first.add_source("home", ServerKind.JELLYFIN, "https://a")
        first.close()

        second = LibraryStore(temp_dir / "library.db")
        try:
            assert [s.name for s in second.list_sources()] == ["home"]
        finally:
            second.close()
