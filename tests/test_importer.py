"""Test snapshot import helpers and the upsert phases"""

import pytest

from media_sync.core.models import Artist
from media_sync.remote.fetcher import LibrarySnapshot
from media_sync.remote.models import AlbumRecord, ArtistRecord, TrackRecord
from media_sync.sync.importer import (
    ArtistIndex,
    SnapshotImporter,
    parse_date_added,
    resolve_image_tag,
    ticks_to_seconds,
)


def _snapshot(client):
    return LibrarySnapshot(
        artists=tuple(client.artists),
        albums=tuple(client.albums),
        tracks=tuple(client.tracks),
    )


def _import(store, source, snapshot):
    with store.unit_of_work() as uow:
        importer = SnapshotImporter(uow, source.id)
        state = importer.load_state()
        return importer.import_snapshot(snapshot, state)


class TestValueConversion:
    """Test tick, date and image tag conversion"""

    @pytest.mark.parametrize("ticks, seconds", [
        (2_450_000_000, 245.0),
        (0, 0.0),
        (None, 0.0),
        ("not-a-number", 0.0),
        (-10_000_000, 0.0),
        (float("nan"), 0.0),
        (True, 0.0),
        ("30000000", 3.0),
    ])
    def test_ticks_to_seconds(self, ticks, seconds):
        assert ticks_to_seconds(ticks) == seconds

    def test_parse_seven_digit_fraction(self):
        assert parse_date_added("2023-04-01T12:00:00.1234567Z") == "2023-04-01T12:00:00.123456+00:00"

    def test_parse_short_fraction_and_naive_date(self):
        assert parse_date_added("2023-04-01T12:00:00.5") == "2023-04-01T12:00:00.500000+00:00"

    def test_parse_keeps_offset(self):
        assert parse_date_added("2023-04-01T12:00:00+02:00") == "2023-04-01T12:00:00+02:00"

    @pytest.mark.parametrize("value", [None, "", "yesterday", 12345])
    def test_parse_invalid_dates(self, value):
        assert parse_date_added(value) is None

    def test_image_tag_prefers_primary(self):
        tags = {"Backdrop": "b", "Thumb": "t", "Primary": "p"}
        assert resolve_image_tag(tags) == ("p", "Primary")

    def test_image_tag_falls_back_to_thumb_then_any(self):
        assert resolve_image_tag({"thumb": "t", "Backdrop": "b"}) == ("t", "thumb")
        assert resolve_image_tag({"Backdrop": "b"}) == ("b", "Backdrop")
        assert resolve_image_tag({}) == (None, None)


class TestArtistIndex:
    """Test name-based artist lookup"""

    def test_exact_match_wins_over_case_insensitive(self):
        lower = Artist(source_id=1, remote_id="a1", name="abba", id=1)
        upper = Artist(source_id=1, remote_id="a2", name="ABBA", id=2)
        index = ArtistIndex([lower, upper])

        assert index.lookup("ABBA") is upper
        assert index.lookup("abba") is lower
        assert index.lookup("Abba") is lower

    def test_missing_names(self):
        index = ArtistIndex([Artist(source_id=1, remote_id="a1", name="Pink Floyd", id=1)])

        assert index.lookup(None) is None
        assert index.lookup("") is None
        assert "Joy Division" not in index
        assert "pink floyd" in index


class TestSnapshotImporter:
    """Test the artist, album, genre and track phases"""

    def test_scenario_counts(self, store, source, scenario_library):
        result = _import(store, source, _snapshot(scenario_library))

        assert result.artists.created == 2
        assert result.albums.created == 3
        assert result.tracks.created == 5
        assert len(store.list_artists(source.id)) == 2
        assert len(store.list_albums(source.id)) == 3
        assert len(store.list_tracks(source.id)) == 5

    def test_scenario_genres_resolve_to_rock_and_unknown(self, store, source, scenario_library):
        _import(store, source, _snapshot(scenario_library))

        genres = store.list_genres(source.id)
        assert {g.umbrella_name for g in genres} == {"Rock", "Unknown"}
        assert {g.normalized_name for g in genres} == {"rock", "alternative rock", "unknown"}

    def test_track_without_genre_gets_unknown(self, store, source, scenario_library):
        _import(store, source, _snapshot(scenario_library))

        track = store.get_track(source.id, "t-4")
        genres = store.track_genres(track.id)
        assert [g.raw_name for g in genres] == ["Unknown"]
        assert track.umbrella_genres == ["Unknown"]
        assert track.raw_genres == []

    def test_comma_joined_genres_become_two_associations(self, store, source, scenario_library):
        _import(store, source, _snapshot(scenario_library))

        track = store.get_track(source.id, "t-2")
        names = [g.normalized_name for g in store.track_genres(track.id)]
        assert names == ["rock", "alternative rock"]
        assert track.raw_genres == ["rock", "alternative rock"]

    def test_album_links_to_artist_case_insensitively(self, store, source, scenario_library):
        _import(store, source, _snapshot(scenario_library))

        artists = {a.name: a for a in store.list_artists(source.id)}
        albums = {a.remote_id: a for a in store.list_albums(source.id)}
        assert albums["al-wall"].artist_name == "Pink floyd"
        assert albums["al-wall"].artist_id == artists["Pink Floyd"].id
        assert len([a for a in artists if a.casefold() == "pink floyd"]) == 1

    def test_album_with_unknown_artist_stays_unlinked(self, store, source, scenario_library):
        _import(store, source, _snapshot(scenario_library))

        albums = {a.remote_id: a for a in store.list_albums(source.id)}
        assert albums["al-up"].artist_id is None
        track = store.get_track(source.id, "t-5")
        assert track.album_id == albums["al-up"].id
        assert track.artist_id is None

    def test_track_fields(self, store, source, scenario_library):
        _import(store, source, _snapshot(scenario_library))

        track = store.get_track(source.id, "t-1")
        assert track.duration == 245.0
        assert track.track_number == 5
        assert track.title == "Another Brick in the Wall"

        dated = store.get_track(source.id, "t-3")
        assert dated.date_added == "2023-04-01T12:00:00.123456+00:00"

    def test_image_tags_are_resolved(self, store, source, scenario_library):
        _import(store, source, _snapshot(scenario_library))

        albums = {a.remote_id: a for a in store.list_albums(source.id)}
        assert (albums["al-wall"].image_tag, albums["al-wall"].image_kind) == ("thumb-wall", "Thumb")
        artists = {a.remote_id: a for a in store.list_artists(source.id)}
        assert artists["ar-floyd"].image_tag == "tag-floyd"

    def test_reimport_keeps_ids_and_overwrites_fields(self, store, source, scenario_library):
        _import(store, source, _snapshot(scenario_library))
        before = {t.remote_id: t.id for t in store.list_tracks(source.id)}

        scenario_library.tracks[0] = TrackRecord(
            id="t-1", name="Another Brick in the Wall, Part 2", album_id="al-wall",
            artists=("Pink Floyd",), genres=("Progressive Rock",),
        )
        result = _import(store, source, _snapshot(scenario_library))

        assert result.tracks.created == 0
        assert result.tracks.updated == 5
        after = {t.remote_id: t.id for t in store.list_tracks(source.id)}
        assert after == before
        track = store.get_track(source.id, "t-1")
        assert track.title == "Another Brick in the Wall, Part 2"
        assert track.duration == 0.0
        assert [g.normalized_name for g in store.track_genres(track.id)] == ["progressive rock"]

    def test_duplicate_track_records_are_skipped(self, store, source, scenario_library):
        scenario_library.tracks.append(scenario_library.tracks[0])

        result = _import(store, source, _snapshot(scenario_library))

        assert result.tracks.created == 5
        assert len(store.list_tracks(source.id)) == 5

    def test_placeholder_is_adopted_by_name(self, store, source):
        with store.unit_of_work() as uow:
            placeholder = uow.save_artist(
                Artist(source_id=source.id, remote_id=None, name="PINK FLOYD", sort_name="PINK FLOYD")
            )

        snapshot = LibrarySnapshot(
            artists=(ArtistRecord(id="ar-floyd", name="Pink Floyd"),),
            albums=(AlbumRecord(id="al-wall", name="The Wall", artist_name="Pink Floyd"),),
            tracks=(),
        )
        result = _import(store, source, snapshot)

        artists = store.list_artists(source.id)
        assert len(artists) == 1
        assert artists[0].id == placeholder.id
        assert artists[0].remote_id == "ar-floyd"
        assert artists[0].name == "Pink Floyd"
        assert result.artists.created == 0

    def test_progress_is_reported_per_phase(self, store, source, scenario_library):
        reports = []
        with store.unit_of_work() as uow:
            importer = SnapshotImporter(uow, source.id, lambda r, s: reports.append((r, s)))
            importer.import_snapshot(_snapshot(scenario_library), importer.load_state())

        stages = [stage for _, stage in reports]
        assert stages[0] == "Loading existing data..."
        assert "Processing artists..." in stages
        assert "Processing albums..." in stages
        assert "Processing genres..." in stages
        assert "Processing tracks..." in stages
        assert all(0.5 <= ratio <= 0.95 for ratio, _ in reports)
