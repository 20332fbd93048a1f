"""
Snapshot importer for media-sync (full sync, upsert phases).

Given a remote LibrarySnapshot and a UnitOfWork, this module writes the
snapshot into the local cache with insert-or-update semantics, keeping
local ids stable across syncs. The remote is authoritative: attributes
of an existing entity are overwritten unconditionally.

Phases (strictly in this order, all inside the caller's unit of work):
    1. Artists  - find-or-create by remote id; a remote artist not cached
                  yet adopts a placeholder with the same name (any case)
    2. Albums   - find-or-create by remote id; link to an artist by name,
                  exact match first, case-insensitive fallback
    3. Genres   - union of all (split) track genres, one Genre per
                  normalized key, plus the synthetic "Unknown" genre
    4. Tracks   - find-or-create by remote id; resolve album, artist and
                  genres; convert ticks to seconds

Orphan removal runs after all four phases (see media_sync.sync.cleanup).

Progress:
    0.50 loading existing data, 0.52-0.60 artists (every 100),
    0.60-0.70 albums (every 100), 0.72 genres, 0.75-0.95 tracks (every 500).

The helpers at module level (ArtistIndex, GenreRegistry, apply_track_record,
...) are shared with incremental sync so both paths write identical rows.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from media_sync.core.database import UnitOfWork
from media_sync.core.logger import get_logger
from media_sync.core.models import (
    UNKNOWN_GENRE,
    UNKNOWN_GENRE_KEY,
    Album,
    Artist,
    Genre,
    Track,
)
from media_sync.remote.fetcher import LibrarySnapshot
from media_sync.remote.models import AlbumRecord, ArtistRecord, TrackRecord
from media_sync.sync.genres import (
    GenreClassification,
    classify_genres,
    normalize_genre,
    resolve_umbrella,
    split_genres,
)

logger = get_logger(__name__)


ProgressCallback = Callable[[float, str], None]

TICKS_PER_SECOND = 10_000_000

# Preferred image kinds, richest first. Servers disagree on case.
IMAGE_KIND_PREFERENCE = ("Primary", "primary", "Thumb", "thumb")

STAGE_LOADING = "Loading existing data..."
STAGE_ARTISTS = "Processing artists..."
STAGE_ALBUMS = "Processing albums..."
STAGE_GENRES = "Processing genres..."
STAGE_TRACKS = "Processing tracks..."

ARTIST_REPORT_EVERY = 100
ALBUM_REPORT_EVERY = 100
TRACK_REPORT_EVERY = 500

_FRACTION_RE = re.compile(r"\.(\d+)")


# =============================================================================
# Value conversion
# =============================================================================

def ticks_to_seconds(ticks: Any) -> float:
    """
    Convert a 100ns tick count to seconds.

    Missing, malformed, negative or non-finite values resolve to 0.0 so
    one bad record never fails a sync.

    Example:
        >>> ticks_to_seconds(2_450_000_000)
        245.0
    """
    if ticks is None or isinstance(ticks, bool):
        return 0.0
    try:
        seconds = float(ticks) / TICKS_PER_SECOND
    except (TypeError, ValueError, OverflowError):
        return 0.0
    if not math.isfinite(seconds) or seconds < 0:
        return 0.0
    return seconds


def parse_date_added(value: Any) -> str | None:
    """
    Parse a server timestamp into a normalized ISO string (UTC if naive).

    Jellyfin sends seven fractional digits ("2023-04-01T12:00:00.1234567Z")
    which datetime cannot parse; the fraction is cut or padded to six.

    Returns:
        ISO 8601 string, or None if the value is missing or unparseable.
    """
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        logger.debug(f"Unparseable date from server: {value!r}")
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.isoformat()


def resolve_image_tag(image_tags: dict[str, str]) -> tuple[str | None, str | None]:
    """
    Pick an image tag, preferring Primary, then Thumb, then anything.

    Returns:
        (tag, kind), or (None, None) if no usable tag exists.
    """
    for kind in IMAGE_KIND_PREFERENCE:
        tag = image_tags.get(kind)
        if tag:
            return tag, kind
    for kind, tag in image_tags.items():
        if tag:
            return tag, kind
    return None, None


# =============================================================================
# Name-based artist linkage
# =============================================================================

class ArtistIndex:
    """
    Name -> Artist lookup built once per sync.

    Albums and tracks reference artists by display name only. lookup()
    prefers an exact match and falls back to a case-insensitive one; the
    first artist registered under a name wins.
    """

    def __init__(self, artists: Iterable[Artist] = ()) -> None:
        self._exact: dict[str, Artist] = {}
        self._folded: dict[str, Artist] = {}
        for artist in artists:
            self.add(artist)

    def add(self, artist: Artist) -> None:
        self._exact.setdefault(artist.name, artist)
        self._folded.setdefault(artist.name.casefold(), artist)

    def lookup(self, name: str | None) -> Artist | None:
        if not name:
            return None
        return self._exact.get(name) or self._folded.get(name.casefold())

    def __contains__(self, name: str) -> bool:
        return self.lookup(name) is not None


# =============================================================================
# Genre upserts
# =============================================================================

@dataclass
class EntityCounts:
    created: int = 0
    updated: int = 0
    deleted: int = 0

    def __str__(self) -> str:
        return f"+{self.created} ~{self.updated} -{self.deleted}"


class GenreRegistry:
    """
    Upserts genres for one source, keyed by normalized name.

    Two spellings that normalize identically share one Genre whose
    raw_name is the spelling seen last.
    """

    def __init__(self, uow: UnitOfWork, source_id: int, existing: Iterable[Genre]) -> None:
        self._uow = uow
        self._source_id = source_id
        self._by_key: dict[str, Genre] = {g.normalized_name: g for g in existing}
        self._touched: set[str] = set()
        self.counts = EntityCounts()

    def upsert(self, raw_name: str) -> Genre | None:
        key = normalize_genre(raw_name)
        if not key:
            return None

        genre = self._by_key.get(key)
        if genre is None:
            genre = Genre(
                source_id=self._source_id,
                raw_name=raw_name,
                normalized_name=key,
                umbrella_name=resolve_umbrella(raw_name),
            )
            self.counts.created += 1
        else:
            genre.raw_name = raw_name
            genre.umbrella_name = resolve_umbrella(raw_name)
            if key not in self._touched:
                self.counts.updated += 1

        self._uow.save_genre(genre)
        self._by_key[key] = genre
        self._touched.add(key)
        return genre

    def ensure_unknown(self) -> Genre:
        genre = self._by_key.get(UNKNOWN_GENRE_KEY)
        if genre is None:
            genre = self._uow.save_genre(Genre(
                source_id=self._source_id,
                raw_name=UNKNOWN_GENRE,
                normalized_name=UNKNOWN_GENRE_KEY,
                umbrella_name=UNKNOWN_GENRE,
            ))
            self._by_key[UNKNOWN_GENRE_KEY] = genre
            self.counts.created += 1
        return genre

    def has(self, raw_name: str) -> bool:
        return normalize_genre(raw_name) in self._by_key

    def genre_ids_for(self, classification: GenreClassification) -> list[int]:
        """Local genre ids for a track, defaulting to [Unknown]."""
        ids = [
            self._by_key[key].id
            for key in classification.normalized
            if key in self._by_key
        ]
        if not ids:
            ids = [self.ensure_unknown().id]
        return list(dict.fromkeys(ids))


# =============================================================================
# Record application
# =============================================================================

def apply_artist_record(artist: Artist, record: ArtistRecord) -> Artist:
    artist.remote_id = record.id
    artist.name = record.name
    artist.sort_name = record.sort_name or record.name
    artist.image_tag, _ = resolve_image_tag(record.image_tags)
    return artist


def apply_album_record(album: Album, record: AlbumRecord, artists: ArtistIndex) -> Album:
    album.title = record.name
    album.sort_title = record.sort_name or record.name
    album.production_year = record.production_year
    album.image_tag, album.image_kind = resolve_image_tag(record.image_tags)
    album.artist_name = record.artist_name

    artist = artists.lookup(record.artist_name)
    album.artist_id = artist.id if artist else None
    return album


def apply_track_record(
    track: Track,
    record: TrackRecord,
    album: Album | None,
    artists: ArtistIndex,
    genres: GenreRegistry
) -> Track:
    """
    Overwrite a cached track from its remote record.

    Artist resolution: first-listed artist by exact name, then by
    case-insensitive name, else the album's artist, else unlinked.
    """
    classification = classify_genres(record.genres)

    track.title = record.name
    track.duration = ticks_to_seconds(record.run_time_ticks)
    track.track_number = record.index_number
    track.disc_number = record.disc_number
    track.date_added = parse_date_added(record.date_created)
    track.play_count = record.play_count or 0
    track.liked = record.is_favorite
    track.container = record.container

    track.album_id = album.id if album else None
    artist = artists.lookup(record.primary_artist)
    if artist is not None:
        track.artist_id = artist.id
    else:
        track.artist_id = album.artist_id if album else None

    track.raw_genres = list(classification.raw)
    track.normalized_genres = list(classification.normalized)
    track.umbrella_genres = list(classification.umbrella)
    track.genre_ids = genres.genre_ids_for(classification)
    return track


# =============================================================================
# Snapshot Importer
# =============================================================================

@dataclass
class LocalState:
    """Cache contents loaded before the upsert phases of one sync."""
    artists: list[Artist]
    albums: list[Album]
    genres: list[Genre]
    tracks: list[Track]


@dataclass
class ImportResult:
    artists: EntityCounts = field(default_factory=EntityCounts)
    albums: EntityCounts = field(default_factory=EntityCounts)
    genres: EntityCounts = field(default_factory=EntityCounts)
    tracks: EntityCounts = field(default_factory=EntityCounts)


class SnapshotImporter:
    """
    Writes a remote snapshot into the cache through one UnitOfWork.

    Usage:
        with store.unit_of_work() as uow:
            importer = SnapshotImporter(uow, source.id, on_progress)
            state = importer.load_state()
            result = importer.import_snapshot(snapshot, state)
    """

    def __init__(
        self,
        uow: UnitOfWork,
        source_id: int,
        on_progress: ProgressCallback | None = None
    ) -> None:
        self._uow = uow
        self._source_id = source_id
        self._report = on_progress or (lambda ratio, stage: None)

    def load_state(self) -> LocalState:
        self._report(0.50, STAGE_LOADING)
        state = LocalState(
            artists=self._uow.artists(self._source_id),
            albums=self._uow.albums(self._source_id),
            genres=self._uow.genres(self._source_id),
            tracks=self._uow.tracks(self._source_id),
        )
        logger.debug(
            f"Cache holds {len(state.artists)} artists, {len(state.albums)} albums, "
            f"{len(state.genres)} genres, {len(state.tracks)} tracks"
        )
        return state

    def import_snapshot(self, snapshot: LibrarySnapshot, state: LocalState) -> ImportResult:
        result = ImportResult()

        artists = self._import_artists(snapshot.artists, state, result.artists)
        albums = self._import_albums(snapshot.albums, state, artists, result.albums)
        genres = self._import_genres(snapshot.tracks, state)
        result.genres = genres.counts
        self._import_tracks(snapshot.tracks, state, albums, artists, genres, result.tracks)

        logger.info(
            f"Imported artists {result.artists}, albums {result.albums}, "
            f"genres {result.genres}, tracks {result.tracks}"
        )
        return result

    # -------------------------------------------------------------------------
    # Phase 1: Artists
    # -------------------------------------------------------------------------

    def _import_artists(
        self,
        records: tuple[ArtistRecord, ...],
        state: LocalState,
        counts: EntityCounts
    ) -> ArtistIndex:
        by_remote = {a.remote_id: a for a in state.artists if a.remote_id}
        placeholders: dict[str, Artist] = {}
        for artist in state.artists:
            if artist.is_placeholder:
                placeholders.setdefault(artist.name.casefold(), artist)

        index = ArtistIndex()
        total = len(records)

        for i, record in enumerate(records):
            if i % ARTIST_REPORT_EVERY == 0:
                self._report(0.52 + 0.08 * i / total, STAGE_ARTISTS)

            artist = by_remote.get(record.id)
            if artist is None:
                artist = placeholders.pop(record.name.casefold(), None)
                if artist is not None:
                    logger.debug(f"Resolved placeholder artist '{artist.name}' to {record.id}")
                    counts.updated += 1
                else:
                    artist = Artist(source_id=self._source_id, remote_id=record.id, name=record.name)
                    counts.created += 1
            else:
                counts.updated += 1

            apply_artist_record(artist, record)
            self._uow.save_artist(artist)
            by_remote[record.id] = artist
            index.add(artist)

        return index

    # -------------------------------------------------------------------------
    # Phase 2: Albums
    # -------------------------------------------------------------------------

    def _import_albums(
        self,
        records: tuple[AlbumRecord, ...],
        state: LocalState,
        artists: ArtistIndex,
        counts: EntityCounts
    ) -> dict[str, Album]:
        by_remote = {a.remote_id: a for a in state.albums}
        total = len(records)
        unlinked = 0

        for i, record in enumerate(records):
            if i % ALBUM_REPORT_EVERY == 0:
                self._report(0.60 + 0.10 * i / total, STAGE_ALBUMS)

            album = by_remote.get(record.id)
            if album is None:
                album = Album(source_id=self._source_id, remote_id=record.id, title=record.name)
                counts.created += 1
            else:
                counts.updated += 1

            apply_album_record(album, record, artists)
            if record.artist_name and album.artist_id is None:
                unlinked += 1
            self._uow.save_album(album)
            by_remote[record.id] = album

        if unlinked:
            logger.debug(f"{unlinked} albums reference an artist name with no cached artist")
        return by_remote

    # -------------------------------------------------------------------------
    # Phase 3: Genres
    # -------------------------------------------------------------------------

    def _import_genres(self, records: tuple[TrackRecord, ...], state: LocalState) -> GenreRegistry:
        self._report(0.72, STAGE_GENRES)

        registry = GenreRegistry(self._uow, self._source_id, state.genres)
        raw_names = dict.fromkeys(
            genre for record in records for genre in split_genres(record.genres)
        )
        for raw_name in raw_names:
            registry.upsert(raw_name)
        registry.ensure_unknown()
        return registry

    # -------------------------------------------------------------------------
    # Phase 4: Tracks
    # -------------------------------------------------------------------------

    def _import_tracks(
        self,
        records: tuple[TrackRecord, ...],
        state: LocalState,
        albums: dict[str, Album],
        artists: ArtistIndex,
        genres: GenreRegistry,
        counts: EntityCounts
    ) -> None:
        by_remote = {t.remote_id: t for t in state.tracks}
        seen: set[str] = set()
        total = len(records)

        for i, record in enumerate(records):
            if i % TRACK_REPORT_EVERY == 0:
                self._report(0.75 + 0.20 * i / total, STAGE_TRACKS)

            if record.id in seen:
                logger.warning(f"Duplicate track {record.id} in server listing, skipping")
                continue
            seen.add(record.id)

            track = by_remote.get(record.id)
            if track is None:
                track = Track(source_id=self._source_id, remote_id=record.id, title=record.name)
                counts.created += 1
            else:
                counts.updated += 1

            album = albums.get(record.album_id) if record.album_id else None
            apply_track_record(track, record, album, artists, genres)
            self._uow.save_track(track)
