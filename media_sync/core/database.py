"""
Thread-safe SQLite library cache for media-sync.

The cache mirrors the remote catalog of one or more sources. Two access
paths exist:

    - Reads (UI, CLI, tests) go through LibraryStore methods, which share a
      single persistent connection guarded by a lock.
    - Writes for a sync run go through unit_of_work(), which opens a
      dedicated connection, starts an IMMEDIATE transaction and commits
      only if the whole block succeeds. A failing import leaves nothing
      behind.

Schema:
    sources:         One row per configured server (name, kind, active flag)
    artists:         Per-source artists; remote_id NULL for placeholders
    albums:          Per-source albums, weakly linked to an artist
    genres:          Per-source genres, unique by normalized_name
    tracks:          Per-source tracks with denormalized genre arrays
    track_genres:    Track <-> Genre association (ordered)
    playlists:       Per-source playlists tagged with their origin
    playlist_tracks: Ordered playlist membership (materialized playlists)

Usage:
    store = LibraryStore(storage_dir / "library.db")

    with store.unit_of_work() as uow:
        artist = uow.save_artist(Artist(source_id=1, remote_id="a1", name="Air"))

    store.list_artists(source_id=1)
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Generator, Iterable

from media_sync.core.exceptions import PersistenceError, SourceNotFoundError
from media_sync.core.models import (
    Album,
    Artist,
    Genre,
    Playlist,
    ServerKind,
    Source,
    Track,
)

if TYPE_CHECKING:
    from media_sync.core.config import ServerConfig


DATABASE_VERSION = 1


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS sources (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    kind TEXT NOT NULL,
    url TEXT NOT NULL,
    user_id TEXT,
    is_active INTEGER NOT NULL DEFAULT 0,
    last_full_sync TEXT,
    created_at TEXT
);

CREATE TABLE IF NOT EXISTS artists (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id INTEGER NOT NULL,
    remote_id TEXT,  -- NULL for placeholders
    name TEXT NOT NULL,
    sort_name TEXT,
    image_tag TEXT,
    updated_at TEXT,
    FOREIGN KEY (source_id) REFERENCES sources(id) ON DELETE CASCADE,
    UNIQUE(source_id, remote_id)
);

CREATE TABLE IF NOT EXISTS albums (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id INTEGER NOT NULL,
    remote_id TEXT NOT NULL,
    title TEXT NOT NULL,
    sort_title TEXT,
    production_year INTEGER,
    image_tag TEXT,
    image_kind TEXT,
    artist_name TEXT,
    artist_id INTEGER,
    updated_at TEXT,
    FOREIGN KEY (source_id) REFERENCES sources(id) ON DELETE CASCADE,
    FOREIGN KEY (artist_id) REFERENCES artists(id) ON DELETE SET NULL,
    UNIQUE(source_id, remote_id)
);

CREATE TABLE IF NOT EXISTS genres (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id INTEGER NOT NULL,
    raw_name TEXT NOT NULL,
    normalized_name TEXT NOT NULL,
    umbrella_name TEXT NOT NULL,
    FOREIGN KEY (source_id) REFERENCES sources(id) ON DELETE CASCADE,
    UNIQUE(source_id, normalized_name)
);

CREATE TABLE IF NOT EXISTS tracks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id INTEGER NOT NULL,
    remote_id TEXT NOT NULL,
    title TEXT NOT NULL,
    duration REAL NOT NULL DEFAULT 0,
    track_number INTEGER,
    disc_number INTEGER,
    date_added TEXT,
    play_count INTEGER NOT NULL DEFAULT 0,
    liked INTEGER NOT NULL DEFAULT 0,
    container TEXT,
    album_id INTEGER,
    artist_id INTEGER,
    raw_genres TEXT,         -- JSON array
    normalized_genres TEXT,  -- JSON array
    umbrella_genres TEXT,    -- JSON array
    updated_at TEXT,
    FOREIGN KEY (source_id) REFERENCES sources(id) ON DELETE CASCADE,
    FOREIGN KEY (album_id) REFERENCES albums(id) ON DELETE SET NULL,
    FOREIGN KEY (artist_id) REFERENCES artists(id) ON DELETE SET NULL,
    UNIQUE(source_id, remote_id)
);

CREATE TABLE IF NOT EXISTS track_genres (
    track_id INTEGER NOT NULL,
    genre_id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    FOREIGN KEY (track_id) REFERENCES tracks(id) ON DELETE CASCADE,
    FOREIGN KEY (genre_id) REFERENCES genres(id) ON DELETE CASCADE,
    PRIMARY KEY (track_id, genre_id)
);

CREATE TABLE IF NOT EXISTS playlists (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_id INTEGER NOT NULL,
    remote_id TEXT NOT NULL,
    name TEXT NOT NULL,
    summary TEXT,
    owner_id TEXT,
    is_read_only INTEGER NOT NULL DEFAULT 0,
    origin TEXT NOT NULL,
    created_at TEXT,
    updated_at TEXT,
    FOREIGN KEY (source_id) REFERENCES sources(id) ON DELETE CASCADE,
    UNIQUE(source_id, remote_id)
);

CREATE TABLE IF NOT EXISTS playlist_tracks (
    playlist_id INTEGER NOT NULL,
    position INTEGER NOT NULL,
    track_id INTEGER NOT NULL,
    entry_id TEXT,
    FOREIGN KEY (playlist_id) REFERENCES playlists(id) ON DELETE CASCADE,
    FOREIGN KEY (track_id) REFERENCES tracks(id) ON DELETE CASCADE,
    PRIMARY KEY (playlist_id, position)
);

CREATE INDEX IF NOT EXISTS idx_artists_source ON artists(source_id);
CREATE INDEX IF NOT EXISTS idx_albums_source ON albums(source_id);
CREATE INDEX IF NOT EXISTS idx_tracks_source ON tracks(source_id);
CREATE INDEX IF NOT EXISTS idx_tracks_album ON tracks(album_id);
CREATE INDEX IF NOT EXISTS idx_track_genres_genre ON track_genres(genre_id);
CREATE INDEX IF NOT EXISTS idx_playlists_source ON playlists(source_id);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _connect(db_path: Path, autocommit: bool = False) -> sqlite3.Connection:
    conn = sqlite3.connect(
        str(db_path),
        timeout=30.0,
        isolation_level=None if autocommit else "DEFERRED",
        check_same_thread=False  # Guarded by LibraryStore._lock or owned by one thread
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


# =============================================================================
# Row conversion
# =============================================================================

def _load_json_list(value: str | None) -> list[str]:
    if not value:
        return []
    try:
        data = json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return []
    return list(data) if isinstance(data, list) else []


def _source_from_row(row: sqlite3.Row) -> Source:
    return Source(
        id=row["id"],
        name=row["name"],
        kind=ServerKind(row["kind"]),
        url=row["url"],
        user_id=row["user_id"],
        is_active=bool(row["is_active"]),
        last_full_sync=row["last_full_sync"],
    )


def _artist_from_row(row: sqlite3.Row) -> Artist:
    return Artist(
        id=row["id"],
        source_id=row["source_id"],
        remote_id=row["remote_id"],
        name=row["name"],
        sort_name=row["sort_name"] or "",
        image_tag=row["image_tag"],
    )


def _album_from_row(row: sqlite3.Row) -> Album:
    return Album(
        id=row["id"],
        source_id=row["source_id"],
        remote_id=row["remote_id"],
        title=row["title"],
        sort_title=row["sort_title"] or "",
        production_year=row["production_year"],
        image_tag=row["image_tag"],
        image_kind=row["image_kind"],
        artist_name=row["artist_name"],
        artist_id=row["artist_id"],
    )


def _genre_from_row(row: sqlite3.Row) -> Genre:
    return Genre(
        id=row["id"],
        source_id=row["source_id"],
        raw_name=row["raw_name"],
        normalized_name=row["normalized_name"],
        umbrella_name=row["umbrella_name"],
    )


def _track_from_row(row: sqlite3.Row) -> Track:
    return Track(
        id=row["id"],
        source_id=row["source_id"],
        remote_id=row["remote_id"],
        title=row["title"],
        duration=row["duration"],
        track_number=row["track_number"],
        disc_number=row["disc_number"],
        date_added=row["date_added"],
        play_count=row["play_count"],
        liked=bool(row["liked"]),
        container=row["container"],
        album_id=row["album_id"],
        artist_id=row["artist_id"],
        raw_genres=_load_json_list(row["raw_genres"]),
        normalized_genres=_load_json_list(row["normalized_genres"]),
        umbrella_genres=_load_json_list(row["umbrella_genres"]),
    )


def _playlist_from_row(row: sqlite3.Row) -> Playlist:
    return Playlist(
        id=row["id"],
        source_id=row["source_id"],
        remote_id=row["remote_id"],
        name=row["name"],
        origin=row["origin"],
        summary=row["summary"],
        owner_id=row["owner_id"],
        is_read_only=bool(row["is_read_only"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


# =============================================================================
# Shared queries (used by both access paths)
# =============================================================================

def _select_artists(conn: sqlite3.Connection, source_id: int) -> list[Artist]:
    cursor = conn.execute(
        "SELECT * FROM artists WHERE source_id = ? ORDER BY id", (source_id,)
    )
    return [_artist_from_row(row) for row in cursor.fetchall()]


def _select_albums(conn: sqlite3.Connection, source_id: int) -> list[Album]:
    cursor = conn.execute(
        "SELECT * FROM albums WHERE source_id = ? ORDER BY id", (source_id,)
    )
    return [_album_from_row(row) for row in cursor.fetchall()]


def _select_genres(conn: sqlite3.Connection, source_id: int) -> list[Genre]:
    cursor = conn.execute(
        "SELECT * FROM genres WHERE source_id = ? ORDER BY id", (source_id,)
    )
    return [_genre_from_row(row) for row in cursor.fetchall()]


def _select_tracks(conn: sqlite3.Connection, source_id: int) -> list[Track]:
    cursor = conn.execute(
        "SELECT * FROM tracks WHERE source_id = ? ORDER BY id", (source_id,)
    )
    tracks = [_track_from_row(row) for row in cursor.fetchall()]
    by_id = {track.id: track for track in tracks}

    cursor = conn.execute("""
        SELECT tg.track_id, tg.genre_id FROM track_genres tg
        JOIN tracks t ON t.id = tg.track_id
        WHERE t.source_id = ?
        ORDER BY tg.track_id, tg.position
    """, (source_id,))
    for track_id, genre_id in cursor.fetchall():
        by_id[track_id].genre_ids.append(genre_id)

    return tracks


def _select_playlists(
    conn: sqlite3.Connection,
    source_id: int,
    origin: str | None = None
) -> list[Playlist]:
    if origin is None:
        cursor = conn.execute(
            "SELECT * FROM playlists WHERE source_id = ? ORDER BY name", (source_id,)
        )
    else:
        cursor = conn.execute(
            "SELECT * FROM playlists WHERE source_id = ? AND origin = ? ORDER BY name",
            (source_id, origin)
        )
    return [_playlist_from_row(row) for row in cursor.fetchall()]


# =============================================================================
# Unit of Work
# =============================================================================

class UnitOfWork:
    """
    Write access for one sync run.

    Obtained from LibraryStore.unit_of_work(); every statement runs inside
    the same IMMEDIATE transaction. Must be used from the thread that
    entered the context.

    save_* methods insert when entity.id is None and update otherwise,
    assigning entity.id on insert. They return the entity for chaining.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def artists(self, source_id: int) -> list[Artist]:
        return _select_artists(self._conn, source_id)

    def albums(self, source_id: int) -> list[Album]:
        return _select_albums(self._conn, source_id)

    def genres(self, source_id: int) -> list[Genre]:
        return _select_genres(self._conn, source_id)

    def tracks(self, source_id: int) -> list[Track]:
        return _select_tracks(self._conn, source_id)

    def playlists(self, source_id: int, origin: str | None = None) -> list[Playlist]:
        return _select_playlists(self._conn, source_id, origin)

    def find_tracks(self, source_id: int, remote_ids: Iterable[str]) -> dict[str, Track]:
        """
        Cached tracks for the given remote ids, keyed by remote id.

        genre_ids are not loaded; save_track() replaces them anyway.
        """
        found: dict[str, Track] = {}
        for remote_id in set(remote_ids):
            row = self._conn.execute(
                "SELECT * FROM tracks WHERE source_id = ? AND remote_id = ?",
                (source_id, remote_id)
            ).fetchone()
            if row is not None:
                found[remote_id] = _track_from_row(row)
        return found

    # -------------------------------------------------------------------------
    # Upserts
    # -------------------------------------------------------------------------

    def save_artist(self, artist: Artist) -> Artist:
        values = (
            artist.remote_id or None, artist.name, artist.sort_name,
            artist.image_tag, _now_iso()
        )
        if artist.id is None:
            cursor = self._conn.execute("""
                INSERT INTO artists (remote_id, name, sort_name, image_tag, updated_at, source_id)
                VALUES (?, ?, ?, ?, ?, ?)
            """, values + (artist.source_id,))
            artist.id = cursor.lastrowid
        else:
            self._conn.execute("""
                UPDATE artists SET remote_id = ?, name = ?, sort_name = ?,
                    image_tag = ?, updated_at = ?
                WHERE id = ?
            """, values + (artist.id,))
        return artist

    def save_album(self, album: Album) -> Album:
        values = (
            album.remote_id, album.title, album.sort_title, album.production_year,
            album.image_tag, album.image_kind, album.artist_name, album.artist_id,
            _now_iso()
        )
        if album.id is None:
            cursor = self._conn.execute("""
                INSERT INTO albums (
                    remote_id, title, sort_title, production_year, image_tag,
                    image_kind, artist_name, artist_id, updated_at, source_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, values + (album.source_id,))
            album.id = cursor.lastrowid
        else:
            self._conn.execute("""
                UPDATE albums SET remote_id = ?, title = ?, sort_title = ?,
                    production_year = ?, image_tag = ?, image_kind = ?,
                    artist_name = ?, artist_id = ?, updated_at = ?
                WHERE id = ?
            """, values + (album.id,))
        return album

    def save_genre(self, genre: Genre) -> Genre:
        values = (genre.raw_name, genre.normalized_name, genre.umbrella_name)
        if genre.id is None:
            cursor = self._conn.execute("""
                INSERT INTO genres (raw_name, normalized_name, umbrella_name, source_id)
                VALUES (?, ?, ?, ?)
            """, values + (genre.source_id,))
            genre.id = cursor.lastrowid
        else:
            self._conn.execute("""
                UPDATE genres SET raw_name = ?, normalized_name = ?, umbrella_name = ?
                WHERE id = ?
            """, values + (genre.id,))
        return genre

    def save_track(self, track: Track) -> Track:
        """Upsert a track and replace its genre associations."""
        values = (
            track.remote_id, track.title, track.duration, track.track_number,
            track.disc_number, track.date_added, track.play_count,
            1 if track.liked else 0, track.container, track.album_id,
            track.artist_id, json.dumps(track.raw_genres),
            json.dumps(track.normalized_genres), json.dumps(track.umbrella_genres),
            _now_iso()
        )
        if track.id is None:
            cursor = self._conn.execute("""
                INSERT INTO tracks (
                    remote_id, title, duration, track_number, disc_number,
                    date_added, play_count, liked, container, album_id, artist_id,
                    raw_genres, normalized_genres, umbrella_genres, updated_at,
                    source_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, values + (track.source_id,))
            track.id = cursor.lastrowid
        else:
            self._conn.execute("""
                UPDATE tracks SET remote_id = ?, title = ?, duration = ?,
                    track_number = ?, disc_number = ?, date_added = ?,
                    play_count = ?, liked = ?, container = ?, album_id = ?,
                    artist_id = ?, raw_genres = ?, normalized_genres = ?,
                    umbrella_genres = ?, updated_at = ?
                WHERE id = ?
            """, values + (track.id,))

        track.genre_ids = list(dict.fromkeys(track.genre_ids))
        self._conn.execute("DELETE FROM track_genres WHERE track_id = ?", (track.id,))
        self._conn.executemany(
            "INSERT INTO track_genres (track_id, genre_id, position) VALUES (?, ?, ?)",
            [(track.id, genre_id, i) for i, genre_id in enumerate(track.genre_ids)]
        )
        return track

    def save_playlist(self, playlist: Playlist) -> Playlist:
        if playlist.id is None:
            playlist.created_at = playlist.created_at or _now_iso()
        playlist.updated_at = _now_iso()

        values = (
            playlist.remote_id, playlist.name, playlist.summary, playlist.owner_id,
            1 if playlist.is_read_only else 0, playlist.origin,
            playlist.created_at, playlist.updated_at
        )
        if playlist.id is None:
            cursor = self._conn.execute("""
                INSERT INTO playlists (
                    remote_id, name, summary, owner_id, is_read_only, origin,
                    created_at, updated_at, source_id
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, values + (playlist.source_id,))
            playlist.id = cursor.lastrowid
        else:
            self._conn.execute("""
                UPDATE playlists SET remote_id = ?, name = ?, summary = ?,
                    owner_id = ?, is_read_only = ?, origin = ?, created_at = ?,
                    updated_at = ?
                WHERE id = ?
            """, values + (playlist.id,))
        return playlist

    # -------------------------------------------------------------------------
    # Deletes
    # -------------------------------------------------------------------------

    def _delete_ids(self, table: str, ids: Iterable[int]) -> int:
        rows = [(entity_id,) for entity_id in ids]
        if not rows:
            return 0
        self._conn.executemany(f"DELETE FROM {table} WHERE id = ?", rows)
        return len(rows)

    def delete_artists(self, ids: Iterable[int]) -> int:
        return self._delete_ids("artists", ids)

    def delete_albums(self, ids: Iterable[int]) -> int:
        return self._delete_ids("albums", ids)

    def delete_tracks(self, ids: Iterable[int]) -> int:
        return self._delete_ids("tracks", ids)

    def delete_playlists(self, ids: Iterable[int]) -> int:
        return self._delete_ids("playlists", ids)

    # -------------------------------------------------------------------------
    # Bulk state
    # -------------------------------------------------------------------------

    def set_liked(self, source_id: int, liked_remote_ids: Iterable[str]) -> int:
        """
        Set every track's liked flag to membership in liked_remote_ids.

        Returns:
            Number of tracks whose flag changed.
        """
        liked = set(liked_remote_ids)
        changes = [
            (1 if remote_id in liked else 0, track_id)
            for track_id, remote_id, current in self._conn.execute(
                "SELECT id, remote_id, liked FROM tracks WHERE source_id = ?",
                (source_id,)
            ).fetchall()
            if bool(current) != (remote_id in liked)
        ]
        self._conn.executemany("UPDATE tracks SET liked = ? WHERE id = ?", changes)
        return len(changes)

    def replace_playlist_items(
        self,
        playlist_id: int,
        items: Iterable[tuple[int, str | None]]
    ) -> int:
        """
        Replace a playlist's ordered membership.

        Args:
            playlist_id: Local playlist id.
            items: (local track id, server entry id) in playlist order.
        """
        rows = [
            (playlist_id, position, track_id, entry_id)
            for position, (track_id, entry_id) in enumerate(items)
        ]
        self._conn.execute("DELETE FROM playlist_tracks WHERE playlist_id = ?", (playlist_id,))
        self._conn.executemany("""
            INSERT INTO playlist_tracks (playlist_id, position, track_id, entry_id)
            VALUES (?, ?, ?, ?)
        """, rows)
        return len(rows)

    def mark_full_sync(self, source_id: int) -> None:
        self._conn.execute(
            "UPDATE sources SET last_full_sync = ? WHERE id = ?",
            (_now_iso(), source_id)
        )


# =============================================================================
# Library Store
# =============================================================================

class LibraryStore:
    """
    Thread-safe SQLite library cache.

    Uses a single persistent connection with thread locking for reads and
    source bookkeeping. All public methods acquire self._lock before
    executing. Sync writes use unit_of_work() instead.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

        if not db_path.parent.exists():
            raise PersistenceError(
                f"Parent directory does not exist: {db_path.parent}",
                details={"path": str(db_path.parent)}
            )

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Failed to initialize database: {e}",
                details={"path": str(db_path)}
            ) from e

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Get the persistent database connection as a context manager.

        The connection is created once and reused for all read operations.
        """
        if self._conn is None:
            self._conn = _connect(self.db_path)
            self._conn.execute("PRAGMA journal_mode = WAL")
        yield self._conn

    @contextmanager
    def _locked(self) -> Generator[sqlite3.Connection, None, None]:
        with self._lock:
            try:
                with self._get_connection() as conn:
                    yield conn
            except sqlite3.Error as e:
                # Drop half-applied writes so the shared connection holds no lock
                if self._conn is not None and self._conn.in_transaction:
                    self._conn.rollback()
                raise PersistenceError(
                    f"Library cache query failed: {e}",
                    details={"path": str(self.db_path), "original_error": str(e)}
                ) from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
            elif row[0] != DATABASE_VERSION:
                raise PersistenceError(
                    f"Database version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                    details={"expected": DATABASE_VERSION, "actual": row[0]}
                )
            conn.commit()

    # =========================================================================
    # Unit of Work
    # =========================================================================

    @contextmanager
    def unit_of_work(self) -> Generator[UnitOfWork, None, None]:
        """
        Open a dedicated write transaction for one sync run.

        Commits when the block exits normally and rolls back on any
        exception. sqlite3 errors surface as PersistenceError.

        Example:
            with store.unit_of_work() as uow:
                for artist in artists:
                    uow.save_artist(artist)
        """
        try:
            conn = _connect(self.db_path, autocommit=True)
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Failed to start write transaction: {e}",
                details={"path": str(self.db_path), "original_error": str(e)}
            ) from e

        try:
            yield UnitOfWork(conn)
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise PersistenceError(
                f"Library cache write failed: {e}",
                details={"path": str(self.db_path), "original_error": str(e)}
            ) from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    # =========================================================================
    # Source Operations
    # =========================================================================

    def add_source(
        self,
        name: str,
        kind: ServerKind,
        url: str,
        user_id: str | None = None,
        active: bool = False
    ) -> Source:
        """Register a new source. The first source ever added becomes active."""
        with self._locked() as conn:
            has_active = conn.execute(
                "SELECT 1 FROM sources WHERE is_active = 1"
            ).fetchone() is not None
            make_active = active or not has_active

            if make_active:
                conn.execute("UPDATE sources SET is_active = 0")
            cursor = conn.execute("""
                INSERT INTO sources (name, kind, url, user_id, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (name, kind.value, url, user_id, 1 if make_active else 0, _now_iso()))
            conn.commit()

            return Source(
                id=cursor.lastrowid, name=name, kind=kind, url=url,
                user_id=user_id, is_active=make_active
            )

    def get_source(self, source_id: int) -> Source:
        with self._locked() as conn:
            row = conn.execute("SELECT * FROM sources WHERE id = ?", (source_id,)).fetchone()
        if row is None:
            raise SourceNotFoundError(
                f"No source with id {source_id}",
                details={"source_id": source_id}
            )
        return _source_from_row(row)

    def get_source_by_name(self, name: str) -> Source | None:
        with self._locked() as conn:
            row = conn.execute("SELECT * FROM sources WHERE name = ?", (name,)).fetchone()
        return _source_from_row(row) if row else None

    def list_sources(self) -> list[Source]:
        with self._locked() as conn:
            rows = conn.execute("SELECT * FROM sources ORDER BY id").fetchall()
        return [_source_from_row(row) for row in rows]

    def set_active_source(self, source_id: int) -> Source:
        """Make source_id the only active source."""
        with self._locked() as conn:
            exists = conn.execute("SELECT 1 FROM sources WHERE id = ?", (source_id,)).fetchone()
            if exists is None:
                raise SourceNotFoundError(
                    f"No source with id {source_id}",
                    details={"source_id": source_id}
                )
            conn.execute("UPDATE sources SET is_active = (id = ?)", (source_id,))
            conn.commit()
        return self.get_source(source_id)

    def get_active_source(self) -> Source | None:
        with self._locked() as conn:
            row = conn.execute("SELECT * FROM sources WHERE is_active = 1 LIMIT 1").fetchone()
        return _source_from_row(row) if row else None

    def ensure_sources(self, servers: "Iterable[ServerConfig]") -> list[Source]:
        """
        Register configured servers by name, updating connection info.

        A server flagged active in config.yaml becomes the active source.
        Sources no longer in the config are left untouched.

        Returns:
            The sources, in config order.
        """
        sources: list[Source] = []
        configured_active: Source | None = None

        for server in servers:
            existing = self.get_source_by_name(server.name)
            if existing is None:
                source = self.add_source(
                    server.name, server.kind, server.url, server.user_id
                )
            else:
                with self._locked() as conn:
                    conn.execute(
                        "UPDATE sources SET kind = ?, url = ?, user_id = ? WHERE id = ?",
                        (server.kind.value, server.url, server.user_id, existing.id)
                    )
                    conn.commit()
                source = self.get_source(existing.id)
            sources.append(source)
            if server.active:
                configured_active = source

        if configured_active is not None and not configured_active.is_active:
            self.set_active_source(configured_active.id)
            sources = [self.get_source(s.id) for s in sources]

        return sources

    # =========================================================================
    # Library Reads
    # =========================================================================

    def list_artists(self, source_id: int) -> list[Artist]:
        with self._locked() as conn:
            return _select_artists(conn, source_id)

    def list_albums(self, source_id: int) -> list[Album]:
        with self._locked() as conn:
            return _select_albums(conn, source_id)

    def list_genres(self, source_id: int) -> list[Genre]:
        with self._locked() as conn:
            return _select_genres(conn, source_id)

    def list_tracks(self, source_id: int) -> list[Track]:
        with self._locked() as conn:
            return _select_tracks(conn, source_id)

    def list_playlists(self, source_id: int, origin: str | None = None) -> list[Playlist]:
        with self._locked() as conn:
            return _select_playlists(conn, source_id, origin)

    def get_track(self, source_id: int, remote_id: str) -> Track | None:
        with self._locked() as conn:
            row = conn.execute(
                "SELECT * FROM tracks WHERE source_id = ? AND remote_id = ?",
                (source_id, remote_id)
            ).fetchone()
            if row is None:
                return None
            track = _track_from_row(row)
            track.genre_ids = [
                r[0] for r in conn.execute(
                    "SELECT genre_id FROM track_genres WHERE track_id = ? ORDER BY position",
                    (track.id,)
                ).fetchall()
            ]
            return track

    def track_genres(self, track_id: int) -> list[Genre]:
        """Genres associated with a track, in association order."""
        with self._locked() as conn:
            rows = conn.execute("""
                SELECT g.* FROM genres g
                JOIN track_genres tg ON tg.genre_id = g.id
                WHERE tg.track_id = ?
                ORDER BY tg.position
            """, (track_id,)).fetchall()
        return [_genre_from_row(row) for row in rows]

    def playlist_items(self, playlist_id: int) -> list[tuple[str, str | None]]:
        """(track remote id, entry id) pairs in playlist order."""
        with self._locked() as conn:
            rows = conn.execute("""
                SELECT t.remote_id, pt.entry_id FROM playlist_tracks pt
                JOIN tracks t ON t.id = pt.track_id
                WHERE pt.playlist_id = ?
                ORDER BY pt.position
            """, (playlist_id,)).fetchall()
        return [(row[0], row[1]) for row in rows]

    def get_library_stats(self, source_id: int) -> dict[str, Any]:
        """Entity counts for one source, used by the stats command."""
        with self._locked() as conn:
            def count(sql: str) -> int:
                return conn.execute(sql, (source_id,)).fetchone()[0]

            return {
                "artists": count("SELECT COUNT(*) FROM artists WHERE source_id = ?"),
                "placeholder_artists": count(
                    "SELECT COUNT(*) FROM artists WHERE source_id = ? AND remote_id IS NULL"
                ),
                "albums": count("SELECT COUNT(*) FROM albums WHERE source_id = ?"),
                "genres": count("SELECT COUNT(*) FROM genres WHERE source_id = ?"),
                "tracks": count("SELECT COUNT(*) FROM tracks WHERE source_id = ?"),
                "liked_tracks": count(
                    "SELECT COUNT(*) FROM tracks WHERE source_id = ? AND liked = 1"
                ),
                "playlists": count("SELECT COUNT(*) FROM playlists WHERE source_id = ?"),
            }
