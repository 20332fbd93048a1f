"""
Local cache entities for media-sync.

These dataclasses mirror the rows of the library cache. Unlike the remote
record types in media_sync.remote.models they are mutable: the importer
finds or creates an entity, overwrites its attributes from the remote
snapshot, and hands it back to the store, which fills in the local id on
first save.

Every entity belongs to exactly one Source and is identified there by
its remote id, except placeholder Artists (remote_id is None) created by
incremental sync until the next full sync resolves them by name.

Usage:
    from media_sync.core.models import Artist, Track

    artist = Artist(source_id=1, remote_id="a1", name="Pink Floyd")
    store_uow.save_artist(artist)
    artist.id  # assigned by the store
"""

from dataclasses import dataclass, field
from enum import Enum


UNKNOWN_GENRE = "Unknown"
UNKNOWN_GENRE_KEY = "unknown"


class ServerKind(str, Enum):
    """
    Media server flavour.

    Both speak the same REST dialect; they differ in how playlists are
    stored, which drives the read-only heuristic in the playlist syncer.
    """
    JELLYFIN = "jellyfin"
    EMBY = "emby"


@dataclass
class Source:
    """
    One remote server connection.

    Attributes:
        name: Unique display name (matches the server name in config.yaml).
        kind: Server flavour.
        url: Base URL of the server.
        user_id: Server-side user id, if known.
        is_active: Exactly one source may be active; the UI reads its partition.
        last_full_sync: ISO timestamp of the last committed full sync.
        id: Local id, None until saved.
    """
    name: str
    kind: ServerKind
    url: str
    user_id: str | None = None
    is_active: bool = False
    last_full_sync: str | None = None
    id: int | None = None


@dataclass
class Artist:
    source_id: int
    remote_id: str | None
    name: str
    sort_name: str = ""
    image_tag: str | None = None
    id: int | None = None

    @property
    def is_placeholder(self) -> bool:
        """True for name-only artists created by incremental sync."""
        return not self.remote_id


@dataclass
class Album:
    """
    A cached album.

    artist_id is a lookup-only link resolved by artist name; deleting the
    artist leaves the album unlinked rather than deleting it.
    image_kind records which image type image_tag came from
    ("Primary", "Thumb", ...).
    """
    source_id: int
    remote_id: str
    title: str
    sort_title: str = ""
    production_year: int | None = None
    image_tag: str | None = None
    image_kind: str | None = None
    artist_name: str | None = None
    artist_id: int | None = None
    id: int | None = None


@dataclass
class Genre:
    """
    A cached genre, unique per source by normalized_name.

    raw_name is the spelling last seen from the server; two spellings that
    normalize identically share one Genre.
    """
    source_id: int
    raw_name: str
    normalized_name: str
    umbrella_name: str
    id: int | None = None


@dataclass
class Track:
    """
    A cached track.

    Attributes:
        duration: Seconds (float). 0 when the server sent nothing usable.
        date_added: ISO timestamp from the server's creation date, if any.
        container: Audio container reported by the server ("flac", "mp3", ...).
        album_id / artist_id: Local ids, None when unresolved.
        genre_ids: Local ids of associated Genres; never empty once saved.
        raw_genres / normalized_genres / umbrella_genres: Denormalized genre
            arrays kept for filtering without joins.
    """
    source_id: int
    remote_id: str
    title: str
    duration: float = 0.0
    track_number: int | None = None
    disc_number: int | None = None
    date_added: str | None = None
    play_count: int = 0
    liked: bool = False
    container: str | None = None
    album_id: int | None = None
    artist_id: int | None = None
    genre_ids: list[int] = field(default_factory=list)
    raw_genres: list[str] = field(default_factory=list)
    normalized_genres: list[str] = field(default_factory=list)
    umbrella_genres: list[str] = field(default_factory=list)
    id: int | None = None


@dataclass
class Playlist:
    """
    A cached playlist.

    origin tags where the playlist came from (the server kind for synced
    playlists); playlist sync only reconciles playlists of its own origin.
    """
    source_id: int
    remote_id: str
    name: str
    origin: str
    summary: str | None = None
    owner_id: str | None = None
    is_read_only: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    id: int | None = None
