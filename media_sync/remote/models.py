"""
Data models for remote media server records.

This module defines immutable dataclasses for the records the media server
API client hands to the sync engine. They are the engine's entire view of
the server: the fetcher, importer, playlist syncer and incremental sync
only ever see these types, never raw JSON or HTTP.

Design Decisions:
    - All dataclasses are frozen (immutable); a snapshot cannot be modified
      while it is being imported
    - Values are kept close to the wire format: durations stay in ticks,
      dates stay as strings and genres stay as sent (possibly comma-joined).
      Converting them is the importer's job, so a malformed value never
      fails record construction
    - from_api() factories accept the PascalCase JSON shared by Jellyfin
      and Emby

Usage:
    from media_sync.remote.models import TrackRecord

    track = TrackRecord.from_api(item_json)
    print(f"{track.name} on {track.album_name}")
"""

from dataclasses import dataclass, field
from typing import Any


def _string_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(v for v in value if isinstance(v, str))


def _string_dict(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {k: v for k, v in value.items() if isinstance(k, str) and isinstance(v, str)}


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


@dataclass(frozen=True)
class ArtistRecord:
    """
    An artist as listed by the server.

    Attributes:
        id: Stable remote id.
        name: Display name. Example: "Pink Floyd"
        sort_name: Name used for ordering, empty if the server sent none.
        image_tags: Image kind -> cache tag. Example: {"Primary": "9f2c..."}
    """
    id: str
    name: str
    sort_name: str = ""
    image_tags: dict[str, str] = field(default_factory=dict, hash=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ArtistRecord":
        return cls(
            id=data["Id"],
            name=data.get("Name") or "",
            sort_name=data.get("SortName") or "",
            image_tags=_string_dict(data.get("ImageTags")),
        )


@dataclass(frozen=True)
class AlbumRecord:
    """
    An album as listed by the server.

    Album payloads link to their artist by NAME only (artist_name), so the
    importer resolves the link against the artists it has already cached.

    Attributes:
        id: Stable remote id.
        name: Album title. Example: "The Dark Side of the Moon"
        sort_name: Title used for ordering.
        artist_name: Album artist as a display name. Example: "Pink Floyd"
        production_year: Release year. Example: 1973
        image_tags: Image kind -> cache tag. Kinds seen in the wild include
                    "Primary", "Thumb", "Backdrop" (and lowercase variants).
    """
    id: str
    name: str
    sort_name: str = ""
    artist_name: str | None = None
    production_year: int | None = None
    image_tags: dict[str, str] = field(default_factory=dict, hash=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "AlbumRecord":
        artist_name = data.get("AlbumArtist")
        if not artist_name:
            artists = _string_tuple(data.get("Artists"))
            artist_name = artists[0] if artists else None

        return cls(
            id=data["Id"],
            name=data.get("Name") or "",
            sort_name=data.get("SortName") or "",
            artist_name=artist_name,
            production_year=_optional_int(data.get("ProductionYear")),
            image_tags=_string_dict(data.get("ImageTags")),
        )


@dataclass(frozen=True)
class TrackRecord:
    """
    A track (audio item) as listed by the server.

    Attributes:
        id: Stable remote id.
        name: Track title.
        album_id: Remote id of the album, if any.
        album_name: Album title as a display name.
        artists: Artist names, first one is the primary artist.
        genres: Genre strings as sent. One element may hold several genres
                joined by commas ("rock, alternative rock").
        run_time_ticks: Duration in 100ns ticks (10,000,000 per second).
                        Kept raw; may be None, 0 or malformed.
        index_number: Track number within the disc.
        disc_number: Disc number.
        date_created: ISO 8601 timestamp the item was added to the server.
                      Jellyfin sends 7 fractional digits.
        play_count: Times played by the current user.
        is_favorite: Whether the current user liked the track.
        container: Audio container. Example: "flac"
        playlist_item_id: Entry id when the record came from a playlist listing.
    """
    id: str
    name: str
    album_id: str | None = None
    album_name: str | None = None
    artists: tuple[str, ...] = ()
    genres: tuple[str, ...] = ()
    run_time_ticks: Any = None
    index_number: int | None = None
    disc_number: int | None = None
    date_created: str | None = None
    play_count: int | None = None
    is_favorite: bool = False
    container: str | None = None
    playlist_item_id: str | None = None

    @property
    def primary_artist(self) -> str | None:
        return self.artists[0] if self.artists else None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "TrackRecord":
        user_data = data.get("UserData") or {}
        play_count = data.get("PlayCount")
        if play_count is None:
            play_count = user_data.get("PlayCount")

        return cls(
            id=data["Id"],
            name=data.get("Name") or "",
            album_id=data.get("AlbumId"),
            album_name=data.get("Album"),
            artists=_string_tuple(data.get("Artists")),
            genres=_string_tuple(data.get("Genres")),
            run_time_ticks=data.get("RunTimeTicks"),
            index_number=_optional_int(data.get("IndexNumber")),
            disc_number=_optional_int(data.get("ParentIndexNumber", data.get("DiscNumber"))),
            date_created=data.get("DateCreated"),
            play_count=_optional_int(play_count),
            is_favorite=bool(user_data.get("IsFavorite", False)),
            container=data.get("Container"),
            playlist_item_id=data.get("PlaylistItemId"),
        )


@dataclass(frozen=True)
class PlaylistRecord:
    """
    A playlist as listed by the server.

    path and location_type feed the read-only heuristic: playlists backed
    by an .m3u/.m3u8 file in the media library cannot be edited through
    the API.

    Attributes:
        id: Stable remote id.
        name: Playlist name.
        summary: Free-text description (server "Overview").
        owner_user_id: Server user that owns the playlist.
        path: Server-side file path, if the server exposes one.
        location_type: "FileSystem" or "Virtual" (Jellyfin).
        date_created: ISO timestamp, if sent.
    """
    id: str
    name: str
    summary: str | None = None
    owner_user_id: str | None = None
    path: str | None = None
    location_type: str | None = None
    date_created: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PlaylistRecord":
        return cls(
            id=data["Id"],
            name=data.get("Name") or "",
            summary=data.get("Overview"),
            owner_user_id=data.get("OwnerUserId"),
            path=data.get("Path"),
            location_type=data.get("LocationType"),
            date_created=data.get("DateCreated"),
        )
