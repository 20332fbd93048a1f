"""
Genre classification for the library cache.

Media servers hand genres over as free text typed by whoever tagged the
files, so the same genre shows up as "Drum & Bass", "drum-and-bass" and
"DRUM AND BASS". This module turns those spellings into:

    - a normalized lookup key, used as the identity of a cached Genre
    - an umbrella category (Electronic, Rock, Metal, ...) for coarse
      filtering and display

All functions are pure and stateless.

Usage:
    from media_sync.sync.genres import classify_genres

    result = classify_genres(["rock, alternative rock", "Post-Hardcore"])
    result.raw         # ("rock", "alternative rock", "Post-Hardcore")
    result.normalized  # ("rock", "alternative rock", "post hardcore")
    result.umbrella    # ("Rock", "Rock", "Rock")
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable

from media_sync.core.models import UNKNOWN_GENRE


# Characters trimmed from both ends of a genre after the parenthetical cut
_EDGE_PUNCTUATION = "()[]{}.,;:!?"
_WHITESPACE_RE = re.compile(r"\s+")


# =============================================================================
# Static umbrella table
# =============================================================================

# Keys are written the way they usually appear in tags; the lookup table
# below is built from their normalized form.
_UMBRELLA_SOURCE: dict[str, str] = {
    # Electronic family
    "acid house": "Electronic",
    "acid jazz": "Electronic",
    "acid techno": "Electronic",
    "acid trance": "Electronic",
    "acidcore": "Electronic",
    "acid breaks": "Electronic",
    "afro house": "Electronic",
    "ambient": "Electronic",
    "ambient dub": "Electronic",
    "ambient techno": "Electronic",
    "ambient trance": "Electronic",
    "bass": "Electronic",
    "bass music": "Electronic",
    "breakbeat": "Electronic",
    "breaks": "Electronic",
    "big beat": "Electronic",
    "chillout": "Electronic",
    "chillwave": "Electronic",
    "club": "Electronic",
    "dance": "Electronic",
    "darkstep": "Electronic",
    "deep house": "Electronic",
    "disco house": "Electronic",
    "downtempo": "Electronic",
    "drum & bass": "Electronic",
    "drum n bass": "Electronic",
    "drum and bass": "Electronic",
    "dnb": "Electronic",
    "d'n'b": "Electronic",
    "dub": "Electronic",
    "dub techno": "Electronic",
    "dubstep": "Electronic",
    "edm": "Electronic",
    "electro": "Electronic",
    "electro house": "Electronic",
    "electronica": "Electronic",
    "electronic": "Electronic",
    "electronique": "Electronic",
    "experimental electronic": "Electronic",
    "future bass": "Electronic",
    "future house": "Electronic",
    "garage": "Electronic",
    "grime": "Electronic",
    "hard house": "Electronic",
    "hard trance": "Electronic",
    "hardcore": "Electronic",
    "hardcore breaks": "Electronic",
    "hardstyle": "Electronic",
    "house": "Electronic",
    "idm": "Electronic",
    "industrial": "Electronic",
    "jungle": "Electronic",
    "jump up": "Electronic",
    "liquid funk": "Electronic",
    "melodic house": "Electronic",
    "melodic house and techno": "Electronic",
    "melodic techno": "Electronic",
    "minimal": "Electronic",
    "minimal techno": "Electronic",
    "minimal tech house": "Electronic",
    "neurofunk": "Electronic",
    "peak time techno": "Electronic",
    "progressive house": "Electronic",
    "progressive trance": "Electronic",
    "psybient": "Electronic",
    "psytrance": "Electronic",
    "synthwave": "Electronic",
    "tech house": "Electronic",
    "techno": "Electronic",
    "trance": "Electronic",
    "uk garage": "Electronic",
    "vaporwave": "Electronic",
    "dancefloor drum and bass": "Electronic",
    "ambient house": "Electronic",
    "atmospheric drum and bass": "Electronic",
    "bass house": "Electronic",
    "big room house": "Electronic",
    "breakbeat hardcore": "Electronic",
    "breakcore": "Electronic",
    "breakstep": "Electronic",
    "brostep": "Electronic",
    "chillstep": "Electronic",
    "complextro": "Electronic",
    "dark ambient": "Electronic",
    "drumstep": "Electronic",
    "electroclash": "Electronic",
    "electropop": "Electronic",
    "fidget house": "Electronic",
    "glitch": "Electronic",
    "glitch hop": "Electronic",
    "happy hardcore": "Electronic",
    "liquid drum and bass": "Electronic",
    "speedcore": "Electronic",
    "techstep": "Electronic",

    # Rock family
    "alternative": "Rock",
    "alternative rock": "Rock",
    "alternative metal": "Rock",
    "art rock": "Rock",
    "blues rock": "Rock",
    "classic rock": "Rock",
    "garage rock": "Rock",
    "glam rock": "Rock",
    "hard rock": "Rock",
    "indie rock": "Rock",
    "math rock": "Rock",
    "nu metal": "Rock",
    "pop.rock": "Rock",
    "post-hardcore": "Rock",
    "progressive rock": "Rock",
    "psychedelic rock": "Rock",
    "rock": "Rock",
    "soft rock": "Rock",
    "stoner rock": "Rock",
    "symphonic rock": "Rock",
    "acid rock": "Rock",
    "acoustic rock": "Rock",
    "arena rock": "Rock",
    "country rock": "Rock",
    "dance-rock": "Rock",
    "deathrock": "Rock",
    "desert rock": "Rock",
    "electronic rock": "Rock",
    "folk rock": "Rock",
    "gothic rock": "Rock",
    "noise rock": "Rock",
    "post-rock": "Rock",
    "shoegaze": "Rock",
    "southern rock": "Rock",
    "surf rock": "Rock",
    "yacht rock": "Rock",

    # Punk
    "punk": "Punk",
    "pop punk": "Punk",
    "anarcho-punk": "Punk",
    "ska punk": "Punk",
    "crust punk": "Punk",
    "d-beat": "Punk",
    "hardcore punk": "Punk",
    "oi!": "Punk",
    "post-punk": "Punk",

    # Metal family
    "metal": "Metal",
    "black metal": "Metal",
    "death metal": "Metal",
    "doom metal": "Metal",
    "folk metal": "Metal",
    "heavy metal": "Metal",
    "industrial metal": "Metal",
    "melodic death metal": "Metal",
    "metalcore": "Metal",
    "power metal": "Metal",
    "progressive metal": "Metal",
    "speed metal": "Metal",
    "thrash metal": "Metal",
    "atmospheric black metal": "Metal",
    "blackened death metal": "Metal",
    "brutal death metal": "Metal",
    "deathcore": "Metal",
    "drone metal": "Metal",
    "funeral doom metal": "Metal",
    "gothic metal": "Metal",
    "groove metal": "Metal",
    "melodic black metal": "Metal",
    "post-metal": "Metal",
    "sludge metal": "Metal",
    "symphonic metal": "Metal",

    # Hip-Hop family
    "abstract hip hop": "Hip-Hop",
    "alternative hip hop": "Hip-Hop",
    "aussie hip-hop": "Hip-Hop",
    "boom bap": "Hip-Hop",
    "conscious hip hop": "Hip-Hop",
    "dirty south": "Hip-Hop",
    "east coast hip hop": "Hip-Hop",
    "gangsta rap": "Hip-Hop",
    "g-funk": "Hip-Hop",
    "hip hop": "Hip-Hop",
    "hiphop": "Hip-Hop",
    "mc raggamuffin hip-hop": "Hip-Hop",
    "pop rap": "Hip-Hop",
    "rap": "Hip-Hop",
    "rap and hip-hop": "Hip-Hop",
    "trap": "Hip-Hop",
    "trip hop": "Hip-Hop",
    "turntablism": "Hip-Hop",
    "west coast hip hop": "Hip-Hop",
    "cloud rap": "Hip-Hop",
    "drill": "Hip-Hop",
    "emo rap": "Hip-Hop",
    "experimental hip hop": "Hip-Hop",
    "hardcore hip hop": "Hip-Hop",
    "mumble rap": "Hip-Hop",
    "phonk": "Hip-Hop",
    "plugg nb": "Hip-Hop",
    "rage": "Hip-Hop",
    "soundcloud rap": "Hip-Hop",
    "trap metal": "Hip-Hop",

    # R&B / Soul
    "r&b": "R&B",
    "funk": "R&B",
    "neo soul": "R&B",
    "soul": "R&B",
    "contemporary r&b": "R&B",
    "contemporary r and b": "R&B",
    "deep funk": "R&B",
    "motown": "R&B",
    "quiet storm": "R&B",
    "southern soul": "R&B",

    # Pop family
    "pop": "Pop",
    "alternative pop": "Pop",
    "chamber pop": "Pop",
    "country pop": "Pop",
    "dance pop": "Pop",
    "indie pop": "Pop",
    "j-pop": "Pop",
    "jpop": "Pop",
    "k-pop": "Pop",
    "synthpop": "Pop",
    "art pop": "Pop",
    "baroque pop": "Pop",
    "bedroom pop": "Pop",
    "britpop": "Pop",
    "bubblegum pop": "Pop",
    "dream pop": "Pop",
    "jangle pop": "Pop",
    "new wave": "Pop",
    "power pop": "Pop",

    # Blues
    "blues": "Blues",
    "acoustic blues": "Blues",
    "chicago blues": "Blues",
    "delta blues": "Blues",
    "electric blues": "Blues",
    "texas blues": "Blues",

    # Classical family
    "classical": "Classical",
    "baroque": "Classical",
    "classique": "Classical",
    "concerto": "Classical",
    "concertos pour clavier": "Classical",
    "musique concertante": "Classical",
    "opera": "Classical",
    "romantic": "Classical",
    "romantic classical": "Classical",
    "symphonic": "Classical",
    "chamber music": "Classical",
    "chamber": "Classical",
    "medieval": "Classical",
    "renaissance": "Classical",
    "sonata": "Classical",
    "symphony": "Classical",

    # Folk / Acoustic
    "folk": "Folk",
    "acoustic": "Folk",
    "singer-songwriter": "Folk",
    "alternative folk": "Folk",
    "appalachian folk": "Folk",
    "celtic folk": "Folk",
    "contemporary folk": "Folk",
    "indie folk": "Folk",
    "traditional folk": "Folk",

    # Country family
    "country": "Country",
    "bluegrass": "Country",
    "americana": "Country",
    "alternative country": "Country",
    "honky tonk": "Country",
    "outlaw country": "Country",
    "texas country": "Country",

    # Jazz family
    "jazz": "Jazz",
    "bebop": "Jazz",
    "fusion": "Jazz",
    "j-fusion": "Jazz",
    "jazz fusion": "Jazz",
    "smooth jazz": "Jazz",
    "afro-cuban jazz": "Jazz",
    "avant-garde jazz": "Jazz",
    "cool jazz": "Jazz",
    "free jazz": "Jazz",
    "gypsy jazz": "Jazz",
    "hard bop": "Jazz",
    "latin jazz": "Jazz",
    "swing": "Jazz",
    "vocal jazz": "Jazz",

    # Reggae family
    "reggae": "Reggae",
    "reggea": "Reggae",
    "ragga": "Reggae",
    "roots reggae": "Reggae",
    "ska": "Reggae",
    "dancehall": "Reggae",
    "lovers rock": "Reggae",
    "rocksteady": "Reggae",

    # Latin family
    "latin": "Latin",
    "reggaeton": "Latin",
    "salsa": "Latin",
    "bachata": "Latin",
    "cumbia": "Latin",
    "bossa nova": "Latin",
    "merengue": "Latin",
    "samba": "Latin",
    "tango": "Latin",

    # Soundtrack
    "soundtrack": "Soundtrack",
    "ost": "Soundtrack",
    "video game music": "Soundtrack",

    # World family
    "world": "World",
    "afrobeat": "World",
    "afrobeats": "World",
    "asian music": "World",
    "asie": "World",
    "japon": "World",
    "j-rock": "World",
    "klezmer": "World",
    "musiques du monde": "World",
    "bhangra": "World",
    "fado": "World",
    "flamenco": "World",
    "gamelan": "World",
    "qawwali": "World",
    "raï": "World",

    # Unknown fallback
    "unknown": "Unknown",
}


# =============================================================================
# Normalization
# =============================================================================

def _fold_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize_genre(genre: str) -> str:
    """
    Produce the canonical lookup key for a genre string.

    Steps:
        1. Lowercase and trim
        2. Drop everything from the first "(" ("techno (peak time)" -> "techno")
        3. Trim bracket and punctuation characters from both ends
        4. Hyphens and periods become spaces, "&" becomes "and"
        5. Collapse whitespace runs and fold diacritics ("raï" -> "rai")

    Args:
        genre: Raw genre as received from the server.

    Returns:
        The normalized key. May be empty for inputs like "()" or "  ".

    Example:
        >>> normalize_genre("Drum & Bass")
        'drum and bass'
        >>> normalize_genre("drum-and-bass")
        'drum and bass'
    """
    normalized = genre.lower().strip()

    paren = normalized.find("(")
    if paren != -1:
        normalized = normalized[:paren].strip()

    normalized = normalized.strip(_EDGE_PUNCTUATION)

    normalized = normalized.replace("-", " ")
    normalized = normalized.replace(".", " ")
    normalized = normalized.replace("&", "and")

    normalized = _WHITESPACE_RE.sub(" ", normalized)

    return _fold_diacritics(normalized).strip()


def _build_umbrella_map() -> dict[str, str]:
    umbrella_map: dict[str, str] = {}
    for spelling, umbrella in _UMBRELLA_SOURCE.items():
        umbrella_map.setdefault(normalize_genre(spelling), umbrella)
    return umbrella_map


UMBRELLA_MAP: dict[str, str] = _build_umbrella_map()

UMBRELLA_CATEGORIES: tuple[str, ...] = tuple(dict.fromkeys(_UMBRELLA_SOURCE.values()))


# =============================================================================
# Public API
# =============================================================================

def resolve_umbrella(genre: str) -> str:
    """Map a raw genre to its umbrella category, or "Unknown" if unmapped."""
    return UMBRELLA_MAP.get(normalize_genre(genre), UNKNOWN_GENRE)


def split_genres(genres: Iterable[str]) -> list[str]:
    """
    Flatten comma-joined genre fields into individual genres.

    Some servers collapse a multi-valued tag into one string
    ("techno, electro, minimal"). Every element is split on commas,
    trimmed, and empty pieces are dropped. Order is preserved.
    """
    return [
        piece.strip()
        for value in genres
        for piece in value.split(",")
        if piece.strip()
    ]


@dataclass(frozen=True)
class GenreClassification:
    """
    Denormalized genre arrays stored on every cached Track.

    The three tuples are index-aligned: raw[i] normalizes to normalized[i]
    and resolves to umbrella[i]. A track with no genres carries empty raw
    and normalized tuples and umbrella == ("Unknown",).
    """
    raw: tuple[str, ...]
    normalized: tuple[str, ...]
    umbrella: tuple[str, ...]


def classify_genres(genres: Iterable[str]) -> GenreClassification:
    """Split, normalize and resolve a track's genre list in one pass."""
    raw = tuple(split_genres(genres))
    if not raw:
        return GenreClassification(raw=(), normalized=(), umbrella=(UNKNOWN_GENRE,))

    return GenreClassification(
        raw=raw,
        normalized=tuple(normalize_genre(g) for g in raw),
        umbrella=tuple(resolve_umbrella(g) for g in raw),
    )
