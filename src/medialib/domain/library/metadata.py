"""
Embedded tag reading and writing.

Normalizes ID3, MP4 and Vorbis/ASF property tags into TagData using Mutagen,
writes TagData back with one strategy per container family, and handles
embedded front covers.
"""

import os
import shutil
from pathlib import Path
from typing import Callable, Optional, Union

from loguru import logger
from mutagen import File as MutagenFile
from mutagen.asf import ASF
from mutagen.flac import FLAC, Picture
from mutagen.id3 import (
    APIC,
    COMM,
    ID3,
    ID3NoHeaderError,
    POPM,
    TALB,
    TCOM,
    TCON,
    TDRC,
    TIT2,
    TPE1,
    TPE2,
    TPOS,
    TRCK,
    TXXX,
)
from mutagen.mp4 import MP4, MP4Cover, MP4FreeForm, MP4Tags
from mutagen.wave import WAVE

from .attributes import read_native_attributes
from .models import MAX_RATING, TEXT_FIELDS, TagData, clamp_rating

PathLike = Union[str, os.PathLike]

# MP4 "rate" is a 32-bit integer data atom, handled like "tmpo".
_MP4_ATOMS = MP4Tags._MP4Tags__atoms
_MP4_ATOMS.setdefault(b"rate", _MP4_ATOMS[b"tmpo"][:2] + (4,))

# Rating 0..10 -> POPM byte. Fixed table shared with other players.
RATING_BYTES = (0, 1, 64, 96, 128, 160, 196, 208, 224, 240, 255)

# Email identifying the POPM frame that Windows and most taggers display.
POPM_EMAIL = "Windows Media Player 9 Series"

ID3_EXTENSIONS = (".mp3", ".wav")
MP4_EXTENSIONS = (".m4a", ".mp4", ".aac")
VORBIS_EXTENSIONS = (".flac", ".ogg", ".opus")
ASF_EXTENSIONS = (".wma",)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8"

# TXXX descriptions / MP4 freeform names for identifier fields
IDENTIFIER_DESCRIPTIONS = {
    "mb_album_id": "MusicBrainz Album Id",
    "mb_artist_id": "MusicBrainz Artist Id",
    "mb_track_id": "MusicBrainz Track Id",
    "acoustid_id": "AcoustID Id",
    "acoustid_fingerprint": "AcoustID Fingerprint",
}

MP4_FREEFORM_PREFIX = "----:com.apple.iTunes:"

MP4_TEXT_ATOMS = {
    "title": "\xa9nam",
    "artist": "\xa9ART",
    "album": "\xa9alb",
    "genre": "\xa9gen",
    "comment": "\xa9cmt",
    "album_artist": "aART",
    "composer": "\xa9wrt",
}

ID3_TEXT_FRAMES = {
    "title": TIT2,
    "artist": TPE1,
    "album": TALB,
    "genre": TCON,
    "album_artist": TPE2,
    "composer": TCOM,
}

# Property map keys: first key is written, all are read.
VORBIS_KEYS = {
    "title": ["TITLE"],
    "artist": ["ARTIST"],
    "album": ["ALBUM"],
    "genre": ["GENRE"],
    "comment": ["COMMENT", "DESCRIPTION"],
    "album_artist": ["ALBUMARTIST", "ALBUM ARTIST"],
    "composer": ["COMPOSER"],
    "year": ["DATE", "YEAR"],
    "track": ["TRACKNUMBER"],
    "track_total": ["TRACKTOTAL", "TOTALTRACKS"],
    "disc": ["DISCNUMBER"],
    "disc_total": ["DISCTOTAL", "TOTALDISCS"],
    "mb_album_id": ["MUSICBRAINZ_ALBUMID"],
    "mb_artist_id": ["MUSICBRAINZ_ARTISTID"],
    "mb_track_id": ["MUSICBRAINZ_TRACKID"],
    "acoustid_id": ["ACOUSTID_ID"],
    "acoustid_fingerprint": ["ACOUSTID_FINGERPRINT"],
    "rating": ["RATING"],
}

ASF_KEYS = {
    "title": ["Title"],
    "artist": ["Author"],
    "album": ["WM/AlbumTitle"],
    "genre": ["WM/Genre"],
    "comment": ["Description"],
    "album_artist": ["WM/AlbumArtist"],
    "composer": ["WM/Composer"],
    "year": ["WM/Year"],
    "track": ["WM/TrackNumber"],
    "track_total": ["TotalTracks"],
    "disc": ["WM/PartOfSet"],
    "disc_total": ["TotalDiscs"],
    "mb_album_id": ["MusicBrainz/Album Id"],
    "mb_artist_id": ["MusicBrainz/Artist Id"],
    "mb_track_id": ["MusicBrainz/Track Id"],
    "acoustid_id": ["Acoustid/Id"],
    "acoustid_fingerprint": ["Acoustid/Fingerprint"],
    "rating": ["RATING"],
}


# ---------------------------------------------------------------------------
# Field encodings
# ---------------------------------------------------------------------------


def rating_to_byte(rating: int) -> int:
    """Map a 0..10 rating to its POPM byte. Ratings above 10 clamp to 255."""
    if rating <= 0:
        return 0
    if rating >= MAX_RATING:
        return RATING_BYTES[MAX_RATING]
    return RATING_BYTES[rating]


def byte_to_rating(value: int) -> int:
    """Map a POPM byte back onto the 0..10 scale."""
    if value <= 0:
        return 0
    if value < 8:
        return 1
    if value < 64:
        return 2
    if value < 96:
        return 3
    if value < 128:
        return 4
    if value < 160:
        return 5
    if value < 196:
        return 6
    if value < 208:
        return 7
    if value < 224:
        return 8
    if value < 240:
        return 9
    return 10


def mp4_rate_to_rating(value: int) -> int:
    """Decode an MP4 ``rate`` atom: percentages, or POPM-style bytes above 100."""
    if value <= 0:
        return 0
    if value <= 100:
        return clamp_rating((value + 5) // 10)
    return byte_to_rating(min(value, 255))


def property_rating_to_rating(value: int) -> int:
    """Decode a property map RATING value.

    Values of 10 and above are percentages. Smaller values are read as a
    five star scale.
    """
    if value <= 0:
        return 0
    if value >= 10:
        return clamp_rating((value + 5) // 10)
    return min(value, 5) * 2


def format_pair(number: int, total: int) -> str:
    """Encode a track/disc pair: "" when both are 0, "N" without a total."""
    if not number and not total:
        return ""
    if not total:
        return str(number)
    return f"{number}/{total}"


def _to_uint(value: str) -> int:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return 0
    return number if number > 0 else 0


def parse_pair(value: Optional[str]) -> tuple[int, int]:
    """Parse "N/total" splitting on the first '/'. No '/' means total 0."""
    if not value:
        return 0, 0
    text = str(value)
    if "/" not in text:
        return _to_uint(text), 0
    number, total = text.split("/", 1)
    return _to_uint(number), _to_uint(total)


def parse_year(value: Optional[str]) -> int:
    """Take the year from a date string like "2019-05-01"."""
    if not value:
        return 0
    return _to_uint(str(value).strip()[:4])


def sniff_mime(data: bytes) -> Optional[str]:
    """Detect PNG or JPEG image data from its signature."""
    if data.startswith(PNG_SIGNATURE):
        return "image/png"
    if data.startswith(JPEG_SIGNATURE):
        return "image/jpeg"
    return None


def get_tag_value(audio_file, tag_names: list[str]) -> Optional[str]:
    """Get tag value, trying multiple possible tag names."""
    for tag_name in tag_names:
        try:
            value = audio_file.get(tag_name)
        except (KeyError, ValueError):
            # Some formats (like Vorbis) raise ValueError for invalid keys
            continue
        if value:
            if isinstance(value, list):
                return str(value[0])
            return str(value)
    return None


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


def _read_stream_info(audio, tags: TagData) -> bool:
    info = getattr(audio, "info", None)
    if info is None:
        return False
    tags.length_sec = int(getattr(info, "length", 0) or 0)
    tags.bitrate = int(getattr(info, "bitrate", 0) or 0) // 1000
    tags.sample_rate = int(getattr(info, "sample_rate", 0) or 0)
    tags.channels = int(getattr(info, "channels", 0) or 0)
    return True


def _first_text(frames) -> str:
    for frame in frames:
        if getattr(frame, "text", None):
            return str(frame.text[0]).strip()
    return ""


def _read_id3(id3: ID3, tags: TagData) -> None:
    for field_name, frame_cls in ID3_TEXT_FRAMES.items():
        setattr(tags, field_name, _first_text(id3.getall(frame_cls.__name__)))

    comments = id3.getall("COMM")
    plain = [c for c in comments if not c.desc]
    tags.comment = _first_text(plain or comments)

    tags.year = parse_year(_first_text(id3.getall("TDRC")))
    tags.track, tags.track_total = parse_pair(_first_text(id3.getall("TRCK")))
    tags.disc, tags.disc_total = parse_pair(_first_text(id3.getall("TPOS")))

    by_desc = {d.lower(): f for f, d in IDENTIFIER_DESCRIPTIONS.items()}
    for frame in id3.getall("TXXX"):
        field_name = by_desc.get(frame.desc.lower())
        if field_name and frame.text:
            setattr(tags, field_name, str(frame.text[0]).strip())

    # Any POPM counts, the WMP one wins.
    for frame in id3.getall("POPM"):
        tags.rating = byte_to_rating(frame.rating)
        if frame.email == POPM_EMAIL:
            break


def _read_mp4(audio: MP4, tags: TagData) -> None:
    for field_name, atom in MP4_TEXT_ATOMS.items():
        setattr(tags, field_name, (get_tag_value(audio, [atom]) or "").strip())

    tags.year = parse_year(get_tag_value(audio, ["\xa9day"]))

    for field_name, atom in (("track", "trkn"), ("disc", "disk")):
        pairs = audio.get(atom)
        if pairs:
            number, total = pairs[0]
            setattr(tags, field_name, max(0, int(number)))
            setattr(tags, f"{field_name}_total", max(0, int(total)))

    for field_name, name in IDENTIFIER_DESCRIPTIONS.items():
        values = audio.get(MP4_FREEFORM_PREFIX + name)
        if values:
            setattr(tags, field_name, bytes(values[0]).decode("utf-8", "replace").strip())

    rate = audio.get("rate")
    if rate:
        tags.rating = mp4_rate_to_rating(_to_uint(rate[0]))


def _read_properties(audio, tags: TagData, keys: dict[str, list[str]]) -> None:
    for field_name in TEXT_FIELDS:
        value = get_tag_value(audio, keys[field_name])
        if value:
            setattr(tags, field_name, value.strip())

    tags.year = parse_year(get_tag_value(audio, keys["year"]))

    for field_name in ("track", "disc"):
        number, total = parse_pair(get_tag_value(audio, keys[field_name]))
        if not total:
            total = _to_uint(get_tag_value(audio, keys[f"{field_name}_total"]) or "")
        setattr(tags, field_name, number)
        setattr(tags, f"{field_name}_total", total)

    rating = get_tag_value(audio, keys["rating"])
    if rating:
        tags.rating = property_rating_to_rating(_to_uint(rating))


def _read_container(path: PathLike, tags: TagData) -> bool:
    """Read embedded tags and stream info. Returns True if anything was found."""
    ext = Path(path).suffix.lower()
    found = False

    try:
        audio = MutagenFile(path)
    except Exception as e:
        logger.debug(f"Mutagen could not open {path}: {e}")
        audio = None

    if audio is not None:
        found = _read_stream_info(audio, tags)
        if isinstance(audio.tags, ID3):
            _read_id3(audio.tags, tags)
            found = True
        elif isinstance(audio, MP4):
            if audio.tags is not None:
                _read_mp4(audio, tags)
                found = True
        elif isinstance(audio, ASF):
            _read_properties(audio, tags, ASF_KEYS)
            found = True
        elif audio.tags is not None:
            _read_properties(audio, tags, VORBIS_KEYS)
            found = True
    elif ext in ID3_EXTENSIONS:
        # No decodable audio stream, but an ID3 header may still be present
        try:
            _read_id3(ID3(path), tags)
            found = True
        except ID3NoHeaderError:
            pass
        except Exception as e:
            logger.debug(f"Could not read ID3 from {path}: {e}")

    return found


def _fill_from(target: TagData, source: TagData) -> None:
    for name in TagData.field_names():
        if not getattr(target, name):
            setattr(target, name, getattr(source, name))


def read_tags(path: PathLike, native_fallback: bool = True) -> tuple[TagData, bool]:
    """Read normalized metadata from an audio file.

    Args:
        path: Path to the audio file
        native_fallback: Fill fields left empty from native attributes

    Returns:
        (tags, ok) where ok is False only if no source yielded anything
    """
    tags = TagData()
    try:
        found = _read_container(path, tags)
    except Exception as e:
        logger.warning(f"Could not read tags from {path}: {e}")
        found = False

    if native_fallback:
        native, native_found = read_native_attributes(path)
        if native_found:
            _fill_from(tags, native)
            found = True

    tags.rating = clamp_rating(tags.rating)
    return tags, found


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


def _set_id3_text(id3: ID3, frame_cls, value: str) -> None:
    id3.delall(frame_cls.__name__)
    if value:
        id3.add(frame_cls(encoding=3, text=value))


def _set_txxx(id3: ID3, desc: str, value: str) -> None:
    for frame in list(id3.getall("TXXX")):
        if frame.desc.lower() == desc.lower():
            id3.delall(frame.HashKey)
    if value:
        id3.add(TXXX(encoding=3, desc=desc, text=[value]))


def _apply_id3(id3: ID3, tags: TagData) -> None:
    for field_name, frame_cls in ID3_TEXT_FRAMES.items():
        _set_id3_text(id3, frame_cls, getattr(tags, field_name))

    for frame in list(id3.getall("COMM")):
        if not frame.desc:
            id3.delall(frame.HashKey)
    if tags.comment:
        id3.add(COMM(encoding=3, lang="eng", desc="", text=tags.comment))

    _set_id3_text(id3, TDRC, str(tags.year) if tags.year else "")
    _set_id3_text(id3, TRCK, format_pair(tags.track, tags.track_total))
    _set_id3_text(id3, TPOS, format_pair(tags.disc, tags.disc_total))

    for field_name, desc in IDENTIFIER_DESCRIPTIONS.items():
        _set_txxx(id3, desc, getattr(tags, field_name))

    id3.delall(f"POPM:{POPM_EMAIL}")
    if tags.rating > 0:
        id3.add(POPM(email=POPM_EMAIL, rating=rating_to_byte(tags.rating), count=0))


def _write_wave(path: str, tags: TagData, cover: Optional[bytes]) -> bool:
    # WAV carries its ID3 tag in a RIFF chunk
    audio = WAVE(path)
    if audio.tags is None:
        audio.add_tags()
    _apply_id3(audio.tags, tags)
    if cover is not None:
        _apply_id3_cover(audio.tags, cover)
    audio.save()
    return True


def _write_id3(path: str, tags: TagData, cover: Optional[bytes]) -> bool:
    try:
        id3 = ID3(path)
    except ID3NoHeaderError:
        id3 = ID3()
    _apply_id3(id3, tags)
    if cover is not None:
        _apply_id3_cover(id3, cover)
    id3.save(path)
    return True


def _write_mp4(path: str, tags: TagData, cover: Optional[bytes]) -> bool:
    audio = MP4(path)
    if audio.tags is None:
        audio.add_tags()

    for field_name, atom in MP4_TEXT_ATOMS.items():
        value = getattr(tags, field_name)
        if value:
            audio[atom] = [value]
        elif atom in audio:
            del audio[atom]

    if tags.year:
        audio["\xa9day"] = [str(tags.year)]
    elif "\xa9day" in audio:
        del audio["\xa9day"]

    for field_name, atom in (("track", "trkn"), ("disc", "disk")):
        number = getattr(tags, field_name)
        total = getattr(tags, f"{field_name}_total")
        if number or total:
            audio[atom] = [(number, total)]
        elif atom in audio:
            del audio[atom]

    for field_name, name in IDENTIFIER_DESCRIPTIONS.items():
        key = MP4_FREEFORM_PREFIX + name
        value = getattr(tags, field_name)
        if value:
            audio[key] = [MP4FreeForm(value.encode("utf-8"))]
        elif key in audio:
            del audio[key]

    if tags.rating > 0:
        audio["rate"] = [tags.rating * 10]
    elif "rate" in audio:
        del audio["rate"]

    if cover is not None and not _apply_mp4_cover(audio, cover):
        return False

    audio.save()
    return True


def _apply_properties(audio, tags: TagData, keys: dict[str, list[str]]) -> None:
    values = {name: getattr(tags, name) for name in TEXT_FIELDS}
    values["year"] = str(tags.year) if tags.year else ""
    values["track"] = format_pair(tags.track, tags.track_total)
    values["track_total"] = str(tags.track_total) if tags.track_total else ""
    values["disc"] = format_pair(tags.disc, tags.disc_total)
    values["disc_total"] = str(tags.disc_total) if tags.disc_total else ""
    values["rating"] = str(tags.rating * 10) if tags.rating else ""

    for field_name, names in keys.items():
        value = values[field_name]
        for key in names:
            if key in audio.tags:
                del audio.tags[key]
        if value:
            audio.tags[names[0]] = [value]
        # Some players only look at the alternate total key
        if value and field_name in ("track_total", "disc_total") and len(names) > 1:
            audio.tags[names[1]] = [value]


def _write_properties(
    audio, path: str, tags: TagData, cover: Optional[bytes], keys: dict[str, list[str]]
) -> bool:
    if audio is None:
        logger.warning(f"Could not open file: {path}")
        return False
    if audio.tags is None:
        audio.add_tags()

    _apply_properties(audio, tags, keys)

    if cover is not None:
        if not isinstance(audio, FLAC):
            logger.warning(f"Cover embedding not supported for {path}")
            return False
        _apply_flac_cover(audio, cover)

    audio.save()
    return True


def _write_vorbis(path: str, tags: TagData, cover: Optional[bytes]) -> bool:
    return _write_properties(MutagenFile(path), path, tags, cover, VORBIS_KEYS)


def _write_asf(path: str, tags: TagData, cover: Optional[bytes]) -> bool:
    return _write_properties(ASF(path), path, tags, cover, ASF_KEYS)


WriteStrategy = Callable[[str, TagData, Optional[bytes]], bool]

WRITE_STRATEGIES: dict[str, WriteStrategy] = {
    ".mp3": _write_id3,
    ".wav": _write_wave,
    **{ext: _write_mp4 for ext in MP4_EXTENSIONS},
    **{ext: _write_vorbis for ext in VORBIS_EXTENSIONS},
    **{ext: _write_asf for ext in ASF_EXTENSIONS},
}


def _atomic_update(path: PathLike, action: Callable[[str], bool], what: str) -> bool:
    """Run action on a temporary copy of path, then move it over the original."""
    local_path = str(path)
    if not os.path.exists(local_path):
        logger.warning(f"File not found: {local_path}")
        return False

    # Use atomic write: copy to temp, modify, replace
    temp_path = local_path + ".tmp"
    try:
        shutil.copy2(local_path, temp_path)
        if not action(temp_path):
            os.remove(temp_path)
            return False
        os.replace(temp_path, local_path)
        return True
    except Exception as e:
        logger.exception(f"Error writing {what} to {local_path}: {e}")
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError:
                pass
        return False


def write_tags_to_file(
    path: PathLike, tags: TagData, cover: Optional[bytes] = None
) -> bool:
    """Write TagData into the file's embedded tags.

    Empty fields remove their frame/atom/key. Pairs are written as "N/total".

    Args:
        path: Path to the audio file
        tags: Values to write
        cover: Optional front cover image to embed

    Returns:
        True if successful, False for unknown extensions or write errors
    """
    strategy = WRITE_STRATEGIES.get(Path(path).suffix.lower())
    if strategy is None:
        logger.warning(f"Unsupported format for metadata writing: {path}")
        return False

    tags = tags.copy()
    tags.rating = clamp_rating(tags.rating)
    return _atomic_update(path, lambda tmp: strategy(tmp, tags, cover), "metadata")


# ---------------------------------------------------------------------------
# Covers
# ---------------------------------------------------------------------------


def _apply_id3_cover(id3: ID3, data: bytes, mime: Optional[str] = None) -> None:
    id3.delall("APIC")
    if data:
        id3.add(
            APIC(
                encoding=3,
                mime=mime or sniff_mime(data) or "image/jpeg",
                type=3,  # Front cover
                desc="Cover",
                data=data,
            )
        )


def _apply_flac_cover(audio: FLAC, data: bytes, mime: Optional[str] = None) -> None:
    audio.clear_pictures()
    if data:
        picture = Picture()
        picture.type = 3
        picture.mime = mime or sniff_mime(data) or "image/jpeg"
        picture.desc = "Cover"
        picture.data = data
        audio.add_picture(picture)


def _apply_mp4_cover(audio: MP4, data: bytes, mime: Optional[str] = None) -> bool:
    if not data:
        if "covr" in audio:
            del audio["covr"]
        return True

    mime = mime or sniff_mime(data)
    if mime == "image/png":
        cover_format = MP4Cover.FORMAT_PNG
    elif mime == "image/jpeg":
        cover_format = MP4Cover.FORMAT_JPEG
    else:
        logger.warning(f"MP4 covers must be PNG or JPEG, got {mime}")
        return False
    audio["covr"] = [MP4Cover(data, imageformat=cover_format)]
    return True


def _write_cover(path: str, ext: str, data: bytes, mime: Optional[str]) -> bool:
    if ext == ".mp3":
        try:
            id3 = ID3(path)
        except ID3NoHeaderError:
            id3 = ID3()
        _apply_id3_cover(id3, data, mime)
        id3.save(path)
        return True
    if ext == ".wav":
        audio = WAVE(path)
        if audio.tags is None:
            audio.add_tags()
        _apply_id3_cover(audio.tags, data, mime)
        audio.save()
        return True
    if ext in MP4_EXTENSIONS:
        audio = MP4(path)
        if audio.tags is None:
            audio.add_tags()
        if not _apply_mp4_cover(audio, data, mime):
            return False
        audio.save()
        return True
    if ext == ".flac":
        audio = FLAC(path)
        _apply_flac_cover(audio, data, mime)
        audio.save()
        return True
    return False


def write_embedded_cover(
    path: PathLike, data: Optional[bytes], mime: Optional[str] = None
) -> bool:
    """Replace the front cover, or remove it when data is empty.

    Supported for MP3/WAV (APIC), FLAC (picture block) and MP4 (covr).
    MIME type is sniffed from the data when not given.
    """
    ext = Path(path).suffix.lower()
    if ext not in (".mp3", ".wav", ".flac") + MP4_EXTENSIONS:
        logger.warning(f"Cover embedding not supported for {path}")
        return False
    data = data or b""
    return _atomic_update(path, lambda tmp: _write_cover(tmp, ext, data, mime), "cover")


def extract_embedded_cover(path: PathLike) -> Optional[bytes]:
    """Return the first embedded cover image, or None."""
    ext = Path(path).suffix.lower()
    try:
        if ext == ".mp3":
            frames = ID3(path).getall("APIC")
        elif ext == ".wav":
            audio = WAVE(path)
            frames = audio.tags.getall("APIC") if audio.tags is not None else []
        elif ext == ".flac":
            pictures = FLAC(path).pictures
            return pictures[0].data if pictures and pictures[0].data else None
        elif ext in MP4_EXTENSIONS:
            covers = MP4(path).get("covr")
            return bytes(covers[0]) if covers else None
        else:
            return None
    except ID3NoHeaderError:
        return None
    except Exception as e:
        logger.debug(f"Could not read cover from {path}: {e}")
        return None

    for frame in frames:
        if frame.data:
            return frame.data
    return None
