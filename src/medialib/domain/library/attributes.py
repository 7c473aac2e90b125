"""
Native filesystem attribute storage for track metadata.

Each TagData field is stored as one extended attribute in the ``user.``
namespace. Strings are UTF-8, integers are decimal text. A volume that
rejects ``user.`` attributes is not a native attribute volume.
"""

import errno
import os
from typing import Union

from loguru import logger

from .models import MAX_RATING, SYNC_FIELDS, TagData, clamp_rating

PathLike = Union[str, os.PathLike]

# TagData field -> attribute name
STRING_ATTRIBUTES = {
    "title": "user.media.title",
    "artist": "user.audio.artist",
    "album": "user.audio.album",
    "genre": "user.media.genre",
    "comment": "user.media.comment",
    "album_artist": "user.media.album_artist",
    "composer": "user.media.composer",
    "mb_album_id": "user.media.mb_album_id",
    "mb_artist_id": "user.media.mb_artist_id",
    "mb_track_id": "user.media.mb_track_id",
    "acoustid_id": "user.media.acoustid_id",
}

INT_ATTRIBUTES = {
    "year": "user.media.year",
    "track": "user.audio.track",
    "track_total": "user.media.track_total",
    "disc": "user.media.disc",
    "disc_total": "user.media.disc_total",
    "length_sec": "user.media.length",
    "bitrate": "user.audio.bitrate",
    "sample_rate": "user.audio.rate",
    "channels": "user.audio.channels",
    "rating": "user.media.rating",
}

# Syncable fields this store can hold; the rest live only in embedded tags
NATIVE_FIELDS = tuple(
    name for name in SYNC_FIELDS if name in STRING_ATTRIBUTES or name in INT_ATTRIBUTES
)
TAG_ONLY_FIELDS = tuple(name for name in SYNC_FIELDS if name not in NATIVE_FIELDS)

RATING_ATTRIBUTE = INT_ATTRIBUTES["rating"]
SUPPORT_CHECK_ATTRIBUTE = "user.medialib.check"

# Attribute absent
_MISSING_ERRNOS = {errno.ENODATA, getattr(errno, "ENOATTR", errno.ENODATA)}
# Namespace or filesystem does not support user attributes
_UNSUPPORTED_ERRNOS = {errno.ENOTSUP, errno.EOPNOTSUPP, errno.EPERM}


def is_native_attribute_volume(path: PathLike) -> bool:
    """Check whether the volume holding path accepts user attributes.

    Reading an attribute that does not exist answers the question without
    modifying the file: ENODATA means the namespace is supported.
    """
    try:
        os.getxattr(path, SUPPORT_CHECK_ATTRIBUTE)
        return True
    except OSError as e:
        if e.errno in _MISSING_ERRNOS:
            return True
        if e.errno not in _UNSUPPORTED_ERRNOS:
            logger.debug(f"Attribute support check failed for {path}: {e}")
        return False


def _read_raw(path: PathLike, name: str) -> bytes:
    try:
        return os.getxattr(path, name)
    except OSError as e:
        if e.errno not in _MISSING_ERRNOS:
            logger.debug(f"Could not read {name} from {path}: {e}")
        return b""


def _read_str(path: PathLike, name: str) -> str:
    return _read_raw(path, name).decode("utf-8", errors="replace").rstrip("\x00").strip()


def _read_int(path: PathLike, name: str) -> int:
    raw = _read_str(path, name)
    if not raw:
        return 0
    try:
        return int(raw)
    except ValueError:
        logger.debug(f"Ignoring non-numeric {name} on {path}: {raw!r}")
        return 0


def _remove(path: PathLike, name: str) -> bool:
    try:
        os.removexattr(path, name)
        return True
    except OSError as e:
        if e.errno in _MISSING_ERRNOS:
            return True
        logger.warning(f"Could not remove {name} from {path}: {e}")
        return False


def _write(path: PathLike, name: str, value: bytes) -> bool:
    try:
        os.setxattr(path, name, value)
        return True
    except OSError as e:
        logger.warning(f"Could not write {name} to {path}: {e}")
        return False


def write_attr_str(path: PathLike, name: str, value: str) -> bool:
    """Write a string attribute, or remove it when value is empty."""
    if not value:
        return _remove(path, name)
    return _write(path, name, value.encode("utf-8"))


def write_attr_int(path: PathLike, name: str, value: int) -> bool:
    """Write an integer attribute, or remove it when value is zero."""
    if not value:
        return _remove(path, name)
    return _write(path, name, str(int(value)).encode("ascii"))


def read_native_rating(path: PathLike) -> int:
    """Read only the rating attribute. Values outside 1..10 read as 0."""
    rating = _read_int(path, RATING_ATTRIBUTE)
    if 1 <= rating <= MAX_RATING:
        return rating
    return 0


def read_native_attributes(path: PathLike) -> tuple[TagData, bool]:
    """Read every known attribute into a TagData.

    Returns:
        (tags, ok) where ok is True if at least one field was found
    """
    tags = TagData()
    for field_name, attr in STRING_ATTRIBUTES.items():
        setattr(tags, field_name, _read_str(path, attr))
    for field_name, attr in INT_ATTRIBUTES.items():
        if field_name == "rating":
            continue
        value = _read_int(path, attr)
        setattr(tags, field_name, max(0, value))
    tags.rating = read_native_rating(path)
    return tags, not tags.is_empty()


def write_native_attributes(path: PathLike, tags: TagData) -> bool:
    """Write TagData as attributes. Empty fields remove their attribute.

    Returns:
        True if every attribute was written or removed
    """
    if not os.path.exists(path):
        logger.warning(f"File not found: {path}")
        return False

    ok = True
    for field_name, attr in STRING_ATTRIBUTES.items():
        ok &= write_attr_str(path, attr, getattr(tags, field_name))
    for field_name, attr in INT_ATTRIBUTES.items():
        value = getattr(tags, field_name)
        if field_name == "rating":
            value = clamp_rating(value)
        ok &= write_attr_int(path, attr, value)

    if not ok:
        logger.warning(f"Some attributes could not be written to {path}")
    return ok
