"""
Music library domain models.

Contains the cached library entry and the normalized tag schema shared by
the tag codec, the native attribute codec and the merge logic.
"""

from dataclasses import dataclass, fields, replace
from typing import Any, NamedTuple, Optional

from loguru import logger

MAX_RATING = 10

# Fields compared and merged between tag sources.
TEXT_FIELDS = (
    "title",
    "artist",
    "album",
    "genre",
    "comment",
    "album_artist",
    "composer",
    "mb_album_id",
    "mb_artist_id",
    "mb_track_id",
    "acoustid_id",
    "acoustid_fingerprint",
)
NUMBER_FIELDS = (
    "year",
    "track",
    "track_total",
    "disc",
    "disc_total",
    "rating",
)
SYNC_FIELDS = TEXT_FIELDS + NUMBER_FIELDS

# Stream properties: read from the file, never merged.
STREAM_FIELDS = ("length_sec", "bitrate", "sample_rate", "channels")


def clamp_rating(value: Any) -> int:
    """Clamp a rating into 0..10, treating junk as unrated."""
    try:
        rating = int(value)
    except (TypeError, ValueError):
        return 0
    return max(0, min(MAX_RATING, rating))


@dataclass
class TagData:
    """Normalized metadata read from or written to an audio file.

    Empty strings and zeros mean "no value". A field that is empty on write
    is removed from the target store rather than written empty.
    """

    title: str = ""
    artist: str = ""
    album: str = ""
    genre: str = ""
    comment: str = ""
    album_artist: str = ""
    composer: str = ""

    year: int = 0
    track: int = 0
    track_total: int = 0
    disc: int = 0
    disc_total: int = 0

    length_sec: int = 0
    bitrate: int = 0
    sample_rate: int = 0
    channels: int = 0

    mb_album_id: str = ""
    mb_artist_id: str = ""
    mb_track_id: str = ""
    acoustid_id: str = ""
    acoustid_fingerprint: str = ""

    rating: int = 0

    def copy(self) -> "TagData":
        return replace(self)

    def is_empty(self) -> bool:
        """True when no field carries a value."""
        return all(not getattr(self, f.name) for f in fields(self))

    def differences(
        self, other: "TagData", names: tuple[str, ...] = SYNC_FIELDS
    ) -> list[str]:
        """Names of syncable fields whose values differ.

        names narrows the comparison to the fields one store can hold.
        """
        return [name for name in names if getattr(self, name) != getattr(other, name)]

    def has_differences(
        self, other: "TagData", names: tuple[str, ...] = SYNC_FIELDS
    ) -> bool:
        """Check if any syncable field differs from another TagData."""
        return bool(self.differences(other, names))

    def log_differences(self, other: "TagData") -> None:
        for name in self.differences(other):
            logger.debug(
                f"Diff: {name} {getattr(self, name)!r} vs {getattr(other, name)!r}"
            )

    @classmethod
    def field_names(cls) -> set[str]:
        return {f.name for f in fields(cls)}


class MediaEntry(NamedTuple):
    """One audio file known to the library cache.

    The path is the unique key. `base` is the configured root directory the
    file was discovered under. `missing` is set when the file could not be
    found on disk at the last check.
    """

    path: str
    base: str = ""
    title: str = ""
    artist: str = ""
    album: str = ""
    album_artist: str = ""
    composer: str = ""
    genre: str = ""
    comment: str = ""
    year: int = 0
    track: int = 0
    track_total: int = 0
    disc: int = 0
    disc_total: int = 0
    duration: int = 0  # in seconds
    bitrate: int = 0
    sample_rate: int = 0
    channels: int = 0
    size: int = 0
    mtime: int = 0
    inode: int = 0
    mb_album_id: str = ""
    mb_artist_id: str = ""
    mb_track_id: str = ""
    rating: int = 0
    missing: bool = False

    @classmethod
    def from_tags(
        cls,
        path: str,
        base: str,
        tags: TagData,
        size: int = 0,
        mtime: int = 0,
        inode: int = 0,
    ) -> "MediaEntry":
        """Project a TagData snapshot plus file stats into an entry."""
        return cls(
            path=path,
            base=base,
            title=tags.title,
            artist=tags.artist,
            album=tags.album,
            album_artist=tags.album_artist,
            composer=tags.composer,
            genre=tags.genre,
            comment=tags.comment,
            year=tags.year,
            track=tags.track,
            track_total=tags.track_total,
            disc=tags.disc,
            disc_total=tags.disc_total,
            duration=tags.length_sec,
            bitrate=tags.bitrate,
            sample_rate=tags.sample_rate,
            channels=tags.channels,
            size=size,
            mtime=mtime,
            inode=inode,
            mb_album_id=tags.mb_album_id,
            mb_artist_id=tags.mb_artist_id,
            mb_track_id=tags.mb_track_id,
            rating=clamp_rating(tags.rating),
        )

    def with_tags(self, tags: TagData) -> "MediaEntry":
        """Targeted update: replace tag fields, keep file identity and stats.

        Stream properties are only replaced when the new snapshot has them.
        """
        return self._replace(
            title=tags.title,
            artist=tags.artist,
            album=tags.album,
            album_artist=tags.album_artist,
            composer=tags.composer,
            genre=tags.genre,
            comment=tags.comment,
            year=tags.year,
            track=tags.track,
            track_total=tags.track_total,
            disc=tags.disc,
            disc_total=tags.disc_total,
            duration=tags.length_sec or self.duration,
            bitrate=tags.bitrate or self.bitrate,
            sample_rate=tags.sample_rate or self.sample_rate,
            channels=tags.channels or self.channels,
            mb_album_id=tags.mb_album_id,
            mb_artist_id=tags.mb_artist_id,
            mb_track_id=tags.mb_track_id,
            rating=clamp_rating(tags.rating),
        )

    def to_dict(self) -> dict[str, Any]:
        return self._asdict()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Optional["MediaEntry"]:
        """Build an entry from a persisted record, ignoring unknown keys.

        Returns None for records without a path.
        """
        path = data.get("path")
        if not path:
            return None
        values: dict[str, Any] = {}
        for name, default in cls._field_defaults.items():
            raw = data.get(name, default)
            if isinstance(default, bool):
                values[name] = bool(raw)
            elif isinstance(default, int):
                try:
                    values[name] = int(raw)
                except (TypeError, ValueError):
                    values[name] = default
            else:
                values[name] = str(raw) if raw is not None else default
        values["rating"] = clamp_rating(values["rating"])
        return cls(path=str(path), **values)
