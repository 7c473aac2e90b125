"""
Messages exchanged between scanners, the library cache and listeners.

Every message is a frozen dataclass. Scanner and request messages travel
through the cache inbox; notification messages are delivered to registered
listeners.
"""

from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from .models import MediaEntry, TagData


# Scanner -> cache


@dataclass(frozen=True)
class MediaBatch:
    """Entries discovered or updated by one scanner."""

    base: str
    entries: tuple[MediaEntry, ...]
    scan_id: int


@dataclass(frozen=True)
class ScanDone:
    base: str
    scan_id: int
    elapsed: float = 0.0
    dirs: int = 0
    files: int = 0


@dataclass(frozen=True)
class ScanProgress:
    dirs: int
    files: int
    elapsed_sec: float
    base: str = ""


# Requests handled on the cache thread


@dataclass(frozen=True)
class LoadCache:
    pass


@dataclass(frozen=True)
class StartScan:
    pass


@dataclass(frozen=True)
class StopScan:
    pass


@dataclass(frozen=True)
class UpsertEntry:
    entry: MediaEntry


@dataclass(frozen=True)
class ApplyTags:
    path: str
    tags: TagData


@dataclass(frozen=True)
class MarkBaseOffline:
    base: str


@dataclass(frozen=True)
class SaveCache:
    reply: Optional[Future] = field(default=None, compare=False)


@dataclass(frozen=True)
class Snapshot:
    """Request a copy of the entry map (or of one entry when path is set)."""

    reply: Future = field(compare=False)
    path: Optional[str] = None


@dataclass(frozen=True)
class Shutdown:
    pass


# Notifications


@dataclass(frozen=True)
class CacheLoaded:
    count: int


@dataclass(frozen=True)
class ItemsUpdated:
    entries: tuple[MediaEntry, ...]


@dataclass(frozen=True)
class ItemRemoved:
    path: str


@dataclass(frozen=True)
class BaseOffline:
    base: str


@dataclass(frozen=True)
class LibraryScanDone:
    count: int = 0


@dataclass(frozen=True)
class SyncProgress:
    current: int
    total: int


@dataclass(frozen=True)
class SyncDone:
    processed: int = 0
    failed: int = 0


@dataclass(frozen=True)
class SyncConflict:
    """Sync paused on a disagreement that needs a decision."""

    path: str
    index: int
    total: int
    primary: TagData = field(compare=False)
    secondary: TagData = field(compare=False)


CacheMessage = Union[
    MediaBatch,
    ScanDone,
    ScanProgress,
    LoadCache,
    StartScan,
    StopScan,
    UpsertEntry,
    ApplyTags,
    MarkBaseOffline,
    SaveCache,
    Snapshot,
    Shutdown,
]

Notification = Union[
    CacheLoaded,
    ItemsUpdated,
    ItemRemoved,
    BaseOffline,
    ScanProgress,
    LibraryScanDone,
    SyncProgress,
    SyncDone,
    SyncConflict,
]

Listener = Callable[[Notification], None]
