"""
Metadata sync operations for medialib

Keeps embedded tags and native attributes in step according to each
directory's source settings, saves edited fields back to files and applies
or clears embedded cover art.
"""

import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from medialib.core.config import DEFAULT_EXTENSIONS
from ..library.attributes import (
    NATIVE_FIELDS,
    TAG_ONLY_FIELDS,
    is_native_attribute_volume,
    read_native_attributes,
    write_native_attributes,
)
from ..library.cache import LibraryCache, Notifier
from ..library.events import SyncConflict, SyncDone, SyncProgress
from ..library.metadata import read_tags, write_embedded_cover, write_tags_to_file
from ..library.models import NUMBER_FIELDS, STREAM_FIELDS, TagData
from ..library.scanner import is_supported_file
from ..library.sources import ConflictPolicy, SourceConfig, SourceStore, SourceType
from .merge import merge_metadata, smart_merge

TO_NATIVE = "to_native"
TO_TAGS = "to_tags"
DIRECTIONS = (TO_NATIVE, TO_TAGS)


class ConflictChoice(str, Enum):
    SKIP = "skip"
    USE_TAGS = "use_tags"
    USE_NATIVE = "use_native"


@dataclass
class SyncStats:
    """Per-run counters."""

    updated: int = 0
    unchanged: int = 0
    skipped: int = 0
    failed: int = 0
    conflicts: int = 0
    paused: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "updated": self.updated,
            "unchanged": self.unchanged,
            "skipped": self.skipped,
            "failed": self.failed,
            "conflicts": self.conflicts,
            "paused": self.paused,
        }


@dataclass
class _SyncRun:
    files: list[str]
    direction: Optional[str]
    index: int = 0
    apply_to_all: Optional[ConflictChoice] = None
    stats: SyncStats = field(default_factory=SyncStats)


def coerce_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Validate edited field names and convert values to TagData types.

    Raises:
        ValueError: For unknown field names or non-numeric numeric fields
    """
    known = TagData.field_names() - set(STREAM_FIELDS)
    unknown = sorted(set(fields) - known)
    if unknown:
        raise ValueError(f"Unknown metadata fields: {', '.join(unknown)}")

    values = {}
    for name, value in fields.items():
        if name in NUMBER_FIELDS:
            text = str(value).strip() if value is not None else ""
            try:
                values[name] = max(0, int(text)) if text else 0
            except ValueError:
                raise ValueError(f"{name} must be a number, got {value!r}") from None
        else:
            values[name] = "" if value is None else str(value).strip()
    return values


class MetadataSync:
    """Runs tag saves, source syncs and cover updates for a set of files.

    A sync under the "ask" policy pauses on the first conflict and emits
    SyncConflict. resolve_conflict() applies the decision and resumes with
    the next file.
    """

    def __init__(
        self,
        sources: SourceStore,
        notifier: Optional[Notifier] = None,
        cache: Optional[LibraryCache] = None,
        supported_formats: Optional[list[str]] = None,
    ):
        self.sources = sources
        self.notifier = notifier or (cache.notifier if cache is not None else Notifier())
        self.cache = cache
        self.supported_formats = supported_formats or list(DEFAULT_EXTENSIONS)
        self._lock = threading.Lock()
        self._pending: Optional[_SyncRun] = None

    @property
    def pending_conflict(self) -> Optional[str]:
        """Path of the file a paused sync is waiting on."""
        with self._lock:
            if self._pending is None:
                return None
            return self._pending.files[self._pending.index]

    def _update_cache(self, path: str, tags: TagData) -> None:
        if self.cache is not None:
            self.cache.apply_tags(path, tags)

    # ------------------------------------------------------------------
    # Saving edited fields
    # ------------------------------------------------------------------

    def save_tags_for_files(self, fields: dict[str, Any], files: list[str]) -> SyncStats:
        """Overlay edited fields onto each file's tags and write them back.

        Args:
            fields: TagData field names and their new values
            files: Files to update

        Returns:
            SyncStats with updated/failed counts
        """
        values = coerce_fields(fields)
        stats = SyncStats()

        for path in files:
            if not path:
                continue
            tags, _ = read_tags(path)
            for name, value in values.items():
                setattr(tags, name, value)

            if not write_tags_to_file(path, tags):
                logger.warning(f"Could not save tags to {path}")
                stats.failed += 1
                continue

            saved, _ = read_tags(path, native_fallback=False)
            if is_native_attribute_volume(path):
                write_native_attributes(path, saved)
            self._update_cache(path, saved)
            stats.updated += 1

        logger.info(f"Saved tags: {stats.updated} updated, {stats.failed} failed")
        return stats

    # ------------------------------------------------------------------
    # Syncing sources
    # ------------------------------------------------------------------

    def sync_metadata_for_files(
        self, files: list[str], direction: Optional[str] = None
    ) -> SyncStats:
        """Sync tags and native attributes for files.

        Args:
            files: Files to sync
            direction: "to_native" or "to_tags" for a one-way copy, None to
                follow each directory's source settings

        Returns:
            SyncStats; paused is True when waiting on a conflict decision
        """
        if direction is not None and direction not in DIRECTIONS:
            raise ValueError(f"Unknown sync direction: {direction}")

        with self._lock:
            if self._pending is not None:
                logger.warning("Abandoning paused sync waiting on a conflict")
            self._pending = None

        run = _SyncRun(files=[f for f in files if f], direction=direction)
        logger.info(f"Syncing {len(run.files)} files (direction={direction or 'policy'})")
        return self._run(run)

    def resolve_conflict(
        self, path: str, choice: str, apply_to_all: bool = False
    ) -> SyncStats:
        """Apply a decision to the paused conflict and continue the sync.

        Raises:
            ValueError: If no conflict is pending for path or choice is unknown
        """
        decision = ConflictChoice(choice)
        with self._lock:
            run = self._pending
            if run is None or run.files[run.index] != path:
                raise ValueError(f"No pending conflict for {path}")
            self._pending = None

        run.stats.paused = False
        if apply_to_all:
            run.apply_to_all = decision
        self._apply_choice(path, decision, run.stats)
        run.index += 1
        self.notifier.emit(SyncProgress(run.index, len(run.files)))
        return self._run(run)

    def _run(self, run: _SyncRun) -> SyncStats:
        total = len(run.files)
        while run.index < total:
            path = run.files[run.index]
            try:
                conflict = self._sync_one(path, run)
            except Exception as e:
                logger.exception(f"Error syncing {path}: {e}")
                run.stats.failed += 1
                conflict = None

            if conflict is not None:
                primary, secondary = conflict
                run.stats.conflicts += 1
                if run.apply_to_all is not None:
                    self._apply_choice(path, run.apply_to_all, run.stats)
                else:
                    run.stats.paused = True
                    with self._lock:
                        self._pending = run
                    logger.info(f"Sync paused on conflict: {path} ({run.index + 1}/{total})")
                    self.notifier.emit(
                        SyncConflict(path, run.index, total, primary, secondary)
                    )
                    return run.stats

            run.index += 1
            self.notifier.emit(SyncProgress(run.index, total))

        logger.info(f"Sync done: {run.stats.as_dict()}")
        self.notifier.emit(SyncDone(run.stats.updated, run.stats.failed))
        return run.stats

    def _sync_one(self, path: str, run: _SyncRun) -> Optional[tuple[TagData, TagData]]:
        """Sync one file. Returns (primary, secondary) on an unresolved conflict."""
        stats = run.stats
        if not os.path.exists(path):
            logger.warning(f"File not found: {path}")
            stats.failed += 1
            return None

        native_ok = is_native_attribute_volume(path)

        if run.direction == TO_NATIVE:
            if not native_ok:
                stats.skipped += 1
                return None
            tags, _ = read_tags(path, native_fallback=False)
            native, _ = read_native_attributes(path)
            self._write_stores(path, {SourceType.NATIVE}, tags, tags, native, native_ok, stats)
            return None

        if run.direction == TO_TAGS:
            if not native_ok:
                stats.skipped += 1
                return None
            native, found = read_native_attributes(path)
            if not found:
                stats.skipped += 1
                return None
            tags, _ = read_tags(path, native_fallback=False)
            self._write_stores(path, {SourceType.TAGS}, native, tags, native, native_ok, stats)
            return None

        source = self.sources.resolve(path)
        if source.primary == SourceType.NONE:
            stats.skipped += 1
            return None

        tags, _ = read_tags(path, native_fallback=False)
        native = read_native_attributes(path)[0] if native_ok else TagData()
        primary = self._select(source.primary, tags, native)
        secondary = self._select(source.secondary, tags, native)

        if source.conflict_policy == ConflictPolicy.ASK:
            merged, _, conflict = smart_merge(primary, secondary)
            if conflict:
                primary.log_differences(secondary)
                return primary, secondary
        else:
            merged = merge_metadata(primary, secondary, source.conflict_policy)

        self._write_stores(path, _stores(source), merged, tags, native, native_ok, stats)
        return None

    @staticmethod
    def _select(source_type: SourceType, tags: TagData, native: TagData) -> TagData:
        if source_type == SourceType.TAGS:
            return tags
        if source_type == SourceType.NATIVE:
            return native
        return TagData()

    def _apply_choice(self, path: str, choice: ConflictChoice, stats: SyncStats) -> None:
        if choice == ConflictChoice.SKIP:
            logger.info(f"Skipping conflicting file {path}")
            stats.skipped += 1
            return

        source = self.sources.resolve(path)
        native_ok = is_native_attribute_volume(path)
        tags, _ = read_tags(path, native_fallback=False)
        native = read_native_attributes(path)[0] if native_ok else TagData()

        if choice == ConflictChoice.USE_TAGS:
            merged, _, _ = smart_merge(tags, native)
        else:
            merged, _, _ = smart_merge(native, tags)
        self._write_stores(path, _stores(source), merged, tags, native, native_ok, stats)

    def _write_stores(
        self,
        path: str,
        stores: set[SourceType],
        merged: TagData,
        tags: TagData,
        native: TagData,
        native_ok: bool,
        stats: SyncStats,
    ) -> None:
        """Write merged data to the named stores where it differs.

        Fields native attributes cannot hold keep their embedded values, and
        native attributes are compared only over the fields they store.
        """
        merged = merged.copy()
        for name in TAG_ONLY_FIELDS:
            if not getattr(merged, name):
                setattr(merged, name, getattr(tags, name))

        ok = True
        wrote = False

        if SourceType.TAGS in stores and merged.has_differences(tags):
            ok &= write_tags_to_file(path, merged)
            wrote = True
            logger.debug(f"Updated tags for {path}")

        if (
            SourceType.NATIVE in stores
            and native_ok
            and merged.has_differences(native, NATIVE_FIELDS)
        ):
            ok &= write_native_attributes(path, merged)
            wrote = True
            logger.debug(f"Updated native attributes for {path}")

        if not ok:
            stats.failed += 1
        elif wrote:
            stats.updated += 1
            self._update_cache(path, merged)
        else:
            stats.unchanged += 1

    # ------------------------------------------------------------------
    # Covers
    # ------------------------------------------------------------------

    def apply_cover(
        self, files: list[str], data: bytes, mime: Optional[str] = None
    ) -> SyncStats:
        """Embed the same front cover into each file."""
        stats = SyncStats()
        if not data:
            logger.warning("No cover data supplied")
            return stats
        for path in files:
            if write_embedded_cover(path, data, mime):
                stats.updated += 1
            else:
                stats.failed += 1
        return stats

    def clear_cover(self, files: list[str]) -> SyncStats:
        """Remove the embedded cover from each file."""
        stats = SyncStats()
        for path in files:
            if write_embedded_cover(path, b""):
                stats.updated += 1
            else:
                stats.failed += 1
        return stats

    def _album_files(self, path: str) -> list[str]:
        parent = Path(path).parent
        try:
            entries = sorted(os.scandir(parent), key=lambda e: e.name)
        except OSError as e:
            logger.warning(f"Cannot list {parent}: {e}")
            return []
        return [
            entry.path
            for entry in entries
            if not entry.name.startswith(".")
            and entry.is_file()
            and is_supported_file(entry.name, self.supported_formats)
        ]

    def apply_album_cover(
        self, path: str, data: bytes, mime: Optional[str] = None
    ) -> SyncStats:
        """Embed a cover into every audio file in the directory of path."""
        return self.apply_cover(self._album_files(path), data, mime)

    def clear_album_cover(self, path: str) -> SyncStats:
        """Remove embedded covers from every audio file in the directory of path."""
        return self.clear_cover(self._album_files(path))


def _stores(source: SourceConfig) -> set[SourceType]:
    return {source.primary, source.secondary} - {SourceType.NONE}
