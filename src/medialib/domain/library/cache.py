"""
The library cache: authoritative map of every known audio file.

All state lives on one thread that drains a bounded inbox. Scanners and
callers only post messages; readers get copies through request/reply
messages. Listeners are notified of changes from the cache thread.
"""

import json
import os
import queue
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from medialib.core.config import Config
from .events import (
    ApplyTags,
    BaseOffline,
    CacheLoaded,
    ItemRemoved,
    ItemsUpdated,
    LibraryScanDone,
    Listener,
    LoadCache,
    MarkBaseOffline,
    MediaBatch,
    Notification,
    SaveCache,
    ScanDone,
    ScanProgress,
    Shutdown,
    Snapshot,
    StartScan,
    StopScan,
    UpsertEntry,
)
from .models import MediaEntry, TagData
from .scanner import DirectoryScanner
from .sources import SourceConfig, SourceStore, is_under

CACHE_VERSION = 1

# Identifiers whose silent loss is logged
IDENTIFIER_FIELDS = ("mb_album_id", "mb_artist_id", "mb_track_id")

ScannerFactory = Callable[..., DirectoryScanner]


class Notifier:
    """Thread-safe listener registry."""

    def __init__(self):
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def register(self, listener: Listener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unregister(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def emit(self, event: Notification) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(f"Listener failed on {type(event).__name__}")


def load_entries(cache_path: Path) -> dict[str, MediaEntry]:
    """Read the persisted cache. Missing or corrupt files give an empty map."""
    if not cache_path.exists():
        logger.info(f"No cache file at {cache_path}, starting empty")
        return {}

    try:
        with open(cache_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Cache file {cache_path} is unreadable, starting empty: {e}")
        return {}

    if not isinstance(data, dict) or not isinstance(data.get("entries"), list):
        logger.warning(f"Cache file {cache_path} has an unexpected layout, starting empty")
        return {}

    entries = {}
    for record in data["entries"]:
        entry = MediaEntry.from_dict(record) if isinstance(record, dict) else None
        if entry is None:
            logger.debug(f"Skipping invalid cache record: {record!r}")
            continue
        entries[entry.path] = entry
    return entries


def save_entries(cache_path: Path, entries: dict[str, MediaEntry]) -> bool:
    """Write the cache atomically."""
    payload = {
        "version": CACHE_VERSION,
        "entries": [entry.to_dict() for entry in entries.values()],
    }
    temp_path = cache_path.with_suffix(cache_path.suffix + ".tmp")
    try:
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f)
        os.replace(temp_path, cache_path)
        return True
    except OSError as e:
        logger.error(f"Could not save cache to {cache_path}: {e}")
        return False


class LibraryCache:
    """Owns the entry map, its persistence and the scan lifecycle."""

    def __init__(
        self,
        config: Config,
        sources: SourceStore,
        notifier: Optional[Notifier] = None,
        scanner_factory: ScannerFactory = DirectoryScanner,
    ):
        self.config = config
        self.sources = sources
        self.notifier = notifier or Notifier()
        self.scanner_factory = scanner_factory

        self._inbox: queue.Queue = queue.Queue(maxsize=config.scanner.inbox_size)
        self._thread: Optional[threading.Thread] = None

        # Owned by the cache thread
        self._entries: dict[str, MediaEntry] = {}
        self._scanners: dict[str, DirectoryScanner] = {}
        self._pending_scanners = 0
        self._scan_id = 0
        self._dirty = False

        self._handlers = {
            LoadCache: self._on_load_cache,
            StartScan: self._on_start_scan,
            StopScan: self._on_stop_scan,
            MediaBatch: self._on_batch,
            ScanDone: self._on_scan_done,
            ScanProgress: self._on_progress,
            UpsertEntry: self._on_upsert,
            ApplyTags: self._on_apply_tags,
            MarkBaseOffline: self._on_mark_base_offline,
            SaveCache: self._on_save,
            Snapshot: self._on_snapshot,
        }

    # ------------------------------------------------------------------
    # Thread lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(
            target=self._run, name="library-cache", daemon=True
        )
        self._thread.start()

    def shutdown(self, timeout: Optional[float] = 10.0) -> None:
        """Stop scanners, persist pending changes and end the cache thread."""
        if self._thread is None:
            return
        self._inbox.put(Shutdown())
        self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        logger.debug("Library cache thread started")
        while True:
            message = self._inbox.get()
            if isinstance(message, Shutdown):
                self._on_shutdown()
                break
            self._handle(message)
        logger.debug("Library cache thread stopped")

    def _handle(self, message) -> None:
        handler = self._handlers.get(type(message))
        if handler is None:
            logger.warning(f"Unhandled cache message: {type(message).__name__}")
            return
        try:
            handler(message)
        except Exception as e:
            logger.exception(f"Error handling {type(message).__name__}")
            reply = getattr(message, "reply", None)
            if reply is not None and not reply.done():
                reply.set_exception(e)

    def _on_cache_thread(self) -> bool:
        # Before start() the caller owns the state
        return self._thread is None or threading.current_thread() is self._thread

    def _post(self, message) -> None:
        self._inbox.put(message)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def register_listener(self, listener: Listener) -> None:
        self.notifier.register(listener)

    def unregister_listener(self, listener: Listener) -> None:
        self.notifier.unregister(listener)

    def load_directories(self) -> list[str]:
        """Configured root directories, migrating the legacy list if needed."""
        return self.sources.paths()

    def load_cache(self) -> None:
        self._post(LoadCache())

    def start_scan(self) -> None:
        self._post(StartScan())

    def stop_scan(self) -> None:
        self._post(StopScan())

    def add_or_update_entry(self, entry: MediaEntry) -> None:
        self._post(UpsertEntry(entry))

    def apply_tags(self, path: str, tags: TagData) -> None:
        """Targeted update of one entry after its tags were edited."""
        self._post(ApplyTags(path, tags.copy()))

    def mark_base_offline(self, base: str) -> None:
        self._post(MarkBaseOffline(base))

    def save(self, timeout: Optional[float] = None) -> bool:
        """Persist now and wait for the result."""
        if self._on_cache_thread():
            return self._save()
        reply: Future = Future()
        self._post(SaveCache(reply))
        return reply.result(timeout)

    def all_entries(self, timeout: Optional[float] = None) -> list[MediaEntry]:
        """Copy of every entry."""
        if self._on_cache_thread():
            return list(self._entries.values())
        reply: Future = Future()
        self._post(Snapshot(reply))
        return reply.result(timeout)

    def get_entry(self, path: str, timeout: Optional[float] = None) -> Optional[MediaEntry]:
        if self._on_cache_thread():
            return self._entries.get(path)
        reply: Future = Future()
        self._post(Snapshot(reply, path))
        return reply.result(timeout)

    @property
    def scanning(self) -> bool:
        return self._pending_scanners > 0

    # ------------------------------------------------------------------
    # Handlers (cache thread only)
    # ------------------------------------------------------------------

    def _save(self) -> bool:
        ok = save_entries(self.config.cache_path, self._entries)
        if ok:
            self._dirty = False
            logger.debug(f"Saved {len(self._entries)} entries to {self.config.cache_path}")
        return ok

    def _upsert(self, entry: MediaEntry) -> None:
        previous = self._entries.get(entry.path)
        if previous is not None:
            for name in IDENTIFIER_FIELDS:
                if getattr(previous, name) and not getattr(entry, name):
                    logger.warning(
                        f"Update clears {name} of {entry.path} "
                        f"(was {getattr(previous, name)})"
                    )
        self._entries[entry.path] = entry
        self._dirty = True

    def _on_load_cache(self, message: LoadCache) -> None:
        self._entries = load_entries(self.config.cache_path)
        self._dirty = False
        logger.info(f"Loaded {len(self._entries)} entries from cache")
        self.notifier.emit(CacheLoaded(len(self._entries)))

    def _on_start_scan(self, message: StartScan) -> None:
        if self._scanners:
            logger.info("Restarting scan, cancelling the running one")
            for scanner in self._scanners.values():
                scanner.stop()
            self._scanners.clear()

        self._scan_id += 1
        scan_id = self._scan_id
        sources = self.sources.load()
        bases = {source.path for source in sources}

        # Drop everything under directories that are no longer configured
        for path, entry in list(self._entries.items()):
            if entry.base not in bases:
                del self._entries[path]
                self._dirty = True
                self.notifier.emit(ItemRemoved(path))

        # Show what is known while the scan revalidates it
        if self._entries:
            self.notifier.emit(ItemsUpdated(tuple(self._entries.values())))

        snapshot = dict(self._entries)
        for source in sources:
            if source.path in self._scanners:
                continue
            if not os.path.isdir(source.path):
                logger.warning(f"Directory unavailable: {source.path}")
                self._mark_offline(source.path)
                continue
            scanner = self.scanner_factory(
                root=source.path,
                inbox=self._inbox,
                snapshot=snapshot,
                scan_id=scan_id,
                config=self.config.scanner,
            )
            self._scanners[source.path] = scanner
            scanner.launch()
            scanner.start()

        # Cheap existence check on what scanners will not re-report
        for path, entry in list(self._entries.items()):
            if entry.missing or entry.base not in self._scanners:
                continue
            if not os.path.exists(path):
                self._entries[path] = entry._replace(missing=True)
                self._dirty = True
                self.notifier.emit(ItemRemoved(path))

        self._pending_scanners = len(self._scanners)
        logger.info(f"Scan {scan_id} started with {self._pending_scanners} scanner(s)")
        if self._pending_scanners == 0:
            self._finish_scan()

    def _finish_scan(self) -> None:
        self._save()
        logger.info(f"Library scan {self._scan_id} complete: {len(self._entries)} entries")
        self.notifier.emit(LibraryScanDone(len(self._entries)))

    def _on_stop_scan(self, message: StopScan) -> None:
        for scanner in self._scanners.values():
            scanner.stop()

    def _on_batch(self, message: MediaBatch) -> None:
        if message.scan_id != self._scan_id:
            logger.debug(f"Applying late batch from scan {message.scan_id}")
        for entry in message.entries:
            self._upsert(entry)
        self.notifier.emit(ItemsUpdated(message.entries))

    def _on_scan_done(self, message: ScanDone) -> None:
        if message.scan_id != self._scan_id:
            logger.debug(f"Ignoring completion of stale scan {message.scan_id}")
            return
        if self._scanners.pop(message.base, None) is None:
            logger.debug(f"Ignoring duplicate completion for {message.base}")
            return

        self._pending_scanners -= 1
        logger.debug(
            f"Scanner for {message.base} done: {message.files} files, "
            f"{message.dirs} dirs, {message.elapsed:.1f}s "
            f"({self._pending_scanners} remaining)"
        )
        if self._pending_scanners == 0:
            self._finish_scan()

    def _on_progress(self, message: ScanProgress) -> None:
        self.notifier.emit(message)

    def _on_upsert(self, message: UpsertEntry) -> None:
        self._upsert(message.entry)
        self.notifier.emit(ItemsUpdated((message.entry,)))

    def _on_apply_tags(self, message: ApplyTags) -> None:
        path = message.path
        entry = self._entries.get(path)
        if entry is None:
            base = SourceConfig.for_path(path, self.sources.load()).path
            entry = MediaEntry(path=path, base=base)
        entry = entry.with_tags(message.tags)

        try:
            st = os.stat(path)
            entry = entry._replace(
                size=st.st_size, mtime=int(st.st_mtime), inode=st.st_ino, missing=False
            )
        except OSError as e:
            logger.warning(f"Cannot stat {path} after tag update: {e}")

        self._upsert(entry)
        self.notifier.emit(ItemsUpdated((entry,)))
        self._save()

    def _mark_offline(self, base: str) -> int:
        count = 0
        for path, entry in list(self._entries.items()):
            if is_under(path, base) and not entry.missing:
                self._entries[path] = entry._replace(missing=True)
                count += 1
        if count:
            self._dirty = True
        self.notifier.emit(BaseOffline(base))
        return count

    def _on_mark_base_offline(self, message: MarkBaseOffline) -> None:
        count = self._mark_offline(message.base)
        logger.info(f"Marked {count} entries under {message.base} as missing")

    def _on_save(self, message: SaveCache) -> None:
        ok = self._save()
        if message.reply is not None:
            message.reply.set_result(ok)

    def _on_snapshot(self, message: Snapshot) -> None:
        if message.path is not None:
            message.reply.set_result(self._entries.get(message.path))
        else:
            message.reply.set_result(list(self._entries.values()))

    def _on_shutdown(self) -> None:
        for scanner in self._scanners.values():
            scanner.stop()
        if self._dirty:
            self._save()
