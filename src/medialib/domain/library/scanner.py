"""
Directory scanning for the music library.

One DirectoryScanner runs per monitored root on its own thread. It walks the
tree depth first, skips files whose size and mtime match the cache snapshot,
reads tags for new or changed files and posts batches to the cache inbox.
"""

import os
import queue
import threading
import time
from pathlib import Path
from typing import Optional

from loguru import logger

from medialib.core.config import ScannerConfig
from .attributes import read_native_rating
from .events import MediaBatch, ScanDone, ScanProgress
from .metadata import read_tags
from .models import MediaEntry


def is_supported_file(name: str, supported_formats: list[str]) -> bool:
    """Check if file has a supported audio extension."""
    return Path(name).suffix.lower() in supported_formats


class DirectoryScanner:
    """Scans one root directory and reports what it finds to the cache.

    Lifecycle: launch() starts the worker thread, which waits for start().
    stop() asks a running scan to finish early; the scanner still flushes
    what it has buffered and posts ScanDone.
    """

    IDLE = "idle"
    SCANNING = "scanning"

    def __init__(
        self,
        root: str,
        inbox: queue.Queue,
        snapshot: dict[str, MediaEntry],
        scan_id: int,
        config: Optional[ScannerConfig] = None,
    ):
        self.root = root
        self.base = root
        self.inbox = inbox
        self.snapshot = snapshot
        self.scan_id = scan_id
        self.config = config or ScannerConfig()
        self.supported_formats = [ext.lower() for ext in self.config.supported_formats]

        self.state = self.IDLE
        self.dirs_scanned = 0
        self.files_found = 0

        self._start_event = threading.Event()
        self._stop_event = threading.Event()
        self._buffer_lock = threading.Lock()
        self._buffer: list[MediaEntry] = []
        self._rating_buffer: list[MediaEntry] = []
        self._started_at = 0.0
        self._last_progress = 0.0
        self._thread: Optional[threading.Thread] = None

    # Control

    def launch(self) -> None:
        """Start the worker thread. It waits for start() before scanning."""
        if self._thread is not None:
            return
        name = os.path.basename(self.root.rstrip(os.sep)) or self.root
        self._thread = threading.Thread(
            target=self._worker, name=f"scanner-{name}", daemon=True
        )
        self._thread.start()

    def start(self) -> None:
        self._start_event.set()

    def stop(self) -> None:
        self._stop_event.set()
        # Wake a worker that is still waiting to start
        self._start_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _worker(self) -> None:
        self._start_event.wait()
        try:
            self.run_scan()
        except Exception:
            logger.exception(f"Scanner for {self.root} crashed")

    # Scanning

    def run_scan(self) -> None:
        """Walk the root and post batches, progress and ScanDone."""
        self.state = self.SCANNING
        self._started_at = time.monotonic()
        logger.info(f"Scanning {self.root} (scan {self.scan_id})")

        try:
            self._walk()
        finally:
            self._flush(force=True)
            elapsed = time.monotonic() - self._started_at
            self.state = self.IDLE
            if self.stopped:
                logger.info(f"Scan of {self.root} cancelled after {elapsed:.1f}s")
            else:
                logger.info(
                    f"Scanned {self.root}: {self.dirs_scanned} dirs, "
                    f"{self.files_found} files in {elapsed:.1f}s"
                )
            self.inbox.put(
                ScanDone(
                    base=self.base,
                    scan_id=self.scan_id,
                    elapsed=elapsed,
                    dirs=self.dirs_scanned,
                    files=self.files_found,
                )
            )

    def _walk(self) -> None:
        # Explicit stack keeps deep trees off the call stack
        stack = [self.root]
        while stack:
            if self.stopped:
                return
            current = stack.pop()

            try:
                iterator = os.scandir(current)
            except OSError as e:
                logger.warning(f"Skipping unreadable directory {current}: {e}")
                continue

            subdirs = []
            with iterator:
                self.dirs_scanned += 1
                for entry in iterator:
                    if self.stopped:
                        break
                    if entry.name.startswith("."):
                        continue
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            subdirs.append(entry.path)
                            continue
                        if not entry.is_file():
                            continue
                    except OSError:
                        continue
                    if not is_supported_file(entry.name, self.supported_formats):
                        continue

                    self.files_found += 1
                    self._process_file(entry.path)
                    self._report_progress()

            # Reversed so the first subdirectory is visited first
            stack.extend(reversed(subdirs))
            self._report_progress()

    def _process_file(self, path: str) -> None:
        """Queue an entry for path unless it is unchanged since the snapshot.

        A file with the cached mtime and size is not re-read. Only its native
        rating attribute is checked, and only a non-zero rating replaces the
        cached one: a rating of 0 or an absent attribute keeps the cached
        value, so clearing a rating through attributes alone shows up on the
        next full read of the file.
        """
        try:
            st = os.stat(path)
        except OSError as e:
            logger.debug(f"Cannot stat {path}: {e}")
            return

        mtime = int(st.st_mtime)
        cached = self.snapshot.get(path)
        if cached is not None and cached.mtime == mtime and cached.size == st.st_size:
            # Unchanged file: only the rating attribute can have moved
            rating = read_native_rating(path)
            if (rating and rating != cached.rating) or cached.missing:
                updated = cached._replace(
                    rating=rating or cached.rating, missing=False
                )
                self._add(updated, rating_only=True)
            return

        try:
            entry = self._read_entry(path, st)
        except Exception as e:
            logger.warning(f"Could not read metadata from {path}: {e}")
            return
        self._add(entry)

    def _read_entry(self, path: str, st: os.stat_result) -> MediaEntry:
        tags, ok = read_tags(path)
        if not ok:
            logger.debug(f"No metadata found in {path}")
        if not tags.title:
            tags.title = Path(path).stem
        rating = read_native_rating(path)
        if rating:
            tags.rating = rating
        return MediaEntry.from_tags(
            path,
            self.base,
            tags,
            size=st.st_size,
            mtime=int(st.st_mtime),
            inode=st.st_ino,
        )

    # Batching

    def _add(self, entry: MediaEntry, rating_only: bool = False) -> None:
        with self._buffer_lock:
            if rating_only:
                self._rating_buffer.append(entry)
            else:
                self._buffer.append(entry)
        self._flush()

    def _flush(self, force: bool = False) -> None:
        batches = []
        with self._buffer_lock:
            if self._buffer and (force or len(self._buffer) >= self.config.batch_size):
                batches.append(tuple(self._buffer))
                self._buffer = []
            if self._rating_buffer and (
                force or len(self._rating_buffer) >= self.config.rating_batch_size
            ):
                batches.append(tuple(self._rating_buffer))
                self._rating_buffer = []

        # Blocking put: a full inbox slows the scanner down
        for entries in batches:
            self.inbox.put(MediaBatch(base=self.base, entries=entries, scan_id=self.scan_id))

    def _report_progress(self) -> None:
        now = time.monotonic()
        if (now - self._last_progress) * 1000 < self.config.progress_interval_ms:
            return
        self._last_progress = now
        try:
            self.inbox.put_nowait(
                ScanProgress(
                    dirs=self.dirs_scanned,
                    files=self.files_found,
                    elapsed_sec=now - self._started_at,
                    base=self.base,
                )
            )
        except queue.Full:
            pass
