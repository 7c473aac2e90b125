"""
Tests for LibraryCache message handling and persistence.

Most tests drive handlers directly through _handle() with a fake scanner
factory, so no threads are involved.
"""

import json

import pytest
from loguru import logger

from medialib.core.config import Config, LibraryConfig
from medialib.domain.library import cache as cache_module
from medialib.domain.library.cache import LibraryCache, Notifier, load_entries
from medialib.domain.library.events import (
    BaseOffline,
    CacheLoaded,
    ItemRemoved,
    ItemsUpdated,
    LibraryScanDone,
    LoadCache,
    MarkBaseOffline,
    MediaBatch,
    ScanDone,
    StartScan,
    StopScan,
    UpsertEntry,
)
from medialib.domain.library.models import MediaEntry, TagData
from medialib.domain.library.sources import SourceConfig, SourceStore


class FakeScanner:
    """Stands in for DirectoryScanner; records how it was created."""

    def __init__(self, log, root, inbox, snapshot, scan_id, config):
        self.root = root
        self.snapshot = dict(snapshot)
        self.scan_id = scan_id
        self.stopped = False
        log.append(("spawn", root))

    def launch(self):
        pass

    def start(self):
        pass

    def stop(self):
        self.stopped = True


@pytest.fixture
def events():
    return []


@pytest.fixture
def library(tmp_path, events):
    config = Config(library=LibraryConfig(cache_file=str(tmp_path / "cache.json")))
    store = SourceStore(tmp_path / "directories.json")
    scanners = []

    def factory(**kwargs):
        scanner = FakeScanner(events, **kwargs)
        scanners.append(scanner)
        return scanner

    cache = LibraryCache(config, store, scanner_factory=factory)
    cache.register_listener(events.append)
    cache.scanners = scanners
    return cache


def add_base(library, path):
    path.mkdir(exist_ok=True)
    library.sources.add(SourceConfig(path=str(path)))
    return str(path)


def of_type(events, cls):
    return [e for e in events if isinstance(e, cls)]


class TestStartScan:
    """Test scan start: pruning, spawning and offline bases."""

    def test_prunes_removed_bases_before_spawning(self, library, events, tmp_path):
        base = add_base(library, tmp_path / "music")
        (tmp_path / "music" / "kept.mp3").write_bytes(b"x")
        kept = MediaEntry(path=str(tmp_path / "music" / "kept.mp3"), base=base)
        stale = MediaEntry(path="/old/gone.mp3", base="/old")
        library._handle(UpsertEntry(kept))
        library._handle(UpsertEntry(stale))
        events.clear()

        library._handle(StartScan())

        assert library.scanners[0].snapshot == {kept.path: kept}
        removed_at = events.index(ItemRemoved("/old/gone.mp3"))
        assert removed_at < events.index(("spawn", base))
        assert library.all_entries() == [kept]

    def test_no_directories_completes_immediately(self, library, events, tmp_path):
        library._handle(StartScan())

        assert of_type(events, LibraryScanDone) == [LibraryScanDone(0)]
        assert not library.scanning
        assert (tmp_path / "cache.json").exists()

    def test_unreachable_base_marked_offline(self, library, events, tmp_path):
        base = str(tmp_path / "usb")
        library.sources.add(SourceConfig(path=base))
        library._handle(UpsertEntry(MediaEntry(path=base + "/a.mp3", base=base)))

        library._handle(StartScan())

        assert library.scanners == []
        assert BaseOffline(base) in events
        assert library.get_entry(base + "/a.mp3").missing
        assert of_type(events, LibraryScanDone) == [LibraryScanDone(1)]

    def test_vanished_file_marked_missing(self, library, events, tmp_path):
        base = add_base(library, tmp_path / "music")
        path = base + "/deleted.mp3"
        library._handle(UpsertEntry(MediaEntry(path=path, base=base)))

        library._handle(StartScan())

        assert library.get_entry(path).missing
        assert ItemRemoved(path) in events

    def test_restart_cancels_running_scanners(self, library, tmp_path):
        add_base(library, tmp_path / "music")
        library._handle(StartScan())
        first = library.scanners[0]

        library._handle(StartScan())

        assert first.stopped
        assert library.scanners[1].scan_id == first.scan_id + 1

    def test_stop_scan(self, library, tmp_path):
        add_base(library, tmp_path / "music")
        library._handle(StartScan())
        library._handle(StopScan())
        assert library.scanners[0].stopped


class TestScanCompletion:
    """Test exactly-once completion accounting."""

    def test_completion_counted_once(self, library, events, tmp_path, monkeypatch):
        saves = []
        real_save = cache_module.save_entries
        monkeypatch.setattr(
            cache_module,
            "save_entries",
            lambda path, entries: saves.append(len(entries)) or real_save(path, entries),
        )
        a = add_base(library, tmp_path / "a")
        b = add_base(library, tmp_path / "b")
        library._handle(StartScan())
        scan_id = library.scanners[0].scan_id

        library._handle(ScanDone(base=a, scan_id=scan_id))
        assert library.scanning
        library._handle(ScanDone(base=b, scan_id=scan_id))
        library._handle(ScanDone(base=b, scan_id=scan_id))

        assert not library.scanning
        assert len(saves) == 1
        assert len(of_type(events, LibraryScanDone)) == 1

    def test_stale_scan_ignored(self, library, events, tmp_path):
        a = add_base(library, tmp_path / "a")
        library._handle(StartScan())
        library._handle(StartScan())
        current = library.scanners[-1].scan_id

        library._handle(ScanDone(base=a, scan_id=current - 1))
        assert library.scanning
        assert of_type(events, LibraryScanDone) == []

        library._handle(ScanDone(base=a, scan_id=current))
        assert not library.scanning

    def test_batch_applied_and_announced(self, library, events, tmp_path):
        a = add_base(library, tmp_path / "a")
        library._handle(StartScan())
        entry = MediaEntry(path=a + "/x.mp3", base=a, title="X")

        library._handle(MediaBatch(base=a, entries=(entry,), scan_id=1))

        assert library.get_entry(entry.path) == entry
        assert ItemsUpdated((entry,)) in events


class TestPersistence:
    def test_save_and_load(self, library, events, tmp_path):
        entry = MediaEntry(path="/m/a.mp3", base="/m", title="A", rating=8)
        library._handle(UpsertEntry(entry))
        assert library.save()

        data = json.loads((tmp_path / "cache.json").read_text())
        assert data["version"] == 1

        reloaded = LibraryCache(library.config, library.sources)
        loaded = []
        reloaded.register_listener(loaded.append)
        reloaded._handle(LoadCache())

        assert loaded == [CacheLoaded(1)]
        assert reloaded.all_entries() == [entry]

    def test_corrupt_cache_is_empty(self, library, events, tmp_path):
        (tmp_path / "cache.json").write_text("{broken")

        library._handle(LoadCache())

        assert events == [CacheLoaded(0)]

    def test_missing_cache_is_empty(self, tmp_path):
        assert load_entries(tmp_path / "nothing.json") == {}

    def test_invalid_records_skipped(self, tmp_path):
        path = tmp_path / "cache.json"
        path.write_text(json.dumps({"version": 1, "entries": [{"path": "/m/a.mp3"}, {}]}))
        assert list(load_entries(path)) == ["/m/a.mp3"]


class TestDirectories:
    def test_load_directories(self, library, tmp_path):
        base = add_base(library, tmp_path / "music")
        assert library.load_directories() == [base]

    def test_legacy_list_migrated(self, tmp_path):
        legacy = tmp_path / "directories.txt"
        legacy.write_text("/music\n")
        store = SourceStore(tmp_path / "directories.json", legacy_path=legacy)
        cache = LibraryCache(Config(), store)

        assert cache.load_directories() == ["/music"]
        assert (tmp_path / "directories.json").exists()


class TestEntryUpdates:
    def test_identifier_loss_logged(self, library):
        messages = []
        sink = logger.add(messages.append, level="WARNING", format="{message}")
        try:
            library._handle(UpsertEntry(MediaEntry(path="/m/a.mp3", mb_track_id="abc")))
            library._handle(UpsertEntry(MediaEntry(path="/m/a.mp3")))
        finally:
            logger.remove(sink)

        assert any("mb_track_id" in str(m) for m in messages)
        assert library.get_entry("/m/a.mp3").mb_track_id == ""

    def test_apply_tags_refreshes_file_info(self, library, tmp_path):
        path = tmp_path / "a.mp3"
        path.write_bytes(b"x" * 42)
        library._handle(UpsertEntry(MediaEntry(path=str(path), base=str(tmp_path), size=1)))

        library.apply_tags(str(path), TagData(title="New", rating=5))
        library._handle(library._inbox.get_nowait())

        entry = library.get_entry(str(path))
        assert entry.title == "New"
        assert entry.rating == 5
        assert entry.size == 42
        assert (tmp_path / "cache.json").exists()

    def test_mark_base_offline(self, library, events):
        library._handle(UpsertEntry(MediaEntry(path="/usb/a.mp3", base="/usb")))
        library._handle(UpsertEntry(MediaEntry(path="/music/b.mp3", base="/music")))
        events.clear()

        library._handle(MarkBaseOffline("/usb"))

        assert events == [BaseOffline("/usb")]
        assert library.get_entry("/usb/a.mp3").missing
        assert not library.get_entry("/music/b.mp3").missing

    def test_mark_base_offline_skips_sibling_directory(self, library, events):
        library._handle(UpsertEntry(MediaEntry(path="/music/a.mp3", base="/music")))
        library._handle(UpsertEntry(MediaEntry(path="/music2/b.mp3", base="/music2")))

        library._handle(MarkBaseOffline("/music"))

        assert library.get_entry("/music/a.mp3").missing
        assert not library.get_entry("/music2/b.mp3").missing


class TestNotifier:
    def test_failing_listener_does_not_block_others(self):
        notifier = Notifier()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        notifier.register(broken)
        notifier.register(received.append)
        notifier.emit(CacheLoaded(3))

        assert received == [CacheLoaded(3)]

    def test_unregister(self):
        notifier = Notifier()
        received = []
        notifier.register(received.append)
        notifier.unregister(received.append)
        notifier.emit(CacheLoaded(1))
        assert received == []


class TestCacheThread:
    """Test the public API against a running cache thread."""

    def test_round_trip(self, library, tmp_path):
        library.start()
        try:
            entry = MediaEntry(path="/m/a.mp3", base="/m", title="A")
            library.add_or_update_entry(entry)

            assert library.all_entries(timeout=5) == [entry]
            assert library.get_entry("/m/a.mp3", timeout=5) == entry
            assert library.get_entry("/m/none.mp3", timeout=5) is None
            assert library.save(timeout=5)
        finally:
            library.shutdown(timeout=5)

        assert load_entries(tmp_path / "cache.json") == {"/m/a.mp3": entry}

    def test_shutdown_saves_pending_changes(self, library, tmp_path):
        library.start()
        library.add_or_update_entry(MediaEntry(path="/m/a.mp3", base="/m"))
        library.shutdown(timeout=5)

        assert "/m/a.mp3" in load_entries(tmp_path / "cache.json")
