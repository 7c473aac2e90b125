"""
Tests for per-directory source configuration and its persistence.
"""

import json

from medialib.domain.library.sources import (
    ConflictPolicy,
    SourceConfig,
    SourceStore,
    SourceType,
    is_under,
)


class TestForPath:
    """Test longest-prefix resolution of directory settings."""

    def test_longest_prefix_wins(self):
        sources = [
            SourceConfig(path="/music", conflict_policy=ConflictPolicy.ASK),
            SourceConfig(path="/music/rock", conflict_policy=ConflictPolicy.OVERWRITE),
        ]
        assert (
            SourceConfig.for_path("/music/rock/x.mp3", sources).conflict_policy
            == ConflictPolicy.OVERWRITE
        )
        assert (
            SourceConfig.for_path("/music/jazz/y.mp3", sources).conflict_policy
            == ConflictPolicy.ASK
        )

    def test_order_does_not_matter(self):
        sources = [
            SourceConfig(path="/music/rock", primary=SourceType.NATIVE),
            SourceConfig(path="/music", primary=SourceType.TAGS),
        ]
        assert SourceConfig.for_path("/music/rock/x.mp3", sources).primary == SourceType.NATIVE

    def test_defaults_when_unmatched(self):
        resolved = SourceConfig.for_path("/elsewhere/z.mp3", [SourceConfig(path="/music")])
        assert resolved.primary == SourceType.TAGS
        assert resolved.secondary == SourceType.NATIVE
        assert resolved.conflict_policy == ConflictPolicy.ASK

    def test_sibling_directory_does_not_match(self):
        sources = [
            SourceConfig(path="/music", conflict_policy=ConflictPolicy.OVERWRITE),
            SourceConfig(path="/music2", conflict_policy=ConflictPolicy.FILL_EMPTY),
        ]
        assert (
            SourceConfig.for_path("/music2/x.mp3", sources).conflict_policy
            == ConflictPolicy.FILL_EMPTY
        )
        resolved = SourceConfig.for_path("/music2/x.mp3", sources[:1])
        assert resolved.conflict_policy == ConflictPolicy.ASK

    def test_trailing_separator(self):
        sources = [SourceConfig(path="/music/", primary=SourceType.NATIVE)]
        assert SourceConfig.for_path("/music/x.mp3", sources).primary == SourceType.NATIVE


class TestIsUnder:
    def test_inside(self):
        assert is_under("/music/a/b.mp3", "/music")
        assert is_under("/music", "/music")

    def test_sibling_prefix(self):
        assert not is_under("/music2/b.mp3", "/music")

    def test_empty_directory(self):
        assert not is_under("/music/b.mp3", "")


class TestSourceConfigDict:
    def test_round_trip(self):
        source = SourceConfig(
            path="/music",
            primary=SourceType.NATIVE,
            secondary=SourceType.NONE,
            conflict_policy=ConflictPolicy.FILL_EMPTY,
        )
        assert SourceConfig.from_dict(source.to_dict()) == source

    def test_unknown_values_fall_back(self):
        source = SourceConfig.from_dict(
            {"path": "/music", "primary": "cloud", "conflict_policy": "maybe"}
        )
        assert source.primary == SourceType.TAGS
        assert source.conflict_policy == ConflictPolicy.ASK

    def test_path_required(self):
        assert SourceConfig.from_dict({"primary": "tags"}) is None


class TestSourceStore:
    """Test SourceStore persistence."""

    def test_missing_file_is_empty(self, tmp_path):
        store = SourceStore(tmp_path / "directories.json")
        assert store.load() == []

    def test_add_persists(self, tmp_path):
        settings = tmp_path / "directories.json"
        store = SourceStore(settings)
        music = str(tmp_path / "music")

        assert store.add(SourceConfig(path=music, conflict_policy=ConflictPolicy.OVERWRITE))

        data = json.loads(settings.read_text())
        assert data == {
            "sources": [
                {
                    "path": music,
                    "primary": "tags",
                    "secondary": "native",
                    "conflict_policy": "overwrite",
                }
            ]
        }
        assert SourceStore(settings).load()[0].conflict_policy == ConflictPolicy.OVERWRITE

    def test_add_replaces_same_path(self, tmp_path):
        store = SourceStore(tmp_path / "directories.json")
        music = str(tmp_path / "music")
        store.add(SourceConfig(path=music))
        store.add(SourceConfig(path=music, primary=SourceType.NATIVE))

        sources = store.load()
        assert len(sources) == 1
        assert sources[0].primary == SourceType.NATIVE

    def test_remove(self, tmp_path):
        store = SourceStore(tmp_path / "directories.json")
        music = str(tmp_path / "music")
        store.add(SourceConfig(path=music))

        assert store.remove(music)
        assert store.load() == []
        assert not store.remove(music)

    def test_update(self, tmp_path):
        store = SourceStore(tmp_path / "directories.json")
        music = str(tmp_path / "music")
        store.add(SourceConfig(path=music))

        assert store.update(music, conflict_policy=ConflictPolicy.FILL_EMPTY)
        assert store.resolve(music + "/a.mp3").conflict_policy == ConflictPolicy.FILL_EMPTY
        assert not store.update(str(tmp_path / "other"), primary="native")

    def test_invalid_records_skipped(self, tmp_path):
        settings = tmp_path / "directories.json"
        settings.write_text(
            json.dumps({"sources": [{"path": "/music"}, {"primary": "tags"}, "junk"]})
        )
        assert SourceStore(settings).paths() == ["/music"]

    def test_corrupt_file_is_empty(self, tmp_path):
        settings = tmp_path / "directories.json"
        settings.write_text("{not json")
        assert SourceStore(settings).load() == []

    def test_legacy_migration(self, tmp_path):
        settings = tmp_path / "directories.json"
        legacy = tmp_path / "directories.txt"
        legacy.write_text("/music\n\n/podcasts\n")

        store = SourceStore(settings, legacy_path=legacy)

        assert store.paths() == ["/music", "/podcasts"]
        assert settings.exists()
        assert store.load()[0].conflict_policy == ConflictPolicy.ASK

    def test_reload_picks_up_changes(self, tmp_path):
        settings = tmp_path / "directories.json"
        store = SourceStore(settings)
        assert store.load() == []

        settings.write_text(json.dumps({"sources": [{"path": "/music"}]}))
        assert store.load() == []
        assert store.reload()[0].path == "/music"
