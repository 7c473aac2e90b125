"""
Tests for library entry and tag data models.
"""

from medialib.domain.library.models import MediaEntry, TagData, clamp_rating


class TestClampRating:
    def test_in_range(self):
        assert clamp_rating(7) == 7

    def test_above_ten(self):
        assert clamp_rating(42) == 10

    def test_negative(self):
        assert clamp_rating(-3) == 0

    def test_junk(self):
        assert clamp_rating("x") == 0
        assert clamp_rating(None) == 0


class TestTagData:
    """Test TagData comparison helpers."""

    def test_empty(self):
        assert TagData().is_empty()
        assert not TagData(year=1999).is_empty()

    def test_differences_lists_changed_fields(self):
        a = TagData(title="A", artist="X", rating=4)
        b = TagData(title="A", artist="Y", rating=6)
        assert a.differences(b) == ["artist", "rating"]
        assert a.has_differences(b)

    def test_stream_properties_are_not_differences(self):
        """Length and bitrate do not make two snapshots differ."""
        a = TagData(title="A", length_sec=200, bitrate=320)
        b = TagData(title="A")
        assert not a.has_differences(b)

    def test_copy_is_independent(self):
        a = TagData(title="A")
        b = a.copy()
        b.title = "B"
        assert a.title == "A"


class TestMediaEntry:
    """Test MediaEntry construction and serialization."""

    def test_from_tags_clamps_rating(self):
        entry = MediaEntry.from_tags("/m/a.mp3", "/m", TagData(title="A", rating=15))
        assert entry.rating == 10
        assert entry.base == "/m"

    def test_from_tags_maps_stream_fields(self):
        tags = TagData(length_sec=181, bitrate=256, sample_rate=44100, channels=2)
        entry = MediaEntry.from_tags("/m/a.mp3", "/m", tags, size=10, mtime=20, inode=30)
        assert entry.duration == 181
        assert entry.bitrate == 256
        assert (entry.size, entry.mtime, entry.inode) == (10, 20, 30)

    def test_dict_round_trip(self):
        entry = MediaEntry(path="/m/a.flac", base="/m", title="A", year=2001, missing=True)
        assert MediaEntry.from_dict(entry.to_dict()) == entry

    def test_from_dict_requires_path(self):
        assert MediaEntry.from_dict({"title": "No path"}) is None

    def test_from_dict_ignores_unknown_and_bad_values(self):
        entry = MediaEntry.from_dict(
            {"path": "/m/a.mp3", "year": "abc", "rating": 99, "extra": 1}
        )
        assert entry.year == 0
        assert entry.rating == 10

    def test_with_tags_keeps_identity_and_stream_info(self):
        entry = MediaEntry(path="/m/a.mp3", base="/m", duration=200, size=5, inode=9)
        updated = entry.with_tags(TagData(title="New", rating=3))
        assert updated.title == "New"
        assert updated.rating == 3
        assert updated.duration == 200
        assert (updated.size, updated.inode, updated.base) == (5, 9, "/m")
