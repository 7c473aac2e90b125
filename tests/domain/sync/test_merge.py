"""
Tests for field-level metadata merging.
"""

from medialib.domain.library.models import TagData
from medialib.domain.library.sources import ConflictPolicy
from medialib.domain.sync.merge import fill_empty, merge_metadata, smart_merge


class TestSmartMerge:
    """Test smart_merge field rules."""

    def test_fills_empty_primary_fields(self):
        merged, changed, conflict = smart_merge(
            TagData(title="A"), TagData(artist="B", year=1990)
        )
        assert (merged.title, merged.artist, merged.year) == ("A", "B", 1990)
        assert changed
        assert not conflict

    def test_conflict_keeps_primary(self):
        merged, changed, conflict = smart_merge(TagData(title="A"), TagData(title="Z"))
        assert merged.title == "A"
        assert not changed
        assert conflict

    def test_empty_secondary_changes_nothing(self):
        primary = TagData(title="A", rating=4)
        merged, changed, conflict = smart_merge(primary, TagData())
        assert merged == primary
        assert not changed
        assert not conflict

    def test_equal_values_are_not_conflicts(self):
        _, changed, conflict = smart_merge(TagData(title="A"), TagData(title="A"))
        assert not changed
        assert not conflict

    def test_inputs_not_modified(self):
        primary = TagData(title="A")
        smart_merge(primary, TagData(artist="B"))
        assert primary.artist == ""

    def test_stream_fields_ignored(self):
        merged, changed, _ = smart_merge(TagData(), TagData(bitrate=320))
        assert merged.bitrate == 0
        assert not changed


class TestMergeMetadata:
    def test_fill_empty_policy(self):
        primary = TagData(title="A", artist="")
        secondary = TagData(title="Z", artist="B")
        merged = merge_metadata(primary, secondary, ConflictPolicy.FILL_EMPTY)
        assert (merged.title, merged.artist) == ("A", "B")

    def test_overwrite_policy_returns_primary(self):
        primary = TagData(title="A")
        merged = merge_metadata(primary, TagData(title="Z", artist="B"), ConflictPolicy.OVERWRITE)
        assert merged == primary
        assert merged is not primary

    def test_fill_empty_helper(self):
        assert fill_empty(TagData(), TagData(genre="Jazz")).genre == "Jazz"
