"""Sync domain - reconciling embedded tags and native attributes.

This domain handles:
- Field-level merging of two metadata sources
- Policy-driven sync with interactive conflict resolution
- Saving edited fields to files
- Applying and clearing embedded cover art
"""

from .merge import smart_merge, merge_metadata, fill_empty
from .engine import (
    ConflictChoice,
    MetadataSync,
    SyncStats,
    coerce_fields,
    TO_NATIVE,
    TO_TAGS,
)

__all__ = [
    "smart_merge",
    "merge_metadata",
    "fill_empty",
    "ConflictChoice",
    "MetadataSync",
    "SyncStats",
    "coerce_fields",
    "TO_NATIVE",
    "TO_TAGS",
]
