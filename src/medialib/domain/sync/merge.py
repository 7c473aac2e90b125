"""
Merging metadata from two sources.

The primary source always keeps its non-empty values. Empty primary fields
can be filled from the secondary source. Two different non-empty values are
a conflict.
"""

from loguru import logger

from ..library.models import SYNC_FIELDS, TagData
from ..library.sources import ConflictPolicy


def smart_merge(primary: TagData, secondary: TagData) -> tuple[TagData, bool, bool]:
    """Merge secondary into primary field by field.

    Returns:
        (merged, changed, has_conflict) where changed means at least one field
        was filled from secondary and has_conflict means at least one field
        holds two different non-empty values (primary's is kept)
    """
    merged = primary.copy()
    changed = False
    conflicts = []

    for name in SYNC_FIELDS:
        mine = getattr(primary, name)
        theirs = getattr(secondary, name)
        if mine == theirs or not theirs:
            continue
        if not mine:
            setattr(merged, name, theirs)
            changed = True
        else:
            conflicts.append(name)

    if conflicts:
        logger.debug(f"Merge conflicts on: {', '.join(conflicts)}")
    return merged, changed, bool(conflicts)


def fill_empty(primary: TagData, secondary: TagData) -> TagData:
    """Copy of primary with empty syncable fields taken from secondary."""
    merged, _, _ = smart_merge(primary, secondary)
    return merged


def merge_metadata(
    primary: TagData, secondary: TagData, policy: ConflictPolicy
) -> TagData:
    """Non-interactive merge.

    OVERWRITE returns primary unchanged. FILL_EMPTY and ASK fill the empty
    primary fields from secondary; interactive conflict handling for ASK
    happens in the sync engine.
    """
    if policy == ConflictPolicy.OVERWRITE:
        return primary.copy()
    return fill_empty(primary, secondary)
