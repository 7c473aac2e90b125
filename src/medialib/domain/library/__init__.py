"""Library domain - audio file scanning, metadata and the library cache.

This domain handles:
- Entry and tag data models
- Embedded tag and native attribute codecs
- Per-directory source configuration
- Directory scanning with fast-skip change detection
- The persistent library cache
"""

# Models
from .models import MediaEntry, TagData, clamp_rating

# Metadata codecs
from .metadata import (
    read_tags,
    write_tags_to_file,
    extract_embedded_cover,
    write_embedded_cover,
    rating_to_byte,
    byte_to_rating,
    format_pair,
    parse_pair,
    sniff_mime,
)
from .attributes import (
    is_native_attribute_volume,
    read_native_attributes,
    write_native_attributes,
    read_native_rating,
)

# Directory configuration
from .sources import ConflictPolicy, SourceConfig, SourceStore, SourceType

# Scanning and cache
from .scanner import DirectoryScanner, is_supported_file
from .cache import LibraryCache, Notifier

__all__ = [
    # Models
    "MediaEntry",
    "TagData",
    "clamp_rating",
    # Metadata
    "read_tags",
    "write_tags_to_file",
    "extract_embedded_cover",
    "write_embedded_cover",
    "rating_to_byte",
    "byte_to_rating",
    "format_pair",
    "parse_pair",
    "sniff_mime",
    # Native attributes
    "is_native_attribute_volume",
    "read_native_attributes",
    "write_native_attributes",
    "read_native_rating",
    # Sources
    "ConflictPolicy",
    "SourceConfig",
    "SourceStore",
    "SourceType",
    # Scanner / cache
    "DirectoryScanner",
    "is_supported_file",
    "LibraryCache",
    "Notifier",
]
