"""
Per-directory metadata source configuration.

Each monitored directory names a primary and secondary metadata source and
a conflict policy. A file's settings come from the configured directory with
the longest matching path prefix.
"""

import json
import os
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from loguru import logger


class SourceType(str, Enum):
    TAGS = "tags"
    NATIVE = "native"
    NONE = "none"


class ConflictPolicy(str, Enum):
    OVERWRITE = "overwrite"
    FILL_EMPTY = "fill_empty"
    ASK = "ask"


def is_under(path: str, directory: str) -> bool:
    """True if path is directory itself or lies inside it.

    "/music" matches "/music/a.mp3" but not "/music2/a.mp3".
    """
    if not directory:
        return False
    return path == directory or path.startswith(directory.rstrip(os.sep) + os.sep)


def _parse_enum(enum_cls, value: Any, default):
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        logger.warning(f"Unknown {enum_cls.__name__} {value!r}, using {default.value}")
        return default


@dataclass(frozen=True)
class SourceConfig:
    """Sync settings for one monitored directory."""

    path: str = ""
    primary: SourceType = SourceType.TAGS
    secondary: SourceType = SourceType.NATIVE
    conflict_policy: ConflictPolicy = ConflictPolicy.ASK

    def to_dict(self) -> dict[str, str]:
        return {
            "path": self.path,
            "primary": self.primary.value,
            "secondary": self.secondary.value,
            "conflict_policy": self.conflict_policy.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Optional["SourceConfig"]:
        path = data.get("path")
        if not path:
            return None
        return cls(
            path=str(path),
            primary=_parse_enum(SourceType, data.get("primary", "tags"), SourceType.TAGS),
            secondary=_parse_enum(
                SourceType, data.get("secondary", "native"), SourceType.NATIVE
            ),
            conflict_policy=_parse_enum(
                ConflictPolicy, data.get("conflict_policy", "ask"), ConflictPolicy.ASK
            ),
        )

    @classmethod
    def for_path(cls, path: str, sources: list["SourceConfig"]) -> "SourceConfig":
        """Resolve settings for a file by longest matching directory prefix.

        Returns default settings when no configured directory matches.
        """
        best: Optional[SourceConfig] = None
        for source in sources:
            if is_under(path, source.path):
                if best is None or len(source.path) > len(best.path):
                    best = source
        return best if best is not None else cls()


def _normalize(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


class SourceStore:
    """Persistent list of monitored directories and their settings.

    The list is read lazily on first access and re-read by reload(). All
    access is serialized by a lock so scans and edits can share one store.
    """

    def __init__(self, path: Path, legacy_path: Optional[Path] = None):
        self.path = Path(path)
        self.legacy_path = Path(legacy_path) if legacy_path else None
        self._lock = threading.Lock()
        self._sources: Optional[list[SourceConfig]] = None

    def _read(self) -> list[SourceConfig]:
        if not self.path.exists():
            if self.legacy_path is not None and self.legacy_path.exists():
                return self._migrate_legacy()
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read directory settings {self.path}: {e}")
            return []

        records = data.get("sources", []) if isinstance(data, dict) else []
        sources = []
        for record in records:
            source = SourceConfig.from_dict(record) if isinstance(record, dict) else None
            if source is None:
                logger.warning(f"Skipping invalid directory record: {record!r}")
                continue
            sources.append(source)
        return sources

    def _migrate_legacy(self) -> list[SourceConfig]:
        """Import the old one-path-per-line file into the structured format."""
        try:
            lines = self.legacy_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning(f"Could not read legacy directory list {self.legacy_path}: {e}")
            return []

        sources = [SourceConfig(path=line.strip()) for line in lines if line.strip()]
        logger.info(
            f"Migrating {len(sources)} directories from {self.legacy_path} to {self.path}"
        )
        self._write(sources)
        return sources

    def _write(self, sources: list[SourceConfig]) -> bool:
        payload = {"sources": [source.to_dict() for source in sources]}
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(temp_path, self.path)
            return True
        except OSError as e:
            logger.error(f"Could not save directory settings {self.path}: {e}")
            return False

    def _ensure_loaded(self) -> list[SourceConfig]:
        if self._sources is None:
            self._sources = self._read()
        return self._sources

    def load(self) -> list[SourceConfig]:
        """Return a copy of the configured directories."""
        with self._lock:
            return list(self._ensure_loaded())

    def reload(self) -> list[SourceConfig]:
        with self._lock:
            self._sources = None
            return list(self._ensure_loaded())

    def save(self, sources: Optional[list[SourceConfig]] = None) -> bool:
        with self._lock:
            if sources is not None:
                self._sources = list(sources)
            return self._write(self._ensure_loaded())

    def paths(self) -> list[str]:
        return [source.path for source in self.load()]

    def resolve(self, path: str) -> SourceConfig:
        """Settings for a file path (longest prefix match, defaults otherwise)."""
        with self._lock:
            return SourceConfig.for_path(path, self._ensure_loaded())

    def add(self, source: SourceConfig) -> bool:
        """Add a directory, replacing an existing entry for the same path."""
        source = SourceConfig(
            path=_normalize(source.path),
            primary=source.primary,
            secondary=source.secondary,
            conflict_policy=source.conflict_policy,
        )
        with self._lock:
            sources = [s for s in self._ensure_loaded() if s.path != source.path]
            sources.append(source)
            self._sources = sources
            return self._write(sources)

    def remove(self, path: str) -> bool:
        """Remove a directory. Returns False if it was not configured."""
        target = _normalize(path)
        with self._lock:
            sources = self._ensure_loaded()
            kept = [s for s in sources if s.path not in (path, target)]
            if len(kept) == len(sources):
                return False
            self._sources = kept
            return self._write(kept)

    def update(self, path: str, **changes: Any) -> bool:
        """Change primary, secondary or conflict_policy for a directory."""
        target = _normalize(path)
        with self._lock:
            sources = self._ensure_loaded()
            for i, source in enumerate(sources):
                if source.path in (path, target):
                    record = source.to_dict()
                    record.update(
                        {k: getattr(v, "value", v) for k, v in changes.items()}
                    )
                    updated = SourceConfig.from_dict(record)
                    if updated is None:
                        return False
                    sources[i] = updated
                    return self._write(sources)
        return False
