"""
Configuration management for medialib
"""

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

DEFAULT_EXTENSIONS = [".mp3", ".wav", ".flac", ".ogg", ".m4a", ".aac", ".wma"]


@dataclass
class LibraryConfig:
    """Configuration for the library cache and its settings files."""

    cache_file: Optional[str] = None  # default: <data_dir>/media-cache.json
    directories_file: Optional[str] = None  # default: <config_dir>/directories.json
    legacy_directories_file: Optional[str] = None  # default: <config_dir>/directories.txt


@dataclass
class ScannerConfig:
    """Configuration for directory scanning."""

    supported_formats: List[str] = field(
        default_factory=lambda: list(DEFAULT_EXTENSIONS)
    )
    batch_size: int = 100
    rating_batch_size: int = 50
    progress_interval_ms: int = 100
    inbox_size: int = 64  # Max queued messages before scanners block

    def validate(self) -> None:
        """Validate scanner configuration values.

        Raises:
            ValueError: If configuration values are invalid
        """
        if self.batch_size < 1 or self.rating_batch_size < 1:
            raise ValueError("Batch sizes must be at least 1")
        if self.inbox_size < 1:
            raise ValueError("inbox_size must be at least 1")
        bad = [ext for ext in self.supported_formats if not ext.startswith(".")]
        if bad:
            raise ValueError(f"Extensions must start with '.': {bad}")


@dataclass
class LoggingConfig:
    """Log file, level and rotation settings."""

    level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file: Optional[str] = None  # default: <data_dir>/medialib.log
    rotation: str = "10 MB"
    retention: int = 5
    console_output: bool = False


@dataclass
class Config:
    """All medialib settings, one dataclass per TOML section."""

    library: LibraryConfig = field(default_factory=LibraryConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def cache_path(self) -> Path:
        if self.library.cache_file:
            return Path(self.library.cache_file)
        return get_data_dir() / "media-cache.json"

    @property
    def directories_path(self) -> Path:
        if self.library.directories_file:
            return Path(self.library.directories_file)
        return get_config_dir() / "directories.json"

    @property
    def legacy_directories_path(self) -> Path:
        if self.library.legacy_directories_file:
            return Path(self.library.legacy_directories_file)
        return get_config_dir() / "directories.txt"

    @property
    def log_path(self) -> Path:
        if self.logging.log_file:
            return Path(self.logging.log_file)
        return get_data_dir() / "medialib.log"


def get_config_dir() -> Path:
    """Get the configuration directory path."""
    config_home = os.environ.get("XDG_CONFIG_HOME")
    if config_home:
        return Path(config_home) / "medialib"
    return Path.home() / ".config" / "medialib"


def get_config_path() -> Path:
    """Get the main configuration file path.

    Checks for config.toml in the current working directory first, then
    falls back to XDG_CONFIG_HOME/medialib (or ~/.config/medialib).
    """
    local_config = Path.cwd() / "config.toml"
    if local_config.exists():
        return local_config
    return get_config_dir() / "config.toml"


def get_data_dir() -> Path:
    """Get the data directory path.

    MEDIALIB_DATA_DIR overrides the XDG location.
    """
    override = os.environ.get("MEDIALIB_DATA_DIR")
    if override:
        return Path(override)
    data_home = os.environ.get("XDG_DATA_HOME")
    if data_home:
        return Path(data_home) / "medialib"
    return Path.home() / ".local" / "share" / "medialib"


def create_default_config() -> str:
    """Commented config.toml written on first run."""
    return """
# medialib Configuration

[library]
# Cache of every known audio file (default: ~/.local/share/medialib/media-cache.json)
# cache_file = "/path/to/media-cache.json"

# Monitored directories and their sync policy (default: ~/.config/medialib/directories.json)
# directories_file = "/path/to/directories.json"

[scanner]
# Audio file extensions picked up by the scanner
supported_formats = [".mp3", ".wav", ".flac", ".ogg", ".m4a", ".aac", ".wma"]

# Entries per batch sent to the cache (full reads / rating-only updates)
batch_size = 100
rating_batch_size = 50

# Minimum milliseconds between progress updates
progress_interval_ms = 100

# Queued messages before scanners wait for the cache to catch up
inbox_size = 64

[logging]
# Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
level = "INFO"

# Custom log file path (default: ~/.local/share/medialib/medialib.log)
# log_file = "/path/to/custom/medialib.log"

# Rotate the log file at this size and keep this many old files
rotation = "10 MB"
retention = 5

# Also output logs to stderr (useful for debugging)
console_output = false
""".strip()


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file or create default.

    Environment variables override TOML values:
    - MEDIALIB_LOG_LEVEL
    - MEDIALIB_DATA_DIR (read by get_data_dir)
    """
    from dotenv import load_dotenv

    env_path = get_config_dir() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    if config_path is None:
        config_path = get_config_path()

    if not config_path.exists():
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_default_config())
        config = Config()
        _apply_env_overrides(config)
        return config

    try:
        with open(config_path, "rb") as f:
            toml_data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        print(f"Error loading configuration from {config_path}: {e}")
        print("Using default configuration.")
        config = Config()
        _apply_env_overrides(config)
        return config

    config = Config()

    if "library" in toml_data:
        library_data = toml_data["library"]
        config.library = LibraryConfig(
            cache_file=_expand(library_data.get("cache_file")),
            directories_file=_expand(library_data.get("directories_file")),
            legacy_directories_file=_expand(
                library_data.get("legacy_directories_file")
            ),
        )

    if "scanner" in toml_data:
        scanner_data = toml_data["scanner"]
        config.scanner = ScannerConfig(
            supported_formats=[
                ext.lower()
                for ext in scanner_data.get(
                    "supported_formats", config.scanner.supported_formats
                )
            ],
            batch_size=scanner_data.get("batch_size", config.scanner.batch_size),
            rating_batch_size=scanner_data.get(
                "rating_batch_size", config.scanner.rating_batch_size
            ),
            progress_interval_ms=scanner_data.get(
                "progress_interval_ms", config.scanner.progress_interval_ms
            ),
            inbox_size=scanner_data.get("inbox_size", config.scanner.inbox_size),
        )
        try:
            config.scanner.validate()
        except ValueError as e:
            print(f"Warning: Invalid scanner configuration: {e}")
            print("Using default scanner configuration.")
            config.scanner = ScannerConfig()

    if "logging" in toml_data:
        logging_data = toml_data["logging"]
        config.logging = LoggingConfig(
            level=logging_data.get("level", config.logging.level).upper(),
            log_file=_expand(logging_data.get("log_file")),
            rotation=logging_data.get("rotation", config.logging.rotation),
            retention=logging_data.get("retention", config.logging.retention),
            console_output=logging_data.get(
                "console_output", config.logging.console_output
            ),
        )

    _apply_env_overrides(config)
    return config


def _expand(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return str(Path(value).expanduser())


def _apply_env_overrides(config: Config) -> None:
    level = os.environ.get("MEDIALIB_LOG_LEVEL")
    if level:
        config.logging.level = level.upper()


def ensure_directories(config: Config) -> None:
    """Create the config, cache and settings directories."""
    get_config_dir().mkdir(parents=True, exist_ok=True)
    config.cache_path.parent.mkdir(parents=True, exist_ok=True)
    config.directories_path.parent.mkdir(parents=True, exist_ok=True)
