"""Shared services for medialib: settings and log output.

- config.toml, XDG paths and environment overrides
- Loguru sinks and the log() helper for CLI messages

Nothing here imports from the domain packages.
"""

# Configuration
from .config import (
    Config,
    LibraryConfig,
    LoggingConfig,
    ScannerConfig,
    load_config,
    get_config_dir,
    get_config_path,
    get_data_dir,
    create_default_config,
    ensure_directories,
)

# Logging
from .output import setup_loguru, setup_from_config, set_quiet, log

__all__ = [
    # Config
    "Config",
    "LibraryConfig",
    "LoggingConfig",
    "ScannerConfig",
    "load_config",
    "get_config_dir",
    "get_config_path",
    "get_data_dir",
    "create_default_config",
    "ensure_directories",
    # Logging
    "setup_loguru",
    "setup_from_config",
    "set_quiet",
    "log",
]
