"""
Log output for medialib.

Everything goes to a rotating Loguru file sink. log() also echoes
user-facing messages to stdout unless quiet mode is on.
"""

import sys
import threading
from pathlib import Path

from loguru import logger

from .config import Config

_quiet_lock = threading.Lock()
_quiet = False


def setup_loguru(
    log_file: Path,
    level: str = "INFO",
    rotation: str = "10 MB",
    retention: int = 5,
    console_output: bool = False,
) -> None:
    """
    Configure loguru with a rotating file sink and an optional stderr sink.

    Args:
        log_file: Path to log file
        level: Minimum level for logging (DEBUG, INFO, WARNING, ERROR)
        rotation: Size or age at which the log file is rotated
        retention: Number of rotated files to keep
        console_output: Whether to also log to stderr
    """
    logger.remove()

    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.add(
        log_file,
        rotation=rotation,
        retention=retention,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {thread.name} | {name}:{line} | {message}",
        enqueue=False,  # Synchronous writes (thread-safe but blocking)
    )

    if console_output:
        logger.add(sys.stderr, level=level, format="{level}: {message}")

    logger.info(f"Loguru initialized: {log_file} (level={level})")


def setup_from_config(config: Config) -> None:
    """Configure logging from the [logging] section of the config."""
    setup_loguru(
        config.log_path,
        level=config.logging.level,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
        console_output=config.logging.console_output,
    )


def set_quiet(quiet: bool) -> None:
    """Suppress stdout echo of log() messages (file logging continues)."""
    global _quiet
    with _quiet_lock:
        _quiet = quiet


def log(message: str, level: str = "info") -> None:
    """
    Log a message and echo it to stdout for the CLI.

    Args:
        message: User-facing message
        level: Log level (debug, info, warning, error)
    """
    log_func = getattr(logger, level)
    log_func(message)

    with _quiet_lock:
        if not _quiet and level != "debug":
            print(message)
