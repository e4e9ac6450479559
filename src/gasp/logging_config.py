"""
Logging setup for the GASP CLI and its analysis worker process.

The CLI process owns the console handler and the rotating log file. The
worker process logs to the console only: gasp.log is written and rotated by
one process, so worker records never reach it directly.
"""

import logging
import logging.config
import os
import sys

from pathlib import Path
from typing import Any

from gasp.constants import (
    CONSOLE_LOG_FORMAT,
    DEFAULT_LOG_BACKUP_COUNT,
    DEFAULT_LOG_DIR,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_MAX_BYTES,
    FILE_LOG_FORMAT,
)

_logging_configured = False


def get_log_path() -> Path:
    """
    Get path to gasp.log, creating the log directory if needed.

    Returns:
        Path to the active log file
    """
    os.makedirs(DEFAULT_LOG_DIR, mode=0o700, exist_ok=True)
    return DEFAULT_LOG_DIR / DEFAULT_LOG_FILE


def _logging_section() -> dict[str, Any]:
    """The [logging] config section, or {} if it cannot be read."""
    try:
        from gasp.config import get_section

        return get_section("logging")
    except Exception:
        return {}


def _file_handler(settings: dict[str, Any]) -> dict[str, Any] | None:
    if not settings.get("enabled", True):
        return None

    max_size_mb = settings.get("max_size_mb")
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": str(settings.get("level", "DEBUG")).upper(),
        "formatter": "file",
        "filename": str(get_log_path()),
        "maxBytes": (
            int(max_size_mb * 1024 * 1024) if max_size_mb else DEFAULT_LOG_MAX_BYTES
        ),
        "backupCount": settings.get("backup_count", DEFAULT_LOG_BACKUP_COUNT),
        "encoding": "utf-8",
    }


def build_logging_config(
    *,
    verbose: bool = False,
    console_format: str | None = None,
    log_to_file: bool = True,
) -> dict[str, Any]:
    """
    Build the dictConfig dictionary for one process.

    Args:
        verbose: DEBUG on the console instead of INFO
        console_format: Console format string (CONSOLE_LOG_FORMAT when None)
        log_to_file: Add the rotating gasp.log handler (subject to the
            [logging] config section); False for the worker process

    Returns:
        Dictionary suitable for logging.config.dictConfig()
    """
    config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": console_format or CONSOLE_LOG_FORMAT},
            "file": {"format": FILE_LOG_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": "DEBUG" if verbose else "INFO",
                "formatter": "console",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {"level": "DEBUG", "handlers": ["console"]},
    }

    file_handler = _file_handler(_logging_section()) if log_to_file else None
    if file_handler is not None:
        config["handlers"]["file"] = file_handler
        config["root"]["handlers"].append("file")

    return config


def _apply(config: dict[str, Any], verbose: bool, console_format: str | None) -> None:
    global _logging_configured

    if _logging_configured:
        return

    try:
        logging.config.dictConfig(config)
    except Exception as e:
        sys.stderr.write(f"WARNING: Failed to configure logging: {e}\n")
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format=console_format or "%(levelname)s: %(message)s",
        )

    _logging_configured = True


def setup_logging(
    *,
    verbose: bool = False,
    console_format: str | None = None,
) -> None:
    """
    Configure logging for the CLI process (console plus gasp.log).

    Safe to call more than once; only the first call takes effect.
    """
    try:
        config = build_logging_config(verbose=verbose, console_format=console_format)
    except OSError as e:
        sys.stderr.write(f"WARNING: Log file unavailable, console only: {e}\n")
        config = build_logging_config(
            verbose=verbose, console_format=console_format, log_to_file=False
        )
    _apply(config, verbose, console_format)


def setup_worker_logging(
    *,
    verbose: bool = False,
    console_format: str | None = None,
) -> None:
    """Configure logging inside the analysis worker process (console only)."""
    config = build_logging_config(
        verbose=verbose, console_format=console_format, log_to_file=False
    )
    _apply(config, verbose, console_format)
