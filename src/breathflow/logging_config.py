"""
Logging setup for breathflow processes.

The console always gets a stderr handler. The ``[logging]`` config section
controls the rotating file log: whether it exists, where it lives, its level
and its rotation limits.
"""

import logging
import logging.config
import sys

from pathlib import Path
from typing import Any

from breathflow.config import LoggingSettings, get_settings
from breathflow.constants import DEFAULT_LOG_DIR, DEFAULT_LOG_FILE

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FALLBACK_FORMAT = "%(levelname)s: %(message)s"

# Third-party loggers that are chatty at DEBUG
QUIET_LOGGERS = ("torch", "sqlalchemy.engine")

_configured = False


def resolve_log_file(settings: LoggingSettings) -> Path:
    """
    Locate the log file for ``settings`` and create its directory.

    Args:
        settings: [logging] section of the user config

    Returns:
        ``<directory>/breathflow.log``, with ``directory`` defaulting to
        ``~/.breathflow/logs``
    """
    log_dir = Path(settings.directory).expanduser() if settings.directory else DEFAULT_LOG_DIR
    log_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
    return log_dir / DEFAULT_LOG_FILE


def _file_handler(settings: LoggingSettings) -> dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": settings.level.upper(),
        "formatter": "detailed",
        "filename": str(resolve_log_file(settings)),
        "maxBytes": settings.max_size_mb * 1024 * 1024,
        "backupCount": settings.backup_count,
        "encoding": "utf-8",
    }


def build_logging_config(
    settings: LoggingSettings,
    *,
    verbose: bool = False,
    console_format: str | None = None,
) -> dict[str, Any]:
    """
    Translate logging settings into a ``dictConfig`` dictionary.

    Args:
        settings: [logging] section of the user config
        verbose: Lower the console threshold from INFO to DEBUG
        console_format: Console format string (defaults to ``LOG_FORMAT``)
    """
    handlers: dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG" if verbose else "INFO",
            "formatter": "console",
            "stream": "ext://sys.stderr",
        },
    }
    if settings.enabled:
        handlers["file"] = _file_handler(settings)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": console_format or LOG_FORMAT},
            "detailed": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
        "root": {"level": "DEBUG", "handlers": list(handlers)},
    }


def setup_logging(
    settings: LoggingSettings | None = None,
    *,
    verbose: bool = False,
    console_format: str | None = None,
) -> None:
    """
    Install breathflow's logging handlers once per process.

    A log directory that cannot be created, or a rejected handler
    configuration, drops back to a plain console ``basicConfig``.

    Args:
        settings: Logging settings (read from the user config if omitted)
        verbose: Lower the console threshold from INFO to DEBUG
        console_format: Console format string
    """
    global _configured

    if _configured:
        return

    try:
        settings = settings or get_settings().logging
        logging.config.dictConfig(
            build_logging_config(settings, verbose=verbose, console_format=console_format)
        )
    except (OSError, ValueError) as e:
        sys.stderr.write(f"WARNING: File logging unavailable, using console only: {e}\n")
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format=console_format or FALLBACK_FORMAT,
        )

    _configured = True
