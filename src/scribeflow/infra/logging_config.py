"""
Centralized logging configuration.

Console output goes through rich; an optional rotating file handler keeps
DEBUG-level records for post-mortem of long batch runs.
"""

from __future__ import annotations

import logging
import logging.config
from pathlib import Path
from typing import Any

LOG_MAX_BYTES = 5 * 1024 * 1024
LOG_BACKUP_COUNT = 5


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Configure logging once at process startup."""
    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "rich.logging.RichHandler",
            "level": level,
            "formatter": "console",
            "show_path": False,
            "rich_tracebacks": True,
        },
    }
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "default",
            "filename": str(log_file),
            "maxBytes": LOG_MAX_BYTES,
            "backupCount": LOG_BACKUP_COUNT,
            "encoding": "utf8",
        }

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {"format": "%(message)s", "datefmt": "[%X]"},
                "default": {
                    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                },
            },
            "handlers": handlers,
            "loggers": {
                "scribeflow": {
                    "level": "DEBUG",
                    "handlers": list(handlers),
                    "propagate": False,
                },
            },
            "root": {"level": "WARNING", "handlers": ["console"]},
        }
    )
    logging.getLogger(__name__).debug("Logging configured (level=%s)", level)
