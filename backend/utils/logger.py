"""Logging setup shared by the reservation service layers."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from backend.utils.config import get_settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured_level: Optional[str] = None


def configure_logging(level: Optional[str] = None) -> str:
    """Install the pipe-separated stdout format once and return the active level.

    Transition, conflict and bulk-run lines all share this format so they can
    be grepped side by side. Later calls with an explicit level only move the
    root level; the handler is never installed twice.
    """
    global _configured_level

    resolved_level = (level or get_settings().log_level).upper()
    if _configured_level is None:
        logging.basicConfig(
            level=resolved_level,
            format=LOG_FORMAT,
            datefmt=DATE_FORMAT,
            stream=sys.stdout,
        )
    elif level is None or resolved_level == _configured_level:
        return _configured_level
    else:
        logging.getLogger().setLevel(resolved_level)
    _configured_level = resolved_level
    return resolved_level


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
