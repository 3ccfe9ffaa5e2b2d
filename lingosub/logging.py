"""
lingosub.logging - logging setup for the service.

Applies LOG_LEVEL and, when LOG_FILE is set, also writes to that file.
"""
from __future__ import annotations

import logging
import os

from lingosub.config import Settings, get_settings

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    """Configure the root logger from settings. Safe to call more than once."""
    settings = settings or get_settings()
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.LOG_FILE:
        os.makedirs(os.path.dirname(settings.LOG_FILE) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(settings.LOG_FILE, encoding="utf-8"))
    logging.basicConfig(level=level, format=_FORMAT, handlers=handlers, force=True)
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
