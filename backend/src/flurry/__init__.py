"""Realtime direct-message synchronisation engine."""

from __future__ import annotations

import logging

__version__ = "0.1.0"

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """Install a basic log formatter for scripts embedding the engine."""

    if level is None:
        from .config import get_settings

        level = get_settings().log_level
    logging.basicConfig(level=level, format=_LOG_FORMAT)


__all__ = ["__version__", "configure_logging"]
