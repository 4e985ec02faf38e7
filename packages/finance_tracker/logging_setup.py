"""Logging for the ``finance_tracker`` package.

Library modules log through ``get_logger("finance_tracker.<module>")`` and
never attach handlers themselves. Until an entrypoint calls
:func:`configure_logging` the package logger only carries a ``NullHandler``,
so importing the engine into another application stays silent.

The CLI configures logging once per process. Import and consolidation passes
log one summary line each at INFO; per-row moves and deletes log at DEBUG.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "finance_tracker"
LEVEL_ENV = "FINANCE_TRACKER_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

# Noisy third-party loggers held at WARNING unless the package runs at DEBUG.
_QUIET_LOGGERS = ("sqlalchemy.engine", "alembic.runtime.migration")

_configured = False


def resolve_level(level: int | str | None = None) -> int:
    """Turn ``level`` (or ``FINANCE_TRACKER_LOG_LEVEL``) into a numeric level.

    Accepts ints, digit strings and level names in any case. Anything
    unrecognized resolves to ``INFO``.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV)
    if isinstance(level, int):
        return level
    if isinstance(level, str) and level.strip():
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        mapped = logging.getLevelName(name)
        if isinstance(mapped, int):
            return mapped
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] = sys.stderr,
) -> logging.Logger:
    """Attach the package's single stream handler; later calls are no-ops.

    Parameters
    ----------
    level:
        Numeric level or level name. ``None`` defers to
        ``FINANCE_TRACKER_LOG_LEVEL`` and then ``INFO``.
    fmt:
        Record format, default :data:`DEFAULT_FORMAT`.
    stream:
        Destination of the handler. Defaults to stderr so that stdout stays
        reserved for the CLI's JSON output.
    """

    global _configured
    logger = logging.getLogger(PACKAGE_LOGGER)
    if _configured:
        return logger

    resolved = resolve_level(level)
    for placeholder in [h for h in logger.handlers if isinstance(h, logging.NullHandler)]:
        logger.removeHandler(placeholder)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    handler.setLevel(resolved)
    logger.addHandler(handler)
    logger.setLevel(resolved)
    logger.propagate = False

    if resolved > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
    return logger


def get_logger(name: str) -> logging.Logger:
    pkg = logging.getLogger(PACKAGE_LOGGER)
    if not _configured and not pkg.handlers:
        pkg.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["DEFAULT_FORMAT", "LEVEL_ENV", "configure_logging", "get_logger", "resolve_level"]
