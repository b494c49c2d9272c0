"""Logging configuration for the ``true_north`` package.

Two helpers are public:

- ``configure_logging(...)``: attach one ``StreamHandler`` to the package
  logger (``"true_north"``). Entrypoints (the CLI) call it once at startup.
- ``get_logger(name)``: return a named logger. Until an entrypoint configures
  logging, the package logger carries a ``NullHandler`` so library use stays
  silent.

Library modules never attach handlers themselves; they call
``get_logger("true_north.<module>")`` and emit concise ``event key=value``
messages that are easy to grep.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO

PACKAGE_LOGGER = "true_north"
LOG_LEVEL_ENV = "TRUE_NORTH_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

_configured = False


def resolve_level(level: int | str | None) -> int:
    """Translate ``level`` (int, name, numeric string, or ``None``) to an int.

    ``None`` falls back to ``TRUE_NORTH_LOG_LEVEL`` and then ``INFO``. Unknown
    names also resolve to ``INFO`` rather than failing startup.
    """

    if level is None:
        level = os.getenv(LOG_LEVEL_ENV)
    if isinstance(level, int):
        return level
    if isinstance(level, str) and level.strip():
        name = level.strip().upper()
        if name.isdigit():
            return int(name)
        numeric = logging.getLevelName(name)
        if isinstance(numeric, int):
            return numeric
    return logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Attach a single stream handler to the package logger (idempotent)."""

    global _configured
    if _configured:
        return

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.NullHandler):
            logger.removeHandler(handler)

    resolved = resolve_level(level)
    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))

    logger.setLevel(resolved)
    logger.addHandler(handler)
    # The CLI owns output; do not double-emit through the root logger.
    logger.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    pkg_logger = logging.getLogger(PACKAGE_LOGGER)
    if not _configured and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
