"""Package-local logging utilities.

This package is a library first. Its loguru records are disabled unless the
host application enables them with ``logger.enable("tryguard")``, or opts into
the package's own stderr sink via ``configure_logging`` /
``TRYGUARD_LOG_LEVEL``.
"""

from __future__ import annotations

import os
import sys

from loguru import logger

LOGGER_NAME = "tryguard"
LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {name} | {message}"

logger.disable(LOGGER_NAME)

_handler_id: int | None = None


def configure_logging(level: str | None = None) -> None:
    """Configure package logging for CLI/runtime diagnostics.

    This is opt-in. If neither ``level`` nor ``TRYGUARD_LOG_LEVEL`` is
    provided, package records stay disabled. When a level is resolved, every
    loguru sink is replaced by a single stderr sink, so call this from
    entry points rather than from library code.
    """
    global _handler_id

    env_level = os.getenv("TRYGUARD_LOG_LEVEL", "")
    raw_level = level if level is not None else (env_level or "")
    resolved_level = raw_level.strip().upper()

    if not resolved_level:
        if _handler_id is not None:
            logger.remove(_handler_id)
            _handler_id = None
        logger.disable(LOGGER_NAME)
        return

    try:
        logger.level(resolved_level)
    except ValueError:
        resolved_level = "INFO"

    # Always reset sinks to avoid stale stderr streams across repeated CLI calls.
    logger.remove()
    _handler_id = logger.add(
        sys.stderr,
        level=resolved_level,
        format=LOG_FORMAT,
        filter=LOGGER_NAME,
    )
    logger.enable(LOGGER_NAME)
