"""Log routing for the shellrelay server and client.

Status records (below WARNING) go to a caller-chosen stream: the server
prints them on stdout, the client keeps them on stderr so they never mix
with command output. Warnings and errors always go to stderr.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

from shellrelay.config.settings import LoggingConfig

LOGGER_NAME = "shellrelay"


class _BelowLevel(logging.Filter):
    def __init__(self, level: int) -> None:
        super().__init__()
        self._level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self._level


def setup_logging(config: LoggingConfig | None = None, status_stream: TextIO | None = None) -> logging.Logger:
    """Install the shellrelay handlers, replacing any installed earlier.

    Calling this again (a second ``main()`` in the same process, or a
    changed verbosity) never duplicates output.

    Args:
        config: Level, format and optional log file. Defaults to
                ``LoggingConfig()``.
        status_stream: Where INFO and DEBUG records are printed. Defaults
                to stderr.

    Returns:
        The configured ``shellrelay`` logger.
    """
    config = config or LoggingConfig()
    status_stream = status_stream or sys.stderr

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(getattr(logging, config.level.upper(), logging.WARNING))

    formatter = logging.Formatter(config.format)

    status = logging.StreamHandler(status_stream)
    status.addFilter(_BelowLevel(logging.WARNING))
    problems = logging.StreamHandler(sys.stderr)
    problems.setLevel(logging.WARNING)
    handlers: list[logging.Handler] = [status, problems]

    if config.file:
        handlers.append(logging.FileHandler(config.file))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.debug("Logging initialized at %s level", config.level)
    return logger
