"""
Logging setup for formfind.

The package only creates module loggers under the ``formfind``
namespace.  Hosts that want console or file output call
:func:`setup_logging` directly, or pass ``log_level`` to
:class:`~formfind.api.FormFindAPI`.  Only handlers installed here are
replaced on a repeat call; handlers the host attached are left alone.
"""

import logging
import sys
from typing import Optional, TextIO, Union

LOGGER_NAME = "formfind"
LOG_FORMAT = "[formfind] %(levelname)s %(name)s: %(message)s"

_OWNED = "_formfind_handler"


def _owned_handlers(logger: logging.Logger):
    return [h for h in logger.handlers if getattr(h, _OWNED, False)]


def _install(logger: logging.Logger, handler: logging.Handler, level: int):
    setattr(handler, _OWNED, True)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Send ``formfind`` log records to *stream* (stderr by default) and,
    optionally, to *log_file*.

    Args:
        level: Level as an int or a name such as ``"DEBUG"``.
        log_file: Optional path; the file is appended to.
        stream: Optional text stream for console output.

    Returns:
        The ``formfind`` logger.
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level!r}")
        level = resolved

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    for handler in _owned_handlers(logger):
        logger.removeHandler(handler)
        handler.close()

    _install(logger, logging.StreamHandler(stream or sys.stderr), level)
    if log_file:
        _install(logger, logging.FileHandler(log_file, mode="a", encoding="utf-8"), level)

    logger.debug("Logging configured at %s", logging.getLevelName(level))
    return logger
