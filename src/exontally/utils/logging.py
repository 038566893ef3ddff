"""Logging setup shared by the CLI and the pipeline.

Every module logs under the ``exontally`` namespace via
``logging.getLogger(__name__)``; ``setup_logging`` attaches the handlers
once, at the root of that namespace. The console handler follows the
requested verbosity while a log file, when given, records everything.

Example:
    >>> from exontally.utils.logging import setup_logging, get_logger
    >>> setup_logging(verbosity=2, log_file="run.log")
    >>> get_logger("exontally.core.pipeline").debug("harmonizing names")
"""

import logging
import time
from pathlib import Path
from typing import Any

from rich.logging import RichHandler

PACKAGE_LOGGER = "exontally"

FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def _level_for(verbosity: int) -> int:
    index = min(max(verbosity, 0), len(_LEVELS) - 1)
    return _LEVELS[index]


def _console_handler(use_rich: bool) -> logging.Handler:
    if not use_rich:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(FILE_FORMAT))
        return handler
    # rich renders level and time itself
    handler = RichHandler(rich_tracebacks=True, show_time=False, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def setup_logging(
    verbosity: int = 1,
    log_file: Path | str | None = None,
    use_rich: bool = True,
) -> None:
    """Attach console (and optionally file) handlers to the package logger.

    Calling this again replaces the previous handlers.

    Args:
        verbosity: 0 for warnings only, 1 for progress messages, 2 for debug.
        log_file: Path of a log file that receives DEBUG records.
        use_rich: Render console records with rich instead of plain text.
    """
    console_level = _level_for(verbosity)

    root = logging.getLogger(PACKAGE_LOGGER)
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()

    console = _console_handler(use_rich)
    console.setLevel(console_level)
    root.addHandler(console)

    if log_file is None:
        root.setLevel(console_level)
        return

    sink = logging.FileHandler(log_file)
    sink.setLevel(logging.DEBUG)
    sink.setFormatter(logging.Formatter(FILE_FORMAT))
    root.addHandler(sink)
    root.setLevel(logging.DEBUG)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name`` (usually ``__name__``)."""
    return logging.getLogger(name)


class Timer:
    """Log how long a block took.

    Example:
        >>> with Timer("Intron profiling", logger) as t:
        ...     profile_introns(model, 100)
        >>> t.elapsed  # seconds
    """

    def __init__(self, description: str, logger: logging.Logger) -> None:
        self.description = description
        self.logger = logger
        self.elapsed: float = 0.0
        self._t0: float | None = None

    def __enter__(self) -> "Timer":
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, *exc: Any) -> None:
        if self._t0 is not None:
            self.elapsed = time.perf_counter() - self._t0
        self.logger.info("%s completed in %.2fs", self.description, self.elapsed)
