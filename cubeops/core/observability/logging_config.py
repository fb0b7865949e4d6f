"""
Logging configuration — one setup call per process.

``cubeops.main`` calls ``configure_from_flags`` once; every module that
does ``logger = logging.getLogger(__name__)`` inherits the result.

Level precedence:
    --debug  >  --verbose  >  --quiet  >  CUBEOPS_LOG_LEVEL  >  WARNING

A second sink can be added with CUBEOPS_LOG_FILE (level from
CUBEOPS_LOG_FILE_LEVEL, default: same as the console). Long builds are
easier to diagnose from a DEBUG file while the console stays quiet.
"""

from __future__ import annotations

import logging
import os
import sys

ENV_LEVEL = "CUBEOPS_LOG_LEVEL"
ENV_FILE = "CUBEOPS_LOG_FILE"
ENV_FILE_LEVEL = "CUBEOPS_LOG_FILE_LEVEL"

# ── Formats ─────────────────────────────────────────────────────

# (max level, format, datefmt): the first row whose level is >= the
# console level wins. Quiet consoles print bare messages.
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d  %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(name)s: %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(message)s", None),
)
_FILE_FORMAT = ("%(asctime)s %(levelname)-8s %(name)s:%(lineno)d  %(message)s", "%Y-%m-%d %H:%M:%S")

# Libraries that get chatty at INFO when installed alongside
_NOISY_LOGGERS = ("urllib3", "asyncio", "charset_normalizer")


def level_number(level: str | None) -> int:
    """Level name to its numeric value; empty or unknown names mean WARNING."""
    value = logging.getLevelName(level.upper()) if level else None
    return value if isinstance(value, int) else logging.WARNING


def resolve_level(*, debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Pick the console level from CLI flags, falling back to the environment."""
    for flag, name in ((debug, "DEBUG"), (verbose, "INFO"), (quiet, "ERROR")):
        if flag:
            return name
    return os.environ.get(ENV_LEVEL, "WARNING")


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = next((f, d) for limit, f, d in _CONSOLE_FORMATS if level <= limit)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(*_FILE_FORMAT))
    return handler


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Replace the root logger's handlers.

    Args:
        level: Console level name.
        log_file: Optional path for a file sink.
        log_file_level: Level for the file sink (default: ``level``).
        quiet_third_party: Hold noisy library loggers at WARNING.
    """
    console_level = level_number(level)
    handlers = [_console_handler(console_level)]
    if log_file:
        handlers.append(_file_handler(log_file, level_number(log_file_level or level)))

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    # The root passes everything any sink wants; each handler filters
    root.setLevel(min(h.level for h in handlers))

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    # A closed stream (e.g. after a test runner swaps stderr) must not crash a run
    logging.raiseExceptions = False


def configure_from_flags(*, debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Set up logging from CLI flags plus CUBEOPS_* variables.

    Returns:
        The console level that was applied.
    """
    level = resolve_level(debug=debug, verbose=verbose, quiet=quiet)
    setup_logging(
        level=level,
        log_file=os.environ.get(ENV_FILE),
        log_file_level=os.environ.get(ENV_FILE_LEVEL),
        quiet_third_party=not debug,
    )
    return level
