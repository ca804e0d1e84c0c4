"""
Logging configuration — central setup for the CLI entrypoint.

Called once at startup by main.py.  Every module that does
``logger = logging.getLogger(__name__)`` inherits this config.
Library callers (an admission webhook embedding ``verify_resource``)
configure logging themselves and never call this.

Levels are resolved in precedence order:
    --debug  >  --verbose  >  --quiet  >  KUBEVERIFY_LOG_LEVEL  >  WARNING

Optional file output via KUBEVERIFY_LOG_FILE / KUBEVERIFY_LOG_FILE_LEVEL.
"""

from __future__ import annotations

import logging
import os
import sys

LOG_LEVEL_ENV_VAR = "KUBEVERIFY_LOG_LEVEL"
LOG_FILE_ENV_VAR = "KUBEVERIFY_LOG_FILE"
LOG_FILE_LEVEL_ENV_VAR = "KUBEVERIFY_LOG_FILE_LEVEL"

# ── Format strings ──────────────────────────────────────────────

# WARNING level, minimal
_FMT_MINIMAL = "%(levelname)s: %(message)s"

# INFO level, timestamped with module context
_FMT_VERBOSE = "%(asctime)s [%(name)s] %(message)s"
_DATEFMT_VERBOSE = "%H:%M:%S"

# DEBUG level and file output, full diagnostic with file:line
_FMT_DEBUG = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d %(message)s"
_DATEFMT_DEBUG = "%H:%M:%S"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that are noisy at INFO/DEBUG
_NOISY_LOGGERS = ("urllib3", "charset_normalizer")


def resolve_level(*, debug: bool = False, verbose: bool = False, quiet: bool = False) -> str:
    """Pick the console level from CLI flags, then the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return os.environ.get(LOG_LEVEL_ENV_VAR, "WARNING")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure Python logging for the entire process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path to a log file. Defaults to
            KUBEVERIFY_LOG_FILE.
        log_file_level: Optional separate level for the log file.
            Defaults to KUBEVERIFY_LOG_FILE_LEVEL, then ``level``.
        quiet_third_party: Keep noisy third-party loggers at WARNING
            unless we're at DEBUG level.
    """
    numeric_level = _parse_level(level)
    log_file = log_file or os.environ.get(LOG_FILE_ENV_VAR)
    log_file_level = log_file_level or os.environ.get(LOG_FILE_LEVEL_ENV_VAR)

    # ── Console handler (stderr) ────────────────────────────────
    if numeric_level <= logging.DEBUG:
        fmt, datefmt = _FMT_DEBUG, _DATEFMT_DEBUG
    elif numeric_level <= logging.INFO:
        fmt, datefmt = _FMT_VERBOSE, _DATEFMT_VERBOSE
    else:
        fmt, datefmt = _FMT_MINIMAL, None

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    # Effective root level = minimum of console and file levels
    effective_level = numeric_level

    # ── File handler (optional) ─────────────────────────────────
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else numeric_level
        effective_level = min(effective_level, file_level)

        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FMT_DEBUG, datefmt=_DATEFMT_FILE))
        root.addHandler(fh)

    root.setLevel(effective_level)

    if quiet_third_party and numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def _parse_level(level: str | None) -> int:
    """Convert a level name string to its numeric constant."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
