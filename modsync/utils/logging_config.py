"""Logging configuration — called once per CLI invocation.

Every module does ``logger = logging.getLogger(__name__)`` and inherits
this setup. Levels resolve in order: CLI flag, MODSYNC_LOG_LEVEL, WARNING.
"""

from __future__ import annotations

import logging
import os

from rich.console import Console
from rich.logging import RichHandler

from modsync.config import ENV_LOG_LEVEL

_FMT_FILE = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d — %(message)s"
_DATEFMT_FILE = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str | None = None, log_file: str | None = None) -> None:
    """Configure the root logger with a rich console handler and an optional file.

    Args:
        level: Level name; falls back to MODSYNC_LOG_LEVEL, then WARNING.
        log_file: Optional path that receives every record at the same level
            or lower, with full detail.
    """
    numeric_level = _parse_level(level or os.environ.get(ENV_LOG_LEVEL))

    console = RichHandler(
        console=Console(stderr=True),
        show_path=numeric_level <= logging.DEBUG,
        markup=False,
    )
    console.setLevel(numeric_level)
    console.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(numeric_level)
        fh.setFormatter(logging.Formatter(_FMT_FILE, datefmt=_DATEFMT_FILE))
        root.addHandler(fh)

    root.setLevel(numeric_level)
    logging.raiseExceptions = False


def _parse_level(level: str | None) -> int:
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
