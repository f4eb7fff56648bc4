"""File scanner — enumerate files under a tree, skipping tool directories."""

from __future__ import annotations

import os
from pathlib import Path

from modsync.config import DEFAULT_SKIP_DIRS, DEFAULT_TEXT_EXTENSIONS

# Directories to always skip
SKIP_DIRS = frozenset(DEFAULT_SKIP_DIRS)

# Stray files some platforms drop into every directory
SKIP_FILES = frozenset({".DS_Store", "Thumbs.db"})


def scan_files(root: Path, skip_dirs=SKIP_DIRS) -> list[Path]:
    """Recursively list files under ``root``, sorted by relative POSIX path.

    Directories whose name is in ``skip_dirs`` are pruned without being
    entered. Symlinked directories are not followed.
    """
    root = Path(root)
    if not root.is_dir():
        return []

    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in skip_dirs]
        for name in filenames:
            if name in SKIP_FILES:
                continue
            found.append(Path(dirpath) / name)

    found.sort(key=lambda p: relative_posix(p, root))
    return found


def relative_posix(path: Path, root: Path) -> str:
    """Return ``path`` relative to ``root`` with forward slashes."""
    return Path(path).relative_to(root).as_posix()


def is_text_file(path: Path, text_extensions=DEFAULT_TEXT_EXTENSIONS) -> bool:
    """Check if a file's extension marks it as placeholder-bearing text."""
    return Path(path).suffix.lower() in text_extensions


def prune_empty_dirs(root: Path, stop: Path) -> None:
    """Remove empty directories from ``root`` upward, never removing ``stop``."""
    current = Path(root)
    stop = Path(stop)
    while current != stop and stop in current.parents:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent
