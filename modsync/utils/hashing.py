"""Content hashing — streaming SHA-256 over files and directory trees.

Every change-detection decision in modsync compares digests produced
here, so the directory walk order is fixed: entries are sorted by
relative POSIX path and each contributes ``relpath + "|"`` followed by
its bytes to one running digest.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

from modsync.errors import HashError
from modsync.utils.file_scanner import SKIP_DIRS, relative_posix, scan_files

CHUNK_SIZE = 64 * 1024
PATH_SEPARATOR = "|"


def hash_file(path: str | Path) -> str:
    """Return the hex SHA-256 of a single file, read in fixed-size chunks."""
    digest = hashlib.sha256()
    _feed_file(Path(path), digest)
    return digest.hexdigest()


def hash_path(path: str | Path, skip_dirs=SKIP_DIRS) -> str:
    """Return the hex SHA-256 of a file, or of a whole directory tree.

    Raises:
        HashError: If the path is missing or any file cannot be read.
    """
    path = Path(path)
    try:
        is_dir = path.is_dir()
    except OSError as e:
        raise HashError(f"Cannot stat {path}: {e}") from e

    if not is_dir:
        return hash_file(path)

    digest = hashlib.sha256()
    for file_path in scan_files(path, skip_dirs):
        digest.update((relative_posix(file_path, path) + PATH_SEPARATOR).encode("utf-8"))
        _feed_file(file_path, digest)
    return digest.hexdigest()


def _feed_file(path: Path, digest) -> None:
    try:
        with open(path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as e:
        raise HashError(f"Cannot read {path}: {e}") from e
