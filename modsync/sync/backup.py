"""Side copies of local edits, taken before writing and restored after.

Custom and modified files go to two separate directories next to the
install root. Nothing is deleted from the install root here. If a run
fails, the directories stay behind and the next run resumes them: an
existing backup copy is older than anything the failed run may have
written, so it is never replaced.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from modsync.config import ModsyncConfig
from modsync.errors import WriteError
from modsync.sync.classifier import LocalEditReport
from modsync.utils.file_scanner import relative_posix, scan_files
from modsync.utils.hashing import hash_file

logger = logging.getLogger(__name__)

CUSTOM_BACKUP_DIR = ".modsync-custom-backup"
MODIFIED_BACKUP_DIR = ".modsync-modified-backup"


@dataclass
class RestoreReport:
    custom_restored: list[str] = field(default_factory=list)
    modified_saved: list[str] = field(default_factory=list)  # Backup sibling paths


class BackupSet:
    """The two backup directories of one project."""

    def __init__(self, project_dir: str | Path, config: ModsyncConfig | None = None):
        self.config = config or ModsyncConfig()
        project_dir = Path(project_dir)
        self.custom_dir = project_dir / CUSTOM_BACKUP_DIR
        self.modified_dir = project_dir / MODIFIED_BACKUP_DIR
        self.resumed = self.custom_dir.exists() or self.modified_dir.exists()
        if self.resumed:
            logger.warning("Resuming backups left by an interrupted run in %s", project_dir)

    @property
    def directories(self) -> list[Path]:
        return [self.custom_dir, self.modified_dir]

    def custom_paths(self) -> list[str]:
        return _backed_up(self.custom_dir)

    def modified_paths(self) -> list[str]:
        return _backed_up(self.modified_dir)

    def capture(self, install_root: str | Path, report: LocalEditReport) -> None:
        install_root = Path(install_root)
        for rel in report.custom:
            self._copy_in(install_root / rel, self.custom_dir / rel)
        for rel in report.modified:
            self._copy_in(install_root / rel, self.modified_dir / rel)

    def restore(self, install_root: str | Path, rewritten: set[str]) -> RestoreReport:
        """Put local edits back.

        Custom files overwrite whatever is at their path. A modified file is
        saved as a backup sibling when its path was rewritten this run, or
        when the file there no longer holds the backed-up content (an
        interrupted run may have overwritten it). Every backup entry is
        consumed, so ``discard`` afterwards loses nothing.
        """
        install_root = Path(install_root)
        result = RestoreReport()

        for rel in self.custom_paths():
            _copy(self.custom_dir / rel, install_root / rel)
            result.custom_restored.append(rel)

        for rel in self.modified_paths():
            saved = self.modified_dir / rel
            current = install_root / rel
            if rel not in rewritten and current.is_file() and hash_file(current) == hash_file(saved):
                continue
            sibling = rel + self.config.backup_suffix
            _copy(saved, install_root / sibling)
            result.modified_saved.append(sibling)
            logger.warning("Local changes to %s saved as %s", rel, sibling)

        return result

    def discard(self) -> None:
        for directory in self.directories:
            if directory.exists():
                shutil.rmtree(directory)

    def _copy_in(self, src: Path, dest: Path) -> None:
        if dest.exists():
            logger.debug("Keeping earlier backup of %s", dest)
            return
        _copy(src, dest)


def _backed_up(directory: Path) -> list[str]:
    return [relative_posix(p, directory) for p in scan_files(directory, skip_dirs=())]


def _copy(src: Path, dest: Path) -> None:
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dest)
    except OSError as e:
        raise WriteError(f"Cannot copy {src} to {dest}: {e}") from e
