"""Local edit classification — detect divergence between the inventory and the tree.

A file under the install root is:

1. custom: it has no inventory record (the tool never wrote it) and is not
   a regenerated file family
2. modified: it has an inventory record whose hash no longer matches

Files a previous, interrupted run journaled with a matching hash are
tool-written, whatever the inventory says. The reserved state directory
is never classified.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from modsync.config import ModsyncConfig
from modsync.models.installation import FileRecord
from modsync.utils.file_scanner import relative_posix, scan_files
from modsync.utils.hashing import hash_file

logger = logging.getLogger(__name__)


@dataclass
class LocalEditReport:
    """Local edits found under one install root."""

    custom: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)

    @property
    def has_edits(self) -> bool:
        return bool(self.custom or self.modified)

    def summary(self) -> str:
        if not self.has_edits:
            return "no local edits"
        return f"{len(self.custom)} custom, {len(self.modified)} modified"


def classify(
    install_root: str | Path,
    records: dict[str, FileRecord],
    config: ModsyncConfig | None = None,
    journal: dict[str, str] | None = None,
) -> LocalEditReport:
    """Classify every file under ``install_root`` against the inventory.

    Args:
        install_root: The installed tree.
        records: Inventory records keyed by install-root-relative path.
        config: Installer configuration (state dir, regenerated patterns).
        journal: ``{path: hash}`` left by an interrupted run.
    """
    config = config or ModsyncConfig()
    journal = journal or {}
    install_root = Path(install_root)
    rules = config.regeneration
    state_prefix = config.config_dir + "/"
    report = LocalEditReport()

    for path in scan_files(install_root, config.skip_dirs):
        rel = relative_posix(path, install_root)
        if rel.startswith(state_prefix):
            continue

        record = records.get(rel)
        if record is None and rules.matches(rel):
            continue

        current = hash_file(path)
        if journal.get(rel) == current:
            continue
        if record is None:
            report.custom.append(rel)
        elif record.hash != current:
            report.modified.append(rel)

    if report.has_edits:
        logger.info("Local edits: %s", report.summary())
    for rel in report.modified:
        logger.debug("Modified: %s", rel)
    for rel in report.custom:
        logger.debug("Custom: %s", rel)
    return report
