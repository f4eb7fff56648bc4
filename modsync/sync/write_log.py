"""Write log — every file written during a run, with its content hash.

The log is handed to the manifest generator as the source of the file
inventory. While a run is in progress each entry is also appended to a
JSON-lines journal, so if the run dies before the manifest is committed
the next run can still tell tool-written files from user files.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

JOURNAL_FILE = ".pending-writes.jsonl"


@dataclass
class WriteEntry:
    path: str  # Relative to the install root
    module: str
    hash: str


class WriteLog:
    """Ordered record of the files written in one run."""

    def __init__(self, journal_path: str | Path | None = None):
        self.journal_path = Path(journal_path) if journal_path else None
        self._entries: dict[str, WriteEntry] = {}

    def record(self, path: str, module: str, digest: str) -> None:
        entry = WriteEntry(path=path, module=module, hash=digest)
        self._entries[path] = entry
        if self.journal_path is not None:
            self.journal_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.journal_path, "a", encoding="utf-8") as f:
                f.write(json.dumps({"path": path, "module": module, "hash": digest}) + "\n")

    def forget(self, path: str) -> None:
        """Drop a path from the inventory-to-be; the journal is left as is."""
        self._entries.pop(path, None)

    @property
    def paths(self) -> set[str]:
        return set(self._entries)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    def __iter__(self):
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def discard_journal(self) -> None:
        """Delete the journal once the run's manifest is committed."""
        if self.journal_path is not None and self.journal_path.exists():
            self.journal_path.unlink()


def load_journal(path: str | Path) -> dict[str, str]:
    """Read a leftover journal into ``{path: hash}``; later lines win."""
    path = Path(path)
    if not path.exists():
        return {}

    written: dict[str, str] = {}
    with open(path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                # A run killed mid-append leaves a torn last line
                logger.debug("Skipping unreadable journal line in %s", path)
                continue
            if isinstance(data, dict) and data.get("path") and data.get("hash"):
                written[data["path"]] = data["hash"]
    logger.info("Found %d journaled writes from an interrupted run", len(written))
    return written
