"""CSV catalog tables.

Every table is written with all fields quoted and rows sorted, so the
same rows always produce the same bytes. Writes go through a temporary
file and a rename.
"""

from __future__ import annotations

import csv
import io
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from modsync.errors import WriteError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableSpec:
    """File name, columns, and sort key of one catalog table."""

    filename: str
    columns: tuple[str, ...]
    sort_by: tuple[str, ...]

    def sort_key(self, row: dict) -> tuple:
        return tuple(row.get(c, "") for c in self.sort_by)


MODULES = TableSpec(
    "module-manifest.csv",
    ("name", "displayName", "description", "version", "source", "partial", "requested"),
    ("name",),
)
WORKFLOWS = TableSpec(
    "workflow-manifest.csv",
    ("name", "description", "module", "path"),
    ("module", "name"),
)
AGENTS = TableSpec(
    "agent-manifest.csv",
    ("name", "displayName", "title", "icon", "role", "module", "path"),
    ("module", "name"),
)
TASKS_TOOLS = TableSpec(
    "task-tool-manifest.csv",
    ("kind", "name", "displayName", "description", "module", "path", "standalone"),
    ("module", "name", "kind"),
)
FILES = TableSpec(
    "files-manifest.csv",
    ("type", "name", "module", "path", "hash"),
    ("module", "path"),
)

ALL_TABLES = (MODULES, WORKFLOWS, AGENTS, TASKS_TOOLS, FILES)
TABLES_BY_KIND = {
    "modules": MODULES,
    "workflows": WORKFLOWS,
    "agents": AGENTS,
    "tasks": TASKS_TOOLS,
    "files": FILES,
}


def render_table(spec: TableSpec, rows: list[dict]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(
        buf,
        fieldnames=list(spec.columns),
        quoting=csv.QUOTE_ALL,
        extrasaction="ignore",
        lineterminator="\n",
    )
    writer.writeheader()
    for row in sorted(rows, key=spec.sort_key):
        writer.writerow({c: row.get(c, "") for c in spec.columns})
    return buf.getvalue()


def write_table(state_dir: str | Path, spec: TableSpec, rows: list[dict]) -> Path:
    """Write a table under ``state_dir`` and return its path."""
    path = Path(state_dir) / spec.filename
    atomic_write_text(path, render_table(spec, rows))
    return path


def read_table(state_dir: str | Path, spec: TableSpec) -> list[dict]:
    """Read a table; a missing or unreadable table reads as empty."""
    path = Path(state_dir) / spec.filename
    if not path.exists():
        return []
    try:
        with open(path, newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)
            return [{c: row.get(c) or "" for c in spec.columns} for row in reader]
    except (OSError, csv.Error, UnicodeDecodeError) as e:
        logger.warning("Cannot read catalog %s, treating it as empty: %s", path, e)
        return []


def atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        os.replace(tmp, path)
    except OSError as e:
        Path(tmp).unlink(missing_ok=True)
        raise WriteError(f"Cannot write {path}: {e}") from e
