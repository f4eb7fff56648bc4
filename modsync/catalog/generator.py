"""Manifest generator — build the catalogs from the installed tree.

Freshly written modules are scanned on disk; preserved modules keep
their previous catalog rows and inventory records verbatim. The file
inventory of fresh modules comes from the run's write log, never from
a directory walk, so user files sitting in the tree are not adopted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from modsync.catalog import tables
from modsync.catalog.headers import HeaderStatus, read_header
from modsync.config import ModsyncConfig
from modsync.models.installation import ArtifactKind, FileRecord
from modsync.sync.write_log import WriteLog
from modsync.utils.file_scanner import relative_posix, scan_files
from modsync.utils.naming import artifact_id_for_path, file_type

logger = logging.getLogger(__name__)

WORKFLOW_FILES = {"workflow.yaml", "workflow.yml", "workflow.md"}


@dataclass
class CatalogModule:
    """A module as the generator sees it."""

    module_id: str
    display_name: str = ""
    description: str = ""
    version: str | None = None
    origin: str = "built-in"
    partial: bool = False
    requested: bool = False
    preserved: bool = False


@dataclass
class Catalogs:
    modules: list[dict] = field(default_factory=list)
    workflows: list[dict] = field(default_factory=list)
    agents: list[dict] = field(default_factory=list)
    tasks_tools: list[dict] = field(default_factory=list)
    files: list[FileRecord] = field(default_factory=list)

    def rows(self, spec: tables.TableSpec) -> list[dict]:
        if spec is tables.FILES:
            return [file_record_to_row(r) for r in self.files]
        return {
            tables.MODULES: self.modules,
            tables.WORKFLOWS: self.workflows,
            tables.AGENTS: self.agents,
            tables.TASKS_TOOLS: self.tasks_tools,
        }[spec]


class ManifestGenerator:
    """Scans installed modules and writes the catalog tables."""

    def __init__(self, config: ModsyncConfig | None = None):
        self.config = config or ModsyncConfig()

    def generate(
        self,
        install_root: str | Path,
        modules: list[CatalogModule],
        write_log: WriteLog,
        carried_files: list[FileRecord] = (),
    ) -> Catalogs:
        """Build catalogs for ``modules``.

        Args:
            install_root: The installed tree.
            modules: Every module that is installed after this run.
            write_log: Files written this run; the inventory of fresh modules.
            carried_files: Records of earlier writes that stay valid, such as
                files of a partial module that were not rewritten this run.
                A carried record replaces a preserved row for the same path.
        """
        install_root = Path(install_root)
        previous = self.load(self.config.state_dir(install_root))
        catalogs = Catalogs()

        for module in sorted(modules, key=lambda m: m.module_id):
            old_row = _rows_for(previous.modules, "name", module.module_id)
            if module.preserved and old_row:
                logger.debug("Carrying catalog rows of preserved module %s", module.module_id)
                catalogs.modules.extend(old_row)
                catalogs.workflows.extend(_rows_for(previous.workflows, "module", module.module_id))
                catalogs.agents.extend(_rows_for(previous.agents, "module", module.module_id))
                catalogs.tasks_tools.extend(_rows_for(previous.tasks_tools, "module", module.module_id))
                catalogs.files.extend(r for r in previous.files if r.module == module.module_id)
                continue

            catalogs.modules.append(_module_row(module))
            self._scan_module(install_root, module.module_id, catalogs)
            if module.preserved:
                catalogs.files.extend(r for r in previous.files if r.module == module.module_id)

        fresh = {m.module_id for m in modules if not m.preserved}
        seen = {r.path for r in catalogs.files}
        for record in carried_files:
            if record.path in seen:
                catalogs.files = [r for r in catalogs.files if r.path != record.path]
            catalogs.files.append(record)
            seen.add(record.path)
        for entry in write_log:
            module_id = _module_of(entry.path)
            if module_id and module_id not in fresh:
                continue
            if entry.path in seen:
                catalogs.files = [r for r in catalogs.files if r.path != entry.path]
            catalogs.files.append(file_record(entry.path, entry.hash))
            seen.add(entry.path)

        logger.info(
            "Catalogs: %d modules, %d workflows, %d agents, %d tasks/tools, %d files",
            len(catalogs.modules), len(catalogs.workflows), len(catalogs.agents),
            len(catalogs.tasks_tools), len(catalogs.files),
        )
        return catalogs

    def write(self, state_dir: str | Path, catalogs: Catalogs) -> list[Path]:
        return [tables.write_table(state_dir, spec, catalogs.rows(spec)) for spec in tables.ALL_TABLES]

    def load(self, state_dir: str | Path) -> Catalogs:
        """Read the catalogs currently on disk."""
        return Catalogs(
            modules=tables.read_table(state_dir, tables.MODULES),
            workflows=tables.read_table(state_dir, tables.WORKFLOWS),
            agents=tables.read_table(state_dir, tables.AGENTS),
            tasks_tools=tables.read_table(state_dir, tables.TASKS_TOOLS),
            files=read_file_inventory(state_dir),
        )

    def _scan_module(self, install_root: Path, module_id: str, catalogs: Catalogs) -> None:
        module_dir = install_root / module_id
        seen: set[tuple[str, str]] = set()

        for path in scan_files(module_dir, self.config.skip_dirs):
            rel = relative_posix(path, install_root)
            artifact = artifact_id_for_path(rel)
            if artifact is None:
                continue
            kind = artifact.kind
            if kind is ArtifactKind.WORKFLOW and path.name not in WORKFLOW_FILES:
                continue

            header = read_header(path, kind)
            if header.status is HeaderStatus.MALFORMED:
                logger.warning("Skipping %s: %s", rel, header.error)
                continue
            if not header.found:
                continue

            row = self._row(kind, artifact.name, module_id, rel, header)
            if row is None:
                continue
            key = (kind.value, row["name"])
            if key in seen:
                logger.warning("Duplicate %s %s:%s at %s; keeping the first", kind.value, module_id, row["name"], rel)
                continue
            seen.add(key)

            if kind is ArtifactKind.WORKFLOW:
                catalogs.workflows.append(row)
            elif kind is ArtifactKind.AGENT:
                catalogs.agents.append(row)
            else:
                catalogs.tasks_tools.append(row)

    def _row(self, kind: ArtifactKind, name: str, module_id: str, rel: str, header) -> dict | None:
        catalog_path = f"{self.config.folder_name}/{rel}"

        if kind is ArtifactKind.WORKFLOW:
            wf_name = header.get("name")
            if not wf_name or not header.get("description"):
                return None
            if "{" in wf_name and "}" in wf_name:
                return None
            if header.get("standalone").lower() == "false":
                return None
            return {
                "name": wf_name,
                "description": header.get("description"),
                "module": module_id,
                "path": catalog_path,
            }

        if kind is ArtifactKind.AGENT:
            title = header.get("title") or header.get("description")
            if not header.get("name") or not title:
                return None
            return {
                "name": name,
                "displayName": header.get("name"),
                "title": title,
                "icon": header.get("icon"),
                "role": header.get("role"),
                "module": module_id,
                "path": catalog_path,
            }

        if not header.get("name") or not header.get("description"):
            return None
        return {
            "kind": kind.value,
            "name": name,
            "displayName": header.get("name"),
            "description": header.get("description"),
            "module": module_id,
            "path": catalog_path,
            "standalone": "true" if header.get("standalone").lower() == "true" else "false",
        }


def read_file_inventory(state_dir: str | Path) -> list[FileRecord]:
    return [
        FileRecord(type=r["type"], name=r["name"], module=r["module"], path=r["path"], hash=r["hash"])
        for r in tables.read_table(state_dir, tables.FILES)
        if r["path"]
    ]


def file_record_to_row(record: FileRecord) -> dict:
    return {
        "type": record.type,
        "name": record.name,
        "module": record.module,
        "path": record.path,
        "hash": record.hash,
    }


def file_record(path: str, digest: str) -> FileRecord:
    return FileRecord(
        type=file_type(path),
        name=PurePosixPath(path).stem,
        module=_module_of(path),
        path=path,
        hash=digest,
    )


def _module_of(path: str) -> str:
    parts = PurePosixPath(path).parts
    return parts[0] if len(parts) > 1 else ""


def _module_row(module: CatalogModule) -> dict:
    return {
        "name": module.module_id,
        "displayName": module.display_name or module.module_id,
        "description": module.description,
        "version": module.version or "",
        "source": module.origin,
        "partial": "true" if module.partial else "false",
        "requested": "true" if module.requested else "false",
    }


def _rows_for(rows: list[dict], column: str, value: str) -> list[dict]:
    return [r for r in rows if r.get(column) == value]
