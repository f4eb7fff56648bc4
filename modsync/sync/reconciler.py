"""Reconciler — drive one install/update run from detection to commit.

Phases run strictly in order::

    DETECTING -> BACKING_UP -> RESOLVING -> WRITING
              -> MANIFEST_GENERATING -> RESTORING -> DONE

Any fatal error moves the run to FAILED and raises ``ReconcileError``.
The manifest is written last: a fresh manifest is proof that the run
that wrote it completed. A failed run leaves the previous manifest, its
backup directories and its write journal in place, and the next run
picks all three up.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

import yaml

from modsync import __version__
from modsync.cache.module_cache import ModuleCache
from modsync.catalog.generator import (
    CatalogModule,
    Catalogs,
    ManifestGenerator,
    file_record,
    read_file_inventory,
)
from modsync.config import ModsyncConfig
from modsync.errors import (
    DecisionRequired,
    ModsyncError,
    ReconcileError,
    ReconcileHalted,
    UpdateConfirmationRequired,
)
from modsync.models.installation import FileRecord, Manifest, ModuleRecord, Origin
from modsync.resolver.dependency_resolver import DependencyResolver, Resolution
from modsync.sources.hooks import HookContext, HookRunner
from modsync.sources.provider import ModuleSourceProvider
from modsync.state.detector import MODULE_CONFIG_FILE, InstallationState, StateDetector
from modsync.state.manifest_store import MANIFEST_FILE, save_manifest
from modsync.sync.backup import BackupSet
from modsync.sync.classifier import LocalEditReport, classify
from modsync.sync.preflight import DecisionAction, DecisionRecord, preflight
from modsync.sync.write_log import JOURNAL_FILE, WriteLog, load_journal
from modsync.sync.writer import ModuleWriter
from modsync.utils.file_scanner import prune_empty_dirs, relative_posix, scan_files
from modsync.utils.hashing import hash_file
from modsync.utils.naming import validate_module_id

logger = logging.getLogger(__name__)

CACHE_DIR = "custom"
CORE_MODULE = "core"


class ReconcilePhase(str, Enum):
    DETECTING = "detecting"
    BACKING_UP = "backing_up"
    RESOLVING = "resolving"
    WRITING = "writing"
    MANIFEST_GENERATING = "manifest_generating"
    RESTORING = "restoring"
    DONE = "done"
    FAILED = "failed"


@dataclass
class InstallRequest:
    """What the caller wants installed."""

    project_dir: str | Path
    modules: list[str] = field(default_factory=list)
    custom_paths: dict[str, str] = field(default_factory=dict)
    external_paths: dict[str, str] = field(default_factory=dict)
    targets: list[str] | None = None  # None keeps the previous targets
    remove: list[str] = field(default_factory=list)
    module_config: dict[str, dict] = field(default_factory=dict)
    confirm_update: bool = False


@dataclass
class ReconcileResult:
    """Outcome of a run. On failure, the partial outcome up to the failed phase."""

    install_root: Path
    phase: ReconcilePhase = ReconcilePhase.DETECTING
    phases: list[ReconcilePhase] = field(default_factory=list)
    update: bool = False
    installed: list[str] = field(default_factory=list)
    partial: list[str] = field(default_factory=list)
    preserved: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    custom_restored: list[str] = field(default_factory=list)
    modified_saved: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    backup_dirs: list[str] = field(default_factory=list)
    files_written: int = 0
    manifest: Manifest | None = None
    catalogs: Catalogs | None = None

    @property
    def succeeded(self) -> bool:
        return self.phase is ReconcilePhase.DONE


@dataclass
class UninstallResult:
    install_root: Path
    removed: list[str] = field(default_factory=list)
    kept: list[str] = field(default_factory=list)


@dataclass
class _Run:
    """Working state shared by the phases of one run."""

    request: InstallRequest
    project_dir: Path
    install_root: Path
    state_dir: Path
    provider: ModuleSourceProvider
    cache: ModuleCache
    result: ReconcileResult
    state: InstallationState | None = None
    requested: list[str] = field(default_factory=list)
    removals: set[str] = field(default_factory=set)
    kept: set[str] = field(default_factory=set)
    cache_backed: set[str] = field(default_factory=set)
    origins: dict[str, Origin] = field(default_factory=dict)
    source_paths: dict[str, str] = field(default_factory=dict)
    previous_records: dict[str, FileRecord] = field(default_factory=dict)
    journal: dict[str, str] = field(default_factory=dict)
    edits: LocalEditReport = field(default_factory=LocalEditReport)
    backups: BackupSet | None = None
    resolution: Resolution | None = None
    module_configs: dict[str, dict] = field(default_factory=dict)
    core_config: dict = field(default_factory=dict)
    write_log: WriteLog | None = None
    written_paths: set[str] = field(default_factory=set)


class Reconciler:
    """Installs and updates modules under ``<project>/<folder_name>``."""

    def __init__(
        self,
        config: ModsyncConfig | None = None,
        provider: ModuleSourceProvider | None = None,
        hooks: HookRunner | None = None,
        clock=None,
    ):
        self.config = config or ModsyncConfig()
        self.provider = provider
        self.hooks = hooks or HookRunner()
        self._clock = clock or _utc_now
        self.generator = ManifestGenerator(self.config)

    def run(self, request: InstallRequest, decisions: DecisionRecord | None = None) -> ReconcileResult:
        """Run one reconciliation.

        Raises:
            UpdateConfirmationRequired: An installation exists and the request
                does not confirm the update. Nothing was written.
            DecisionRequired: Custom modules lost their source and ``decisions``
                does not cover them. Nothing was written.
            ReconcileError: A fatal error; ``.phase`` says where it happened.
        """
        run = self._start(request)
        steps = (
            (ReconcilePhase.DETECTING, lambda: self._detect(run, decisions)),
            (ReconcilePhase.BACKING_UP, lambda: self._back_up(run)),
            (ReconcilePhase.RESOLVING, lambda: self._resolve(run)),
            (ReconcilePhase.WRITING, lambda: self._write(run)),
            (ReconcilePhase.MANIFEST_GENERATING, lambda: self._generate(run)),
            (ReconcilePhase.RESTORING, lambda: self._restore_and_commit(run)),
        )
        for phase, step in steps:
            self._enter(run, phase)
            try:
                step()
            except ReconcileHalted:
                raise
            except (ModsyncError, OSError) as e:
                run.result.phase = ReconcilePhase.FAILED
                run.result.phases.append(ReconcilePhase.FAILED)
                if run.backups is not None:
                    run.result.backup_dirs = [str(d) for d in run.backups.directories if d.exists()]
                logger.error("Run failed while %s: %s", phase.value.replace("_", " "), e)
                raise ReconcileError(f"{phase.value} failed: {e}", phase, run.result) from e

        self._enter(run, ReconcilePhase.DONE)
        return run.result

    def uninstall(self, project_dir: str | Path) -> UninstallResult:
        """Remove every tool-owned, unmodified file and the state directory.

        Custom and modified files are left in place and listed as kept.
        """
        install_root = self.config.install_root(project_dir)
        state_dir = self.config.state_dir(install_root)
        result = UninstallResult(install_root=install_root)
        if not install_root.is_dir():
            return result

        owned = {r.path: r.hash for r in read_file_inventory(state_dir)}
        owned.update(load_journal(state_dir / JOURNAL_FILE))
        for rel, digest in sorted(owned.items()):
            path = install_root / rel
            if not path.is_file():
                continue
            if hash_file(path) == digest:
                path.unlink()
                result.removed.append(rel)
                prune_empty_dirs(path.parent, install_root)

        if state_dir.exists():
            shutil.rmtree(state_dir)
        result.kept = [relative_posix(p, install_root) for p in scan_files(install_root, skip_dirs=())]
        if not result.kept:
            shutil.rmtree(install_root)
        logger.info("Uninstalled: %d files removed, %d kept", len(result.removed), len(result.kept))
        return result

    # ── Phases ──────────────────────────────────────────────────────

    def _start(self, request: InstallRequest) -> _Run:
        project_dir = Path(request.project_dir)
        install_root = self.config.install_root(project_dir)
        state_dir = self.config.state_dir(install_root)
        provider = self.provider or ModuleSourceProvider(
            source_root=self.config.source_root or None,
            skip_dirs=self.config.skip_dirs,
        )
        for module_id, path in request.custom_paths.items():
            provider.register_custom(module_id, path)
        for module_id, path in request.external_paths.items():
            provider.register_external(module_id, path)
        return _Run(
            request=request,
            project_dir=project_dir,
            install_root=install_root,
            state_dir=state_dir,
            provider=provider,
            cache=ModuleCache(state_dir / CACHE_DIR, self.config.skip_dirs),
            result=ReconcileResult(install_root=install_root),
        )

    def _enter(self, run: _Run, phase: ReconcilePhase) -> None:
        run.result.phase = phase
        run.result.phases.append(phase)
        logger.info("Phase: %s", phase.value)

    def _detect(self, run: _Run, decisions: DecisionRecord | None) -> None:
        request = run.request
        for module_id in [*request.modules, *request.remove]:
            validate_module_id(module_id)

        state = StateDetector(self.config, run.provider).detect(run.install_root)
        run.state = state
        run.result.update = state.installed
        if state.installed and not request.confirm_update:
            raise UpdateConfirmationRequired(state)

        for record in state.modules:
            if run.provider.is_registered(record.id) or not record.source_path:
                continue
            if not Path(record.source_path).is_dir():
                continue
            if record.origin is Origin.CUSTOM:
                run.provider.register_custom(record.id, record.source_path)
            elif record.origin is Origin.EXTERNAL:
                run.provider.register_external(record.id, record.source_path)

        report = preflight(state, run.provider, run.cache)
        pending = report.undecided(decisions)
        if pending.needs_decisions:
            raise DecisionRequired(pending)

        for module_id in report.from_cache:
            run.provider.register_custom(module_id, run.cache.get(module_id).path)
            run.cache_backed.add(module_id)
            run.result.warnings.append(f"{module_id}: source missing, installed from cache")

        for ambiguous in report.ambiguous:
            decision = decisions.get(ambiguous.module_id)
            if decision.action is DecisionAction.KEEP:
                run.kept.add(ambiguous.module_id)
            elif decision.action is DecisionAction.RELOCATE:
                run.provider.register_custom(ambiguous.module_id, decision.new_path)
            else:
                run.removals.add(ambiguous.module_id)

        for module_id in state.orphaned:
            if module_id in report.from_cache or module_id in run.removals:
                continue
            if run.provider.locate(module_id) is None:
                run.result.warnings.append(f"{module_id}: source not found; installed files left as they are")

        installed = set(state.module_ids)
        for module_id in request.remove:
            if module_id in installed:
                run.removals.add(module_id)
            else:
                run.result.warnings.append(f"{module_id}: not installed, nothing to remove")

        for module_id in sorted(set(request.modules) & run.kept):
            run.result.warnings.append(f"{module_id}: kept as installed, source is missing")
        run.requested = sorted(set(request.modules) - run.removals - run.kept)

    def _back_up(self, run: _Run) -> None:
        run.previous_records = {r.path: r for r in read_file_inventory(run.state_dir)}
        run.journal = load_journal(run.state_dir / JOURNAL_FILE)
        run.backups = BackupSet(run.project_dir, self.config)
        if run.backups.resumed:
            run.result.warnings.append("resumed backups from an interrupted run")
        if not run.install_root.is_dir():
            return

        run.edits = classify(run.install_root, run.previous_records, self.config, run.journal)
        run.backups.capture(run.install_root, run.edits)

    def _resolve(self, run: _Run) -> None:
        state = run.state
        for module_id in run.requested:
            source = run.provider.get(module_id)
            run.origins[module_id] = source.origin
            if source.origin is Origin.BUILT_IN or module_id in run.cache_backed:
                continue
            entry = run.cache.store(
                module_id,
                source.path,
                {"name": source.display_name, "version": source.version, "origin": source.origin.value},
            )
            run.source_paths[module_id] = str(source.path.resolve())
            if source.origin is Origin.CUSTOM:
                run.provider.register_custom(module_id, entry.path)
            else:
                run.provider.register_external(module_id, entry.path)

        previous = set(state.module_ids)
        full = {m.id for m in state.modules if not m.partial}
        installed_full = full - run.removals - set(run.requested)

        resolution = DependencyResolver(run.provider, self.config).resolve(run.requested, installed_full)
        run.resolution = resolution
        for module_id in resolution.partial_ids:
            run.origins.setdefault(module_id, resolution.by_module[module_id].source.origin)
            if module_id in run.removals:
                run.removals.discard(module_id)
                run.result.warnings.append(f"{module_id}: still referenced, kept as a partial install")

        result = run.result
        result.installed = list(run.requested)
        result.partial = resolution.partial_ids
        result.preserved = sorted(previous - set(run.requested) - run.removals - set(resolution.by_module))
        result.removed = sorted(run.removals & previous)
        result.unresolved = list(resolution.unresolved)
        for ref in resolution.unresolved:
            result.warnings.append(f"unresolved reference {ref}")

        run.core_config = self._core_config(run)
        for module_id in run.requested:
            if module_id == CORE_MODULE:
                run.module_configs[module_id] = dict(run.core_config)
                continue
            existing = self._existing_config(run.install_root, module_id)
            for key in run.core_config:
                existing.pop(key, None)
            supplied = run.request.module_config.get(module_id) or {}
            known = {**run.core_config, **existing, **supplied}
            defaults = resolution.by_module[module_id].source.config_defaults(run.project_dir, known)
            run.module_configs[module_id] = {**defaults, **known}

    def _write(self, run: _Run) -> None:
        run.install_root.mkdir(parents=True, exist_ok=True)
        run.write_log = WriteLog(run.state_dir / JOURNAL_FILE)
        writer = ModuleWriter(run.install_root, run.write_log, self.config)

        for module_id in sorted(run.resolution.by_module):
            artifacts = run.resolution.by_module[module_id]
            writer.write_module(artifacts)
            if artifacts.requested:
                writer.write_module_config(module_id, run.module_configs[module_id])
        run.result.files_written = len(run.write_log)
        run.written_paths = run.write_log.paths
        for rel in writer.fallbacks:
            run.result.warnings.append(f"{rel}: not UTF-8 text, copied without substitution")

        self._prune(run)

        targets = self._targets(run)
        for module_id in run.requested:
            context = HookContext(
                project_root=run.project_dir,
                install_root=run.install_root,
                module_id=module_id,
                module_path=run.install_root / module_id,
                module_config=dict(run.module_configs[module_id]),
                core_config=dict(run.core_config),
                targets=list(targets),
                logger=logging.getLogger(f"modsync.hooks.{module_id}"),
            )
            warning = self.hooks.run(run.resolution.by_module[module_id].source, context)
            if warning:
                run.result.warnings.append(warning)

    def _prune(self, run: _Run) -> None:
        """Delete stale tool-owned files of rewritten and removed modules."""
        rewritten = set(run.requested) | run.removals
        candidates = {
            r.path: r.hash for r in run.previous_records.values() if r.module in rewritten
        }
        untouched = set(run.result.preserved) | set(run.result.partial)
        for rel, digest in run.journal.items():
            if rel not in run.previous_records and _module_of(rel) not in untouched:
                candidates.setdefault(rel, digest)

        for rel, digest in sorted(candidates.items()):
            if rel in run.write_log:
                continue
            path = run.install_root / rel
            if not path.is_file():
                continue
            if hash_file(path) != digest:
                logger.info("Keeping locally modified %s", rel)
                continue
            path.unlink()
            run.result.pruned.append(rel)
            prune_empty_dirs(path.parent, run.install_root)
        if run.result.pruned:
            logger.info("Pruned %d stale files", len(run.result.pruned))

    def _generate(self, run: _Run) -> None:
        for rel in run.backups.custom_paths():
            if rel in run.write_log:
                logger.warning("Custom file %s replaces the module file at the same path", rel)
                run.write_log.forget(rel)

        modules = []
        for module_id, artifacts in sorted(run.resolution.by_module.items()):
            source = artifacts.source
            modules.append(
                CatalogModule(
                    module_id=module_id,
                    display_name=source.display_name,
                    description=source.description,
                    version=source.version,
                    origin=run.origins[module_id].value,
                    partial=artifacts.partial,
                    requested=artifacts.requested,
                )
            )
        for module_id in run.result.preserved:
            record = run.state.module(module_id)
            modules.append(
                CatalogModule(
                    module_id=module_id,
                    version=record.version,
                    origin=record.origin.value,
                    partial=record.partial,
                    requested=not record.partial,
                    preserved=True,
                )
            )

        catalogs = self.generator.generate(
            run.install_root, modules, run.write_log, self._carried_files(run)
        )
        self.generator.write(run.state_dir, catalogs)
        run.result.catalogs = catalogs

    def _restore_and_commit(self, run: _Run) -> None:
        restored = run.backups.restore(run.install_root, run.written_paths)
        run.result.custom_restored = restored.custom_restored
        run.result.modified_saved = restored.modified_saved
        for sibling in restored.modified_saved:
            run.result.warnings.append(f"local changes saved as {sibling}")
        run.backups.discard()

        manifest = self._build_manifest(run)
        save_manifest(run.state_dir / MANIFEST_FILE, manifest)
        run.result.manifest = manifest
        run.write_log.discard_journal()

        cached = [m.id for m in manifest.modules if m.origin is not Origin.BUILT_IN]
        run.cache.reconcile_against(cached)
        logger.info(
            "Installed %d modules (%d partial, %d preserved)",
            len(run.result.installed), len(run.result.partial), len(run.result.preserved),
        )

    # ── Helpers ─────────────────────────────────────────────────────

    def _build_manifest(self, run: _Run) -> Manifest:
        now = self._clock()
        state = run.state
        previous = state.manifest
        records = []
        for module_id, artifacts in run.resolution.by_module.items():
            prev = state.module(module_id)
            records.append(
                ModuleRecord(
                    id=module_id,
                    origin=run.origins[module_id],
                    version=artifacts.source.version,
                    install_date=prev.install_date if prev and prev.install_date else now,
                    last_updated=now,
                    partial=artifacts.partial,
                    source_path=run.source_paths.get(module_id) or (prev.source_path if prev else ""),
                )
            )
        records.extend(state.module(m) for m in run.result.preserved)
        records.sort(key=lambda r: r.id)

        return Manifest(
            version=__version__,
            install_date=previous.install_date if previous and previous.install_date else now,
            last_updated=now,
            modules=records,
            targets=self._targets(run),
        )

    def _targets(self, run: _Run) -> list[str]:
        if run.request.targets is not None:
            return sorted(set(run.request.targets))
        return list(run.state.targets)

    def _carried_files(self, run: _Run) -> list[FileRecord]:
        """Inventory records of files this run did not write but that stay tool-owned.

        A partial module keeps its earlier records whether or not the file was
        edited, so a later run sees an edit as a modification. Files that an
        interrupted run wrote into modules this run leaves alone are recorded
        with their journaled hash.
        """
        carried: dict[str, FileRecord] = {}
        partial = set(run.result.partial)
        for record in run.previous_records.values():
            if record.module in partial and record.path not in run.write_log:
                if (run.install_root / record.path).is_file():
                    carried[record.path] = record

        untouched = partial | set(run.result.preserved)
        for rel, digest in run.journal.items():
            if rel in run.write_log or _module_of(rel) not in untouched:
                continue
            path = run.install_root / rel
            if path.is_file() and hash_file(path) == digest:
                carried[rel] = file_record(rel, digest)
        return [carried[rel] for rel in sorted(carried)]

    def _core_config(self, run: _Run) -> dict:
        """Core values: declared defaults, then the installed file, then the caller's."""
        values = self._existing_config(run.install_root, CORE_MODULE)
        values.update(run.request.module_config.get(CORE_MODULE) or {})
        if CORE_MODULE in run.resolution.by_module:
            source = run.resolution.by_module[CORE_MODULE].source
        elif CORE_MODULE in run.state.module_ids:
            source = run.provider.locate(CORE_MODULE)
        else:
            source = None
        if source is None:
            return values
        return {**source.config_defaults(run.project_dir, values), **values}

    def _existing_config(self, install_root: Path, module_id: str) -> dict:
        path = install_root / module_id / MODULE_CONFIG_FILE
        if not path.is_file():
            return {}
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable %s: %s", path, e)
            return {}
        return data if isinstance(data, dict) else {}


def _module_of(rel: str) -> str:
    return rel.split("/", 1)[0] if "/" in rel else ""


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()
