"""State detector — what is installed at an install root.

The manifest is the primary record. When it is missing or unreadable
the detector falls back to scanning module directories, so installs
made by older tools (or whose manifest was lost) are still recognised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from modsync.config import ModsyncConfig
from modsync.errors import ManifestError
from modsync.models.installation import Manifest, ModuleRecord, Origin
from modsync.sources.provider import ModuleSourceProvider
from modsync.state.manifest_store import MANIFEST_FILE, load_manifest

logger = logging.getLogger(__name__)

MODULE_CONFIG_FILE = "config.yaml"


@dataclass
class InstallationState:
    """Detection report for one install root."""

    root: Path
    installed: bool = False
    version: str | None = None
    modules: list[ModuleRecord] = field(default_factory=list)
    targets: list[str] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)
    manifest: Manifest | None = None
    from_manifest: bool = False
    manifest_error: str = ""

    @property
    def module_ids(self) -> list[str]:
        return [m.id for m in self.modules]

    def module(self, module_id: str) -> ModuleRecord | None:
        for record in self.modules:
            if record.id == module_id:
                return record
        return None


class StateDetector:
    """Inspects an install root and its manifest."""

    def __init__(self, config: ModsyncConfig | None = None, provider: ModuleSourceProvider | None = None):
        self.config = config or ModsyncConfig()
        self.provider = provider

    def detect(self, install_root: str | Path) -> InstallationState:
        install_root = Path(install_root)
        state = InstallationState(root=install_root)
        if not install_root.is_dir():
            return state

        manifest_path = self.config.state_dir(install_root) / MANIFEST_FILE
        try:
            manifest = load_manifest(manifest_path)
        except ManifestError as e:
            logger.warning("Ignoring unreadable manifest, scanning directories instead: %s", e)
            state.manifest_error = str(e)
            manifest = None

        if manifest is not None:
            state.manifest = manifest
            state.from_manifest = True
            state.version = manifest.version or None
            state.modules = list(manifest.modules)
            state.targets = list(manifest.targets)
        else:
            state.modules = self._scan_modules(install_root)

        state.installed = bool(state.modules) or state.from_manifest
        if self.provider is not None:
            state.orphaned = [m.id for m in state.modules if not self._source_available(m)]
            for module_id in state.orphaned:
                logger.warning("Module %s is installed but its source can no longer be found", module_id)
        return state

    def _scan_modules(self, install_root: Path) -> list[ModuleRecord]:
        modules = []
        for child in sorted(install_root.iterdir()):
            if not child.is_dir() or child.name == self.config.config_dir or child.name.startswith("."):
                continue
            partial = (child / self.config.partial_marker).is_file()
            if (child / MODULE_CONFIG_FILE).is_file() or partial:
                logger.debug("Inferred module %s from directory scan", child.name)
                modules.append(ModuleRecord(id=child.name, partial=partial))
        return modules

    def _source_available(self, record: ModuleRecord) -> bool:
        if self.provider.locate(record.id) is not None:
            return True
        if record.origin is not Origin.BUILT_IN and record.source_path:
            return Path(record.source_path).is_dir()
        return False
