"""Post-install hooks — module-specific code run after a module is written.

A module may ship ``_module-installer/installer.py`` with a function
``install(context) -> bool``. Callers can also register callables per
module id; a registered callable replaces the module's own installer.
A hook never aborts a run: failures come back as warning strings.
"""

from __future__ import annotations

import importlib.util
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from modsync.sources.provider import INSTALLER_DIR, ModuleSource

logger = logging.getLogger(__name__)

INSTALLER_FILE = "installer.py"


@dataclass
class HookContext:
    """Everything a post-install hook may need."""

    project_root: Path
    install_root: Path
    module_id: str
    module_path: Path
    module_config: dict = field(default_factory=dict)
    core_config: dict = field(default_factory=dict)
    targets: list[str] = field(default_factory=list)
    logger: logging.Logger = logger


HookFn = Callable[[HookContext], object]


class HookRunner:
    """Finds and runs post-install hooks."""

    def __init__(self):
        self._registered: dict[str, HookFn] = {}

    def register(self, module_id: str, fn: HookFn) -> None:
        self._registered[module_id] = fn

    def find(self, source: ModuleSource) -> HookFn | None:
        if source.module_id in self._registered:
            return self._registered[source.module_id]
        installer = source.path / INSTALLER_DIR / INSTALLER_FILE
        if installer.is_file():
            return _load_installer(source.module_id, installer)
        return None

    def run(self, source: ModuleSource, context: HookContext) -> str | None:
        """Run the module's hook, if any. Returns a warning message on failure."""
        try:
            fn = self.find(source)
            if fn is None:
                return None
            logger.info("Running post-install hook for %s", source.module_id)
            ok = fn(context)
        except Exception as e:
            logger.warning("Post-install hook for %s failed: %s", source.module_id, e, exc_info=True)
            return f"{source.module_id}: post-install hook failed: {e}"
        if ok is False:
            logger.warning("Post-install hook for %s reported failure", source.module_id)
            return f"{source.module_id}: post-install hook reported failure"
        return None


def _load_installer(module_id: str, path: Path) -> HookFn | None:
    spec = importlib.util.spec_from_file_location(f"modsync_hook_{module_id}", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    fn = getattr(module, "install", None)
    if not callable(fn):
        logger.debug("%s has no install() function", path)
        return None
    return fn
