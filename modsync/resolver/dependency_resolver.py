"""Dependency resolver — expand requested modules with cross-module references.

Every file of a requested module is installed. A text file may also
reference an artifact of another module, either inline through the
install-root placeholder::

    {install-root}/core/tasks/review.xml

or through a ``dependencies`` list in its YAML frontmatter. A referenced
artifact whose module is neither requested nor already fully installed
is installed on its own, making that module a *partial* install. A
workflow reference pulls in its whole workflow directory. Resolution is
transitive: files added this way are scanned for references too.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, field

import yaml

from modsync.config import ModsyncConfig
from modsync.errors import ResolutionError
from modsync.models.installation import ArtifactKind
from modsync.sources.provider import ModuleSource, ModuleSourceProvider
from modsync.utils.file_scanner import is_text_file
from modsync.utils.naming import MODULE_ID_PATTERN

logger = logging.getLogger(__name__)

_KIND_DIRS = "|".join(k.directory for k in ArtifactKind)
_TRAILING_PUNCT = ".,;:!?"


@dataclass
class ArtifactSet:
    """The files one module contributes to a run."""

    source: ModuleSource
    files: set[str] = field(default_factory=set)
    requested: bool = False

    @property
    def module_id(self) -> str:
        return self.source.module_id

    @property
    def partial(self) -> bool:
        return not self.requested


@dataclass
class Resolution:
    by_module: dict[str, ArtifactSet] = field(default_factory=dict)
    unresolved: list[str] = field(default_factory=list)

    @property
    def requested_ids(self) -> list[str]:
        return sorted(m for m, s in self.by_module.items() if s.requested)

    @property
    def partial_ids(self) -> list[str]:
        return sorted(m for m, s in self.by_module.items() if s.partial)


class DependencyResolver:
    """Computes the full per-module file set for a requested module list."""

    def __init__(self, provider: ModuleSourceProvider, config: ModsyncConfig | None = None):
        self.provider = provider
        self.config = config or ModsyncConfig()
        self._ref_re = re.compile(
            re.escape(self.config.placeholder)
            + rf"/({MODULE_ID_PATTERN})/((?:{_KIND_DIRS})/[^\s'\"`<>()\[\]{{}}|]+)"
        )
        self._bare_ref_re = re.compile(rf"^({MODULE_ID_PATTERN})/((?:{_KIND_DIRS})/\S+)$")

    def resolve(self, requested_ids, installed_full=()) -> Resolution:
        """Resolve a requested module set.

        Args:
            requested_ids: Modules to install completely.
            installed_full: Modules already fully installed that stay in place;
                references into them need no partial install.

        Raises:
            SourceError: If a requested module has no source.
        """
        resolution = Resolution()
        queue: deque[tuple[str, str]] = deque()

        for module_id in sorted(set(requested_ids)):
            source = self.provider.get(module_id)
            artifacts = ArtifactSet(source=source, requested=True)
            artifacts.files.update(self.provider.installable_files(source))
            resolution.by_module[module_id] = artifacts
            queue.extend((module_id, rel) for rel in sorted(artifacts.files))

        skip = set(installed_full)
        while queue:
            module_id, rel = queue.popleft()
            artifacts = resolution.by_module[module_id]
            for ref_module, ref_path in self._references(artifacts.source, rel):
                if ref_module in skip:
                    continue
                owner = resolution.by_module.get(ref_module)
                if owner is not None and owner.requested:
                    continue
                added = self._add_reference(resolution, ref_module, ref_path, f"{module_id}/{rel}")
                queue.extend((ref_module, r) for r in added)

        for module_id in resolution.partial_ids:
            logger.info(
                "Module %s is a partial install (%d referenced files)",
                module_id, len(resolution.by_module[module_id].files),
            )
        return resolution

    def _add_reference(self, resolution: Resolution, module_id: str, ref_path: str, referrer: str) -> list[str]:
        ref = f"{module_id}/{ref_path}"
        owner = resolution.by_module.get(module_id)
        if owner is None:
            source = self.provider.locate(module_id)
            if source is None:
                logger.warning("%s references %s, but module %s has no source", referrer, ref, module_id)
                resolution.unresolved.append(ref)
                return []
            owner = ArtifactSet(source=source)
            available = set(self.provider.installable_files(source))
        else:
            available = set(self.provider.installable_files(owner.source))

        wanted = _expand(ref_path, available)
        if not wanted:
            logger.warning("%s references %s, which does not exist", referrer, ref)
            resolution.unresolved.append(ref)
            return []

        resolution.by_module.setdefault(module_id, owner)
        added = sorted(wanted - owner.files)
        owner.files.update(added)
        return added

    def _references(self, source: ModuleSource, rel: str) -> list[tuple[str, str]]:
        path = source.path / rel
        if not is_text_file(path, self.config.text_extensions):
            return []
        try:
            text = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return []
        except OSError as e:
            raise ResolutionError(f"Cannot read {path}: {e}") from e

        refs = [(m, p.rstrip(_TRAILING_PUNCT)) for m, p in self._ref_re.findall(text)]
        for dep in _frontmatter_dependencies(text):
            dep = dep.replace(self.config.placeholder + "/", "", 1)
            match = self._bare_ref_re.match(dep)
            if match:
                refs.append((match.group(1), match.group(2)))
            else:
                logger.debug("Ignoring malformed dependency %r in %s/%s", dep, source.module_id, rel)
        return refs


def _expand(ref_path: str, available: set[str]) -> set[str]:
    """Files a reference pulls in: a whole workflow directory, or one file."""
    parts = ref_path.split("/")
    if parts[0] == ArtifactKind.WORKFLOW.directory and len(parts) >= 2:
        workflow_dir = "/".join(parts[:2]) + "/"
        return {f for f in available if f.startswith(workflow_dir)}
    if ref_path in available:
        return {ref_path}
    prefix = ref_path.rstrip("/") + "/"
    return {f for f in available if f.startswith(prefix)}


def _frontmatter_dependencies(text: str) -> list[str]:
    if not text.startswith("---"):
        return []
    end = text.find("\n---", 3)
    if end == -1:
        return []
    try:
        data = yaml.safe_load(text[3:end])
    except yaml.YAMLError:
        return []
    if not isinstance(data, dict):
        return []
    deps = data.get("dependencies") or []
    if not isinstance(deps, list):
        return []
    return [str(d) for d in deps]
