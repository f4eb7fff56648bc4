"""Module source provider — map a module id to the directory holding its content.

A module source tree looks like::

    <module>/
        module.yaml              descriptor (code, name, description, version)
        agents/*.md
        workflows/<name>/workflow.yaml | workflow.md
        tasks/  tools/  templates/  data/ ...
        _module-installer/       install-time only (descriptor, installer.py)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from modsync.config import DEFAULT_SKIP_DIRS
from modsync.errors import NamingError, SourceError
from modsync.models.installation import Origin
from modsync.utils.file_scanner import relative_posix, scan_files
from modsync.utils.naming import validate_module_id

logger = logging.getLogger(__name__)

INSTALLER_DIR = "_module-installer"

DESCRIPTOR_CANDIDATES = (
    "module.yaml",
    f"{INSTALLER_DIR}/module.yaml",
    "custom.yaml",
    f"{INSTALLER_DIR}/custom.yaml",
)

# Install-time content that is never copied into the install root
_SOURCE_ONLY_FILES = {"module.yaml", "custom.yaml", "config.yaml"}
_SOURCE_ONLY_DIRS = {INSTALLER_DIR, "sub-modules"}

_LOCALSKIP_RE = re.compile(r'<agent\b[^>]*\blocalskip="true"', re.IGNORECASE)
_FIELD_REF_RE = re.compile(r"\{([^{}]+)\}")

# Left in place for the consumer of the config file
_KEPT_FIELDS = {"project-root", "value"}


@dataclass
class ModuleSource:
    """A located module source tree."""

    module_id: str
    path: Path
    origin: Origin = Origin.BUILT_IN
    descriptor: dict = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return str(self.descriptor.get("name") or self.module_id)

    @property
    def description(self) -> str:
        return str(self.descriptor.get("description") or "")

    @property
    def version(self) -> str | None:
        version = self.descriptor.get("version")
        return str(version) if version is not None else None

    @property
    def default_selected(self) -> bool:
        return bool(self.descriptor.get("default_selected", False))

    def config_defaults(self, project_dir: str | Path, known: dict | None = None) -> dict:
        """Values of the config items this module declares, without asking anyone.

        A config item is a descriptor mapping with a ``default`` and/or a
        ``result`` template, e.g.::

            output_folder:
              prompt: "Where should documents go?"
              default: docs
              result: "{project-root}/{value}"

        ``{value}`` in ``result`` takes the default; ``{directory_name}`` is the
        project directory name; ``{other_field}`` takes the value in ``known``,
        or else one declared earlier in this module. Items with no default
        whose result needs a ``{value}`` are skipped.
        """
        known = dict(known or {})
        directory_name = Path(project_dir).resolve().name
        values: dict = {}
        for key, item in self.descriptor.items():
            if not isinstance(item, dict) or not ("default" in item or "result" in item):
                continue
            default = item.get("default")
            result = item.get("result")
            if default is None:
                if result is None or (isinstance(result, str) and "{value}" in result):
                    continue
                value = result
            elif isinstance(result, str) and result != "{value}":
                value = result.replace("{value}", str(default))
            else:
                value = default

            if isinstance(value, str):
                value = value.replace("{directory_name}", directory_name)
                value = _fill_fields(value, {**values, **known})
            values[str(key)] = value
        return values


class ModuleSourceProvider:
    """Resolves module ids to source trees.

    Lookup order: registered custom paths, registered external paths,
    then the built-in source root.
    """

    def __init__(
        self,
        source_root: str | Path | None = None,
        custom_paths: dict[str, str | Path] | None = None,
        external_paths: dict[str, str | Path] | None = None,
        skip_dirs=DEFAULT_SKIP_DIRS,
    ):
        self.source_root = Path(source_root) if source_root else None
        self.skip_dirs = frozenset(skip_dirs)
        self._custom: dict[str, Path] = {}
        self._external: dict[str, Path] = {}
        self._builtin: dict[str, Path] | None = None
        for module_id, path in (custom_paths or {}).items():
            self.register_custom(module_id, path)
        for module_id, path in (external_paths or {}).items():
            self.register_external(module_id, path)

    def register_custom(self, module_id: str, path: str | Path) -> None:
        self._custom[validate_module_id(module_id)] = Path(path)

    def register_external(self, module_id: str, path: str | Path) -> None:
        self._external[validate_module_id(module_id)] = Path(path)

    def is_registered(self, module_id: str) -> bool:
        return module_id in self._custom or module_id in self._external

    def locate(self, module_id: str) -> ModuleSource | None:
        """Find a module's source, or None if no existing directory provides it."""
        for paths, origin in ((self._custom, Origin.CUSTOM), (self._external, Origin.EXTERNAL)):
            path = paths.get(module_id)
            if path is not None:
                if path.is_dir():
                    return ModuleSource(module_id, path, origin, read_descriptor(path))
                logger.debug("Registered %s source for %s is missing: %s", origin.value, module_id, path)

        path = self._builtin_index().get(module_id)
        if path is not None:
            return ModuleSource(module_id, path, Origin.BUILT_IN, read_descriptor(path))
        return None

    def get(self, module_id: str) -> ModuleSource:
        """Like ``locate`` but a missing source is an error."""
        source = self.locate(module_id)
        if source is None:
            raise SourceError(f"No source found for module '{module_id}'")
        return source

    def list_available(self) -> list[ModuleSource]:
        """All built-in modules, sorted by id."""
        return [
            ModuleSource(mid, path, Origin.BUILT_IN, read_descriptor(path))
            for mid, path in sorted(self._builtin_index().items())
        ]

    def installable_files(self, source: ModuleSource) -> list[str]:
        """Source-relative paths of every file that belongs in the install root."""
        files = []
        for path in scan_files(source.path, self.skip_dirs):
            rel = relative_posix(path, source.path)
            if _is_source_only(rel):
                continue
            if rel.startswith("agents/") and rel.endswith(".md") and _is_localskip(path):
                logger.debug("Skipping local-only agent %s/%s", source.module_id, rel)
                continue
            files.append(rel)
        return files

    def _builtin_index(self) -> dict[str, Path]:
        if self._builtin is not None:
            return self._builtin
        self._builtin = {}
        if self.source_root is None or not self.source_root.is_dir():
            return self._builtin

        for child in sorted(self.source_root.iterdir()):
            if not child.is_dir() or child.name.startswith("."):
                continue
            descriptor = read_descriptor(child)
            if not descriptor:
                continue
            module_id = str(descriptor.get("code") or child.name)
            try:
                validate_module_id(module_id)
            except NamingError as e:
                logger.warning("Skipping module source %s: %s", child, e)
                continue
            if module_id in self._builtin:
                logger.warning(
                    "Module id %s is provided by both %s and %s; using the first",
                    module_id, self._builtin[module_id], child,
                )
                continue
            self._builtin[module_id] = child
        return self._builtin


def read_descriptor(module_path: str | Path) -> dict:
    """Load a module's descriptor, or return {} if it has none.

    Raises:
        SourceError: If a descriptor exists but is not a YAML mapping.
    """
    module_path = Path(module_path)
    for candidate in DESCRIPTOR_CANDIDATES:
        path = module_path / candidate
        if not path.is_file():
            continue
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise SourceError(f"Cannot read module descriptor {path}: {e}") from e
        if not isinstance(data, dict):
            raise SourceError(f"Module descriptor {path} is not a mapping")
        return data
    return {}


def _is_source_only(rel: str) -> bool:
    parts = rel.split("/")
    if len(parts) == 1 and parts[0] in _SOURCE_ONLY_FILES:
        return True
    if parts[0] in _SOURCE_ONLY_DIRS:
        return True
    return parts[-1].endswith(".agent.yaml")


def _is_localskip(path: Path) -> bool:
    try:
        head = path.read_text(encoding="utf-8", errors="replace")[:4096]
    except OSError as e:
        raise SourceError(f"Cannot read {path}: {e}") from e
    return bool(_LOCALSKIP_RE.search(head))


def _fill_fields(text: str, values: dict) -> str:
    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name in _KEPT_FIELDS or name not in values:
            return match.group(0)
        return str(values[name])

    return _FIELD_REF_RE.sub(replace, text)
