"""Installer configuration — defaults, modsync.yaml loading, environment overrides.

Configuration is optional. Without a ``modsync.yaml`` every value below
falls back to its default, so a bare ``modsync install`` works against
the built-in module root.
"""

from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

from modsync.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE = "modsync.yaml"

ENV_SOURCE_ROOT = "MODSYNC_SOURCE_ROOT"
ENV_LOG_LEVEL = "MODSYNC_LOG_LEVEL"

DEFAULT_TEXT_EXTENSIONS = [
    ".md", ".yaml", ".yml", ".txt", ".json", ".js", ".ts",
    ".html", ".css", ".sh", ".bat", ".csv", ".xml",
]

DEFAULT_SKIP_DIRS = [
    ".git", ".svn", ".hg", "node_modules", "__pycache__", ".venv", "venv",
]

DEFAULT_REGENERATED_PATTERNS = [
    "config.yaml",
    "*/config.yaml",
    "*/agents/*.md",
    "*/.partial",
]


@dataclass
class RegenerationRules:
    """Glob allowlist of file families that are always regenerated.

    Matching files are tool output by definition: they are never
    classified as custom or modified during an update.
    """

    patterns: list[str] = field(default_factory=lambda: list(DEFAULT_REGENERATED_PATTERNS))

    def matches(self, rel_path: str) -> bool:
        return any(_glob_match(pattern, rel_path) for pattern in self.patterns)


@dataclass
class ModsyncConfig:
    """Resolved installer configuration."""

    folder_name: str = "_modsync"
    config_dir: str = "_config"
    placeholder: str = "{install-root}"
    text_extensions: list[str] = field(default_factory=lambda: list(DEFAULT_TEXT_EXTENSIONS))
    skip_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_SKIP_DIRS))
    regenerated_patterns: list[str] = field(
        default_factory=lambda: list(DEFAULT_REGENERATED_PATTERNS)
    )
    backup_suffix: str = ".bak"
    partial_marker: str = ".partial"
    source_root: str = ""

    @property
    def regeneration(self) -> RegenerationRules:
        return RegenerationRules(patterns=list(self.regenerated_patterns))

    def install_root(self, project_dir: str | Path) -> Path:
        return Path(project_dir) / self.folder_name

    def state_dir(self, install_root: str | Path) -> Path:
        return Path(install_root) / self.config_dir


def load_config(project_dir: str | Path | None = None, path: str | Path | None = None) -> ModsyncConfig:
    """Load configuration from ``modsync.yaml`` and the environment.

    Args:
        project_dir: Project directory searched for ``modsync.yaml``.
        path: Explicit configuration file; must exist when given.

    Raises:
        ConfigError: If the file is unreadable, not YAML, or not a mapping.
    """
    config_path: Path | None = None
    if path is not None:
        config_path = Path(path)
        if not config_path.is_file():
            raise ConfigError(f"Config file not found: {config_path}")
    elif project_dir is not None and (Path(project_dir) / CONFIG_FILE).is_file():
        config_path = Path(project_dir) / CONFIG_FILE

    data: dict = {}
    if config_path is not None:
        logger.debug("Loading installer config from %s", config_path)
        try:
            raw = config_path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read {config_path}: {e}") from e
        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(
                f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
            )

    known = {f.name for f in fields(ModsyncConfig)}
    config = ModsyncConfig(**{k: v for k, v in data.items() if k in known})

    for key in sorted(set(data) - known):
        logger.debug("Ignoring unknown config key %r", key)

    if os.environ.get(ENV_SOURCE_ROOT):
        config.source_root = os.environ[ENV_SOURCE_ROOT]

    _check(config)
    return config


def _check(config: ModsyncConfig) -> None:
    if not config.folder_name or "/" in config.folder_name:
        raise ConfigError(f"folder_name must be a single path segment: {config.folder_name!r}")
    if not config.config_dir or "/" in config.config_dir:
        raise ConfigError(f"config_dir must be a single path segment: {config.config_dir!r}")
    if not config.placeholder:
        raise ConfigError("placeholder must not be empty")
    if not config.backup_suffix.startswith("."):
        raise ConfigError(f"backup_suffix must start with '.': {config.backup_suffix!r}")
    config.text_extensions = [e.lower() for e in config.text_extensions]


def _glob_match(pattern: str, value: str) -> bool:
    return fnmatch.fnmatch(value, pattern)
