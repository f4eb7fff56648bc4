"""Installation data models.

These are plain records. Persistence lives with the component that owns
each document: the manifest store, the cache index and the catalog
tables each convert to and from their on-disk shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Origin(str, Enum):
    """Where a module's source comes from."""

    BUILT_IN = "built-in"
    EXTERNAL = "external"
    CUSTOM = "custom"


class ArtifactKind(str, Enum):
    AGENT = "agent"
    WORKFLOW = "workflow"
    TASK = "task"
    TOOL = "tool"

    @property
    def directory(self) -> str:
        """Name of the module subdirectory holding this kind."""
        return self.value + "s"

    @classmethod
    def from_directory(cls, name: str) -> ArtifactKind | None:
        for kind in cls:
            if kind.directory == name:
                return kind
        return None


@dataclass
class ModuleRecord:
    """One installed module as recorded in the manifest."""

    id: str
    origin: Origin = Origin.BUILT_IN
    version: str | None = None
    install_date: str = ""  # ISO 8601
    last_updated: str = ""  # ISO 8601
    partial: bool = False
    source_path: str = ""  # Custom/external modules only


@dataclass
class FileRecord:
    """A file this tool wrote, keyed by its path relative to the install root."""

    type: str
    name: str
    module: str
    path: str
    hash: str


@dataclass
class CacheEntry:
    """A cached copy of a custom or external module source."""

    module_id: str
    source_hash: str
    cache_hash: str
    cached_at: str  # ISO 8601
    path: str = ""  # Cache directory
    metadata: dict = field(default_factory=dict)


@dataclass
class Manifest:
    """The durable root document of an installation."""

    version: str
    install_date: str
    last_updated: str
    modules: list[ModuleRecord] = field(default_factory=list)
    targets: list[str] = field(default_factory=list)

    @property
    def module_ids(self) -> list[str]:
        return [m.id for m in self.modules]

    def module(self, module_id: str) -> ModuleRecord | None:
        for record in self.modules:
            if record.id == module_id:
                return record
        return None
