"""Path/naming utility — flat names for artifact identities, and back.

An artifact identity is ``(module, kind, name)`` where ``name`` may be a
nested path such as ``research/market``. The flat form is a single
filename::

    modsync-<module>-<name with "/" as "__">.<kind>.md

A ``-`` inside a module id is written doubled (``my-mod`` becomes
``my--mod``), so the first single ``-`` after the prefix ends the module.
Name segments cannot contain ``__`` or start with ``-``, so every flat
name parses back to exactly one identity.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from modsync.errors import NamingError
from modsync.models.installation import ArtifactKind

DEFAULT_PREFIX = "modsync"
NEST_SEPARATOR = "__"
ARTIFACT_SUFFIXES = (".md", ".xml")

MODULE_ID_PATTERN = r"[A-Za-z0-9_]+(?:-[A-Za-z0-9_]+)*"

_MODULE_ID_RE = re.compile(rf"^{MODULE_ID_PATTERN}$")


@dataclass(frozen=True)
class ArtifactId:
    module: str
    kind: ArtifactKind
    name: str

    @property
    def key(self) -> str:
        return f"{self.module}:{self.name}"


def validate_module_id(module_id: str) -> str:
    """Return ``module_id`` unchanged, or raise NamingError if it is unusable."""
    if not module_id or not _MODULE_ID_RE.match(module_id):
        raise NamingError(
            f"Invalid module id {module_id!r}: use letters, digits, underscores and single inner hyphens"
        )
    return module_id


def to_flat_name(module: str, kind: ArtifactKind, name: str, prefix: str = DEFAULT_PREFIX) -> str:
    """Flatten an artifact identity into one filename."""
    validate_module_id(module)
    segments = PurePosixPath(name).parts
    if not segments or any(s in ("", ".", "..") for s in segments):
        raise NamingError(f"Invalid artifact name {name!r}")
    for segment in segments:
        if NEST_SEPARATOR in segment:
            raise NamingError(
                f"Artifact name segment {segment!r} must not contain {NEST_SEPARATOR!r}"
            )
        if segment.startswith("-"):
            raise NamingError(f"Artifact name segment {segment!r} must not start with '-'")
    return f"{prefix}-{module.replace('-', '--')}-{NEST_SEPARATOR.join(segments)}.{kind.value}.md"


def parse_flat_name(flat_name: str, prefix: str = DEFAULT_PREFIX) -> ArtifactId:
    """Parse a flat filename back into its artifact identity.

    Raises:
        NamingError: If the name was not produced by ``to_flat_name``.
    """
    head = f"{prefix}-"
    if not flat_name.startswith(head):
        raise NamingError(f"{flat_name!r} does not start with {head!r}")

    for kind in ArtifactKind:
        suffix = f".{kind.value}.md"
        if flat_name.endswith(suffix):
            body = flat_name[len(head):-len(suffix)]
            break
    else:
        raise NamingError(f"{flat_name!r} has no artifact kind suffix")

    module, encoded = _split_module(body)
    if not module or not encoded:
        raise NamingError(f"{flat_name!r} is missing a module or artifact name")
    validate_module_id(module)
    segments = encoded.split(NEST_SEPARATOR)
    if any(not s or s.startswith("-") for s in segments):
        raise NamingError(f"{flat_name!r} has an empty or malformed name segment")
    return ArtifactId(module=module, kind=kind, name="/".join(segments))


def artifact_id_for_path(rel_path: str) -> ArtifactId | None:
    """Identify the artifact at an install-root-relative path, if it is one.

    ``bmm/agents/pm.md`` is the agent ``pm`` of module ``bmm``. Workflows
    are named by their directory, so ``bmm/workflows/plan/prd/workflow.yaml``
    is the workflow ``plan/prd``.
    """
    parts = PurePosixPath(rel_path).parts
    if len(parts) < 3:
        return None
    kind = ArtifactKind.from_directory(parts[1])
    if kind is None or not _MODULE_ID_RE.match(parts[0]):
        return None

    rest = parts[2:]
    if kind is ArtifactKind.WORKFLOW:
        if len(rest) < 2 or PurePosixPath(rest[-1]).stem != "workflow":
            return None
        name = "/".join(rest[:-1])
    else:
        if PurePosixPath(rest[-1]).suffix not in ARTIFACT_SUFFIXES:
            return None
        name = str(PurePosixPath(*rest).with_suffix(""))
    return ArtifactId(module=parts[0], kind=kind, name=name)


def installed_path_for(artifact: ArtifactId, suffix: str = ".md") -> str:
    """Install-root-relative path of an artifact's main file."""
    if artifact.kind is ArtifactKind.WORKFLOW:
        return f"{artifact.module}/workflows/{artifact.name}/workflow{suffix}"
    return f"{artifact.module}/{artifact.kind.directory}/{artifact.name}{suffix}"


def file_type(rel_path: str) -> str:
    """Inventory type of a file: its artifact kind, else its bare extension."""
    artifact = artifact_id_for_path(rel_path)
    if artifact is not None:
        return artifact.kind.value
    return PurePosixPath(rel_path).suffix.lstrip(".").lower()


def _split_module(body: str) -> tuple[str, str]:
    """Split ``<module>-<name>`` at the first ``-`` that is not doubled."""
    i = 0
    while i < len(body):
        if body.startswith("--", i):
            i += 2
        elif body[i] == "-":
            return body[:i].replace("--", "-"), body[i + 1:]
        else:
            i += 1
    return body.replace("--", "-"), ""
