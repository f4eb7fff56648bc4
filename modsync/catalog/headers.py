"""Artifact header parsing with a typed result.

Recognised header forms:

- YAML frontmatter between ``---`` lines at the top of a Markdown file
- a whole-document YAML mapping (``workflow.yaml``)
- an inline ``<agent name="..." title="..." icon="...">`` block, with an
  optional ``<role>`` element, for agents
- ``<task ...>`` / ``<tool ...>`` attributes with an ``<objective>``
  fallback for the description, for XML tasks and tools

Parsing distinguishes a file with no header (ABSENT) from one whose
header is present but broken (MALFORMED).
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import yaml

from modsync.models.installation import ArtifactKind

# Only the top of a file is searched for a header
HEAD_BYTES = 16 * 1024

_AGENT_RE = re.compile(r"<agent\b([^>]*)>", re.IGNORECASE)
_ROLE_RE = re.compile(r"<role>(.*?)</role>", re.IGNORECASE | re.DOTALL)
_OBJECTIVE_RE = re.compile(r"<objective>(.*?)</objective>", re.IGNORECASE | re.DOTALL)
_ATTR_RE = re.compile(r'([A-Za-z_][\w-]*)\s*=\s*"([^"]*)"')


class HeaderStatus(str, Enum):
    FOUND = "found"
    ABSENT = "absent"
    MALFORMED = "malformed"


@dataclass
class HeaderResult:
    status: HeaderStatus
    fields: dict[str, str] = field(default_factory=dict)
    error: str = ""

    @property
    def found(self) -> bool:
        return self.status is HeaderStatus.FOUND

    def get(self, key: str, default: str = "") -> str:
        return self.fields.get(key, default)


ABSENT = HeaderResult(HeaderStatus.ABSENT)


def _malformed(error: str) -> HeaderResult:
    return HeaderResult(HeaderStatus.MALFORMED, error=error)


def parse_frontmatter(text: str) -> HeaderResult:
    """Parse a YAML frontmatter block."""
    if not text.startswith("---"):
        return ABSENT
    first_nl = text.find("\n")
    if first_nl == -1 or text[3:first_nl].strip():
        return ABSENT
    end = text.find("\n---", first_nl)
    if end == -1:
        return _malformed("frontmatter is not closed")
    return _mapping_result(text[first_nl + 1:end], "frontmatter")


def parse_yaml_document(text: str) -> HeaderResult:
    """Parse a whole YAML document as the header."""
    if not text.strip():
        return ABSENT
    return _mapping_result(text, "document")


def parse_agent_block(text: str) -> HeaderResult:
    """Parse the inline ``<agent>`` block of a compiled agent file."""
    match = _AGENT_RE.search(text)
    if not match:
        return ABSENT
    attrs = _attributes(match.group(1))
    if not attrs.get("name"):
        return _malformed("<agent> block has no name attribute")
    role = _ROLE_RE.search(text, match.end())
    if role:
        attrs["role"] = _collapse(role.group(1))
    return HeaderResult(HeaderStatus.FOUND, attrs)


def parse_xml_artifact(text: str, tag: str) -> HeaderResult:
    """Parse ``<task ...>`` or ``<tool ...>`` attributes."""
    match = re.search(rf"<{tag}\b([^>]*)>", text, re.IGNORECASE)
    if not match:
        return ABSENT
    attrs = _attributes(match.group(1))
    if not attrs.get("name"):
        return _malformed(f"<{tag}> element has no name attribute")
    if not attrs.get("description"):
        objective = _OBJECTIVE_RE.search(text, match.end())
        if objective:
            attrs["description"] = _collapse(objective.group(1))
    return HeaderResult(HeaderStatus.FOUND, attrs)


def read_header(path: str | Path, kind: ArtifactKind) -> HeaderResult:
    """Read the header of an installed artifact file."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            text = f.read(HEAD_BYTES)
    except OSError as e:
        return _malformed(f"cannot read {path}: {e}")

    if path.suffix in (".yaml", ".yml"):
        return parse_yaml_document(text)

    if kind is ArtifactKind.AGENT:
        result = parse_agent_block(text)
        if result.status is not HeaderStatus.ABSENT:
            front = parse_frontmatter(text)
            if front.found and result.found:
                result.fields.setdefault("description", front.get("description"))
            return result
        return parse_frontmatter(text)

    if kind in (ArtifactKind.TASK, ArtifactKind.TOOL):
        result = parse_frontmatter(text)
        if result.status is HeaderStatus.ABSENT:
            return parse_xml_artifact(text, kind.value)
        return result

    return parse_frontmatter(text)


def _mapping_result(body: str, what: str) -> HeaderResult:
    try:
        data = yaml.safe_load(body)
    except yaml.YAMLError as e:
        return _malformed(f"{what} is not valid YAML: {e}")
    if data is None:
        return ABSENT
    if not isinstance(data, dict):
        return _malformed(f"{what} is not a mapping")
    return HeaderResult(
        HeaderStatus.FOUND,
        {str(k): _scalar(v) for k, v in data.items() if _is_scalar(v)},
    )


def _attributes(raw: str) -> dict[str, str]:
    return {k: html.unescape(v) for k, v in _ATTR_RE.findall(raw)}


def _collapse(text: str) -> str:
    return " ".join(text.split())


def _is_scalar(value) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def _scalar(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value).strip()
