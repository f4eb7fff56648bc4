"""Pre-flight — decisions a caller must make before a run can start.

A custom module whose source path no longer resolves, and which has no
usable cached copy, cannot be reinstalled. Rather than asking mid-run,
``preflight`` lists these modules up front and the caller answers with a
``DecisionRecord``. The reconciler itself never prompts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from modsync.cache.module_cache import ModuleCache
from modsync.models.installation import Origin
from modsync.sources.provider import ModuleSourceProvider
from modsync.state.detector import InstallationState

logger = logging.getLogger(__name__)


class DecisionAction(str, Enum):
    KEEP = "keep"  # Leave the installed files as they are
    RELOCATE = "relocate"  # Install from a new source path
    REMOVE = "remove"  # Uninstall the module's tool-owned files


@dataclass
class Decision:
    action: DecisionAction
    new_path: str | None = None

    def __post_init__(self):
        self.action = DecisionAction(self.action)
        if self.action is DecisionAction.RELOCATE and not self.new_path:
            raise ValueError("A relocate decision needs a new_path")


@dataclass
class DecisionRecord:
    """Caller answers, keyed by module id."""

    decisions: dict[str, Decision] = field(default_factory=dict)

    def get(self, module_id: str) -> Decision | None:
        return self.decisions.get(module_id)

    def set(self, module_id: str, action: DecisionAction | str, new_path: str | None = None) -> None:
        self.decisions[module_id] = Decision(action=action, new_path=new_path)


@dataclass
class AmbiguousModule:
    module_id: str
    source_path: str
    reason: str


@dataclass
class PreflightReport:
    ambiguous: list[AmbiguousModule] = field(default_factory=list)
    from_cache: list[str] = field(default_factory=list)

    @property
    def needs_decisions(self) -> bool:
        return bool(self.ambiguous)

    def undecided(self, decisions: DecisionRecord | None) -> PreflightReport:
        """The part of this report that ``decisions`` leaves unanswered."""
        decisions = decisions or DecisionRecord()
        return PreflightReport(
            ambiguous=[m for m in self.ambiguous if decisions.get(m.module_id) is None],
            from_cache=list(self.from_cache),
        )


def preflight(
    state: InstallationState,
    provider: ModuleSourceProvider,
    cache: ModuleCache,
) -> PreflightReport:
    """List installed custom modules that cannot be reinstalled from their source."""
    report = PreflightReport()
    for record in state.modules:
        if record.origin is not Origin.CUSTOM:
            continue
        if provider.locate(record.id) is not None:
            continue
        if record.source_path and Path(record.source_path).is_dir():
            continue
        if cache.get(record.id) is not None:
            logger.info("Source of custom module %s is missing; using its cached copy", record.id)
            report.from_cache.append(record.id)
            continue
        report.ambiguous.append(
            AmbiguousModule(
                module_id=record.id,
                source_path=record.source_path,
                reason="source path missing and no cached copy",
            )
        )
    return report
