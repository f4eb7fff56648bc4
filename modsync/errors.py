"""Exception types shared across modsync.

Fatal conditions derive from ``ModsyncError``. Conditions that need a
caller decision before a run can continue derive from ``ReconcileHalted``
instead: they are not failures, the run simply cannot proceed on its own.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from modsync.state.detector import InstallationState
    from modsync.sync.preflight import PreflightReport


class ModsyncError(Exception):
    """Base class for all modsync failures."""


class ConfigError(ModsyncError):
    """Raised when installer configuration is invalid."""


class NamingError(ModsyncError):
    """Raised when an artifact identity cannot be flattened or parsed."""


class HashError(ModsyncError):
    """Raised when a file or directory cannot be read for hashing."""


class SourceError(ModsyncError):
    """Raised when a required module source cannot be located or read."""


class ResolutionError(ModsyncError):
    """Raised when the requested module set cannot be resolved."""


class WriteError(ModsyncError):
    """Raised when writing into the install root fails."""


class ManifestError(ModsyncError):
    """Raised when the manifest cannot be parsed or migrated."""


class ReconcileError(ModsyncError):
    """A reconciliation run failed.

    ``phase`` is the phase that was executing; ``result`` is the partial
    run result, including the backup locations left behind for a retry.
    """

    def __init__(self, message: str, phase, result=None):
        super().__init__(message)
        self.phase = phase
        self.result = result


class ReconcileHalted(Exception):
    """A run stopped before any write because a caller decision is needed."""


class UpdateConfirmationRequired(ReconcileHalted):
    """An existing installation was found and the caller did not confirm an update."""

    def __init__(self, state: InstallationState):
        super().__init__(
            f"Existing installation found at {state.root} "
            f"(version {state.version or 'unknown'}); confirm the update to continue"
        )
        self.state = state


class DecisionRequired(ReconcileHalted):
    """Custom modules have missing sources and no keep/relocate/remove decision."""

    def __init__(self, report: PreflightReport):
        ids = ", ".join(m.module_id for m in report.ambiguous)
        super().__init__(f"Decision required for modules with missing sources: {ids}")
        self.report = report
