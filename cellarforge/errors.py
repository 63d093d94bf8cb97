"""Install error taxonomy.

Every failure kind has a stable ``kind`` string and a distinct exit status
so automation can tell a policy violation (forbidden) apart from a
transient download failure or a broken build.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from cellarforge.models.states import InstallResult


class InstallError(RuntimeError):
    """Base class for fatal install errors."""

    kind: str = "install"
    exit_code: int = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)
        # Set by the orchestrator once the run has entered FAILED.
        self.result: InstallResult | None = None


class ForbiddenFormulaError(InstallError):
    """A requested package (or one of its dependencies) is on the denylist."""

    kind = "forbidden"
    exit_code = 3

    def __init__(self, name: str, source: str = "CELLARFORGE_FORBIDDEN_PACKAGES") -> None:
        super().__init__(
            f"{name} was forbidden for installation by the {source} environment variable."
        )
        self.name = name


class ResolutionError(InstallError):
    """The dependency graph cannot be turned into an install plan."""

    kind = "resolution"
    exit_code = 4

    CYCLIC = "cyclic-dependency"
    MISSING = "missing-dependency"
    MISSING_HEAD = "missing-head"
    NO_ARTIFACT = "no-artifact"

    def __init__(self, message: str, *, reason: str, chain: list[str] | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.chain = chain or []


class DownloadError(InstallError):
    """Network failure, checksum mismatch, or failed checkout."""

    kind = "download"
    exit_code = 5


class BuildFailedError(InstallError):
    """The build procedure exited non-zero or raised."""

    kind = "build"
    exit_code = 6

    def __init__(self, message: str, *, command: list[str] | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.command = command or []
        self.stderr = stderr


class StagingError(InstallError):
    """Committing a staged tree into the store (or linking it) failed."""

    kind = "staging"
    exit_code = 7


class LinkConflictError(StagingError):
    """A file in the shared prefix is not ours to replace."""

    def __init__(self, name: str, conflicts: list[Any]) -> None:
        listing = "\n".join(f"  {c}" for c in conflicts)
        super().__init__(
            f"Could not link {name}: the following files already exist in the prefix\n{listing}"
        )
        self.conflicts = conflicts


class InstallDeclinedError(InstallError):
    """The user declined the interactive confirmation."""

    kind = "declined"
    exit_code = 1


class DescriptorError(InstallError):
    """A descriptor file exists but could not be parsed or validated."""

    kind = "descriptor"
    exit_code = 8


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""
