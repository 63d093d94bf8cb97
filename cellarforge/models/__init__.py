"""Cellarforge data models — all Pydantic v2, all frozen (immutable)."""

from cellarforge.models.descriptor import (
    ALL_PLATFORMS,
    HEAD_VERSION,
    ArtifactLocation,
    BuildCommand,
    BuildProcedure,
    DependencyRef,
    HeadLocation,
    OptionSpec,
    PackageDescriptor,
)
from cellarforge.models.plan import ArtifactKind, InstallPlan, InstallStep
from cellarforge.models.states import (
    VALID_TRANSITIONS,
    InstallRequest,
    InstallResult,
    InstallState,
    StateTransition,
    StepOutcome,
    StepResult,
)
from cellarforge.models.store import (
    RECEIPT_FILENAME,
    AcquiredArtifact,
    CacheEntry,
    InstallReceipt,
    StoreEntry,
)

__all__ = [
    # descriptor
    "ALL_PLATFORMS",
    "HEAD_VERSION",
    "ArtifactLocation",
    "BuildCommand",
    "BuildProcedure",
    "DependencyRef",
    "HeadLocation",
    "OptionSpec",
    "PackageDescriptor",
    # plan
    "ArtifactKind",
    "InstallPlan",
    "InstallStep",
    # states
    "VALID_TRANSITIONS",
    "InstallRequest",
    "InstallResult",
    "InstallState",
    "StateTransition",
    "StepOutcome",
    "StepResult",
    # store
    "RECEIPT_FILENAME",
    "AcquiredArtifact",
    "CacheEntry",
    "InstallReceipt",
    "StoreEntry",
]
