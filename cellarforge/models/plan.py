"""Install plan models — a topologically ordered list of install steps."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from cellarforge.models.descriptor import PackageDescriptor


class ArtifactKind(str, Enum):
    """How a step obtains the files it installs."""

    PREBUILT = "prebuilt"
    SOURCE = "source"
    HEAD = "head"


class InstallStep(BaseModel):
    """Binds a descriptor to an artifact kind and effective build options."""

    model_config = ConfigDict(frozen=True)

    descriptor: PackageDescriptor
    kind: ArtifactKind
    options: frozenset[str] = frozenset()
    is_target: bool = False

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def version_id(self) -> str | None:
        """Store version-id, or None for head steps (known only after checkout)."""
        if self.kind == ArtifactKind.HEAD:
            return None
        return self.descriptor.version


class InstallPlan(BaseModel):
    """Ordered steps; every dependency precedes its dependents."""

    model_config = ConfigDict(frozen=True)

    target: str
    steps: list[InstallStep]

    @property
    def names(self) -> list[str]:
        return [s.name for s in self.steps]

    def __len__(self) -> int:
        return len(self.steps)
