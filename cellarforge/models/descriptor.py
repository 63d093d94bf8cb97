"""Package descriptor models — the immutable record of one installable unit.

Descriptors are produced by a loader (see ``core.descriptor_loader``) from
declarative data.  Nothing in a descriptor is executable: build behaviour is
expressed as a ``BuildProcedure`` made of argv lists, not code.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

HEAD_VERSION = "HEAD"

# Platform tag matching every platform (architecture-independent artifacts).
ALL_PLATFORMS = "all"


class ArtifactLocation(BaseModel):
    """A downloadable archive and the SHA-256 it must hash to."""

    model_config = ConfigDict(frozen=True)

    url: str
    sha256: str

    @field_validator("sha256")
    @classmethod
    def _lowercase_hex(cls, value: str) -> str:
        value = value.strip().lower()
        if len(value) != 64 or any(c not in "0123456789abcdef" for c in value):
            raise ValueError(f"sha256 must be 64 hex characters, got {value!r}")
        return value


class HeadLocation(BaseModel):
    """Version-controlled repository used for head installs."""

    model_config = ConfigDict(frozen=True)

    url: str
    branch: str | None = None  # None: the remote's default branch


class DependencyRef(BaseModel):
    """An edge to another package, with the build options requested for it."""

    model_config = ConfigDict(frozen=True)

    name: str
    options: list[str] = []


class OptionSpec(BaseModel):
    """A build option the package recognizes, e.g. ``with-foo``."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""


class BuildCommand(BaseModel):
    """One command of a declarative build procedure.

    ``run`` is an argv list.  The placeholders ``{prefix}``, ``{source}``,
    ``{name}`` and ``{version}`` are substituted before execution.
    ``only_with`` / ``unless_with`` make the command conditional on a build
    option being enabled or not.
    """

    model_config = ConfigDict(frozen=True)

    run: list[str] = Field(min_length=1)
    only_with: str | None = None
    unless_with: str | None = None

    def applies_to(self, options: frozenset[str]) -> bool:
        """Return whether this command runs for the given option set."""
        if self.only_with is not None and self.only_with not in options:
            return False
        if self.unless_with is not None and self.unless_with in options:
            return False
        return True


class BuildProcedure(BaseModel):
    """Declarative build procedure: commands, then files copied into prefix."""

    model_config = ConfigDict(frozen=True)

    steps: list[BuildCommand] = []
    install: list[str] = []  # glob patterns relative to the source tree


class PackageDescriptor(BaseModel):
    """Immutable description of one installable package."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    description: str = ""
    dependencies: list[DependencyRef] = []
    options: list[OptionSpec] = []
    source: ArtifactLocation | None = None
    bottles: dict[str, ArtifactLocation] = {}
    head: HeadLocation | None = None
    build: BuildProcedure = BuildProcedure()
    restricted_linking: bool = False
    restricted_linking_reason: str = ""

    @field_validator("name")
    @classmethod
    def _safe_name(cls, value: str) -> str:
        if "/" in value or value.startswith(".") or value != value.strip():
            raise ValueError(f"invalid package name {value!r}")
        return value

    @field_validator("version")
    @classmethod
    def _safe_version(cls, value: str) -> str:
        # The version is a path component of the store entry.
        if "/" in value or "\\" in value or value.startswith(".") or ".." in value or value != value.strip():
            raise ValueError(f"invalid version {value!r}")
        return value

    @property
    def is_head_only(self) -> bool:
        return self.version == HEAD_VERSION

    @property
    def option_names(self) -> frozenset[str]:
        return frozenset(o.name for o in self.options)

    def recognizes(self, option: str) -> bool:
        """Return whether ``option`` is a build option of this package."""
        return option in self.option_names

    def bottle_for(self, platform_tag: str) -> ArtifactLocation | None:
        """Return the prebuilt artifact for a platform, if any."""
        return self.bottles.get(platform_tag) or self.bottles.get(ALL_PLATFORMS)
