"""Install configuration — env-driven, collected once at the boundary.

Centralized config using pydantic-settings. Reads from a .env file and
CELLARFORGE_* environment variables.  Components never read the
environment themselves; they receive the frozen ``InstallConfig``.
"""

from __future__ import annotations

import os
import platform
import re
import sys
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_platform_tag() -> str:
    system = "macos" if sys.platform == "darwin" else sys.platform.rstrip("0123456789")
    machine = platform.machine().lower() or "unknown"
    return f"{system}_{machine}"


def _debug_symbols_supported() -> bool:
    # dSYM bundles only exist on macOS.
    return sys.platform == "darwin"


class InstallConfig(BaseSettings):
    """Install configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export CELLARFORGE_FORBIDDEN_PACKAGES="foo bar"
        export CELLARFORGE_DOWNLOAD_CONCURRENCY=1
        export CELLARFORGE_STORE_ROOT=/opt/cellar
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="CELLARFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        validate_default=True,
    )

    # Storage paths
    store_root: Path = Path(".cellarforge/Cellar")
    prefix: Path = Path(".cellarforge/prefix")
    cache_root: Path = Path(".cellarforge/cache")
    tmp_root: Path | None = None
    formula_path: Path = Path(".cellarforge/formulae")

    # Policy
    forbidden_packages: str = ""

    # Acquisition
    download_concurrency: int = Field(default=4, ge=1)
    lock_timeout_seconds: float = 600.0

    # Platform facts, computed once here rather than inside components
    platform_tag: str = Field(default_factory=_default_platform_tag)
    debug_symbols_supported: bool = Field(default_factory=_debug_symbols_supported)

    # PATH handed to build commands; the rest of the environment is scrubbed
    build_path: str = Field(default_factory=lambda: os.environ.get("PATH", os.defpath))

    log_level: str = "INFO"

    @field_validator("store_root", "prefix", "cache_root", "tmp_root", "formula_path")
    @classmethod
    def _absolute(cls, value: Path | None) -> Path | None:
        # Builds and checkouts run with their own cwd.
        if value is None:
            return None
        return value.expanduser().absolute()

    @property
    def forbidden_names(self) -> frozenset[str]:
        """The denylist as a set of package names."""
        return frozenset(n for n in re.split(r"[\s,]+", self.forbidden_packages) if n)

    @property
    def staging_root(self) -> Path:
        """Scratch area on the same filesystem as the store root."""
        return self.tmp_root if self.tmp_root is not None else self.store_root / ".tmp"

    @property
    def sources_cache(self) -> Path:
        return self.cache_root / "Sources"

    @property
    def bottles_cache(self) -> Path:
        return self.cache_root / "Bottles"

    @property
    def repos_cache(self) -> Path:
        return self.cache_root / "Repos"
