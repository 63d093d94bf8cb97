"""Cache and store models (content-addressed downloads, installed entries)."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from cellarforge.models.plan import ArtifactKind

RECEIPT_FILENAME = "INSTALL_RECEIPT.json"


class CacheEntry(BaseModel):
    """A verified download living under the cache root.

    Keyed by (url, sha256).  Persists across invocations and is reused
    whenever the file on disk still hashes to ``sha256``.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    sha256: str
    path: Path
    namespace: str  # "Sources" or "Bottles"
    package: str


class AcquiredArtifact(BaseModel):
    """What the acquirer hands to the build/extract stage for one step."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: ArtifactKind
    path: Path  # archive file, or checkout directory for head installs
    version_id: str
    revision: str = ""  # head installs only
    cache_hit: bool = False


class StoreEntry(BaseModel):
    """An installed unit at ``<store-root>/<name>/<version-id>``."""

    model_config = ConfigDict(frozen=True)

    name: str
    version_id: str
    path: Path
    linked: bool = False
    already_installed: bool = False


class InstallReceipt(BaseModel):
    """Written into every committed entry; its presence marks completeness."""

    model_config = ConfigDict(frozen=True)

    name: str
    version_id: str
    kind: ArtifactKind
    options: list[str] = []
    revision: str = ""
    restricted_linking: bool = False
    debug_symbols: bool = False
    tool_version: str = ""
    installed_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
