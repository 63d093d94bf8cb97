"""Cellarforge: reproducible package installs into a versioned store.

The install path of a source/binary package manager:
  - Forbidden-package guard checked before any work
  - Deterministic dependency resolution with cycle detection
  - Checksum-verified, single-flight download cache (Sources / Bottles)
  - Head installs from version control, pinned to a revision
  - Declarative, sandboxed build procedures and prebuilt extraction
  - Atomic commit into <store>/<name>/<version-id> plus prefix linking
  - Explicit install state machine with a recorded transition history
"""

__version__ = "0.1.0"
__description__ = "Reproducible package installs into a versioned store"

from cellarforge.core.orchestrator import InstallOrchestrator
from cellarforge.cli.app import app as cli

__all__ = ["InstallOrchestrator", "cli", "__version__"]
