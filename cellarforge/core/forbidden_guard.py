"""Forbidden package guard — pre-flight denylist check.

The guard runs before anything touches the network or the filesystem.
It is the single enforcement point for the denylist: other code should
not re-check ``forbidden_names`` on its own.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from cellarforge.config import InstallConfig
from cellarforge.errors import ForbiddenFormulaError

logger = logging.getLogger(__name__)

FORBIDDEN_ENV_VAR = "CELLARFORGE_FORBIDDEN_PACKAGES"


def find_forbidden(names: Iterable[str], config: InstallConfig) -> list[str]:
    """Return the names from ``names`` that are on the denylist, in order."""
    denylist = config.forbidden_names
    return [n for n in names if n in denylist]


def enforce_not_forbidden(names: Iterable[str], config: InstallConfig) -> None:
    """Raise ``ForbiddenFormulaError`` for the first forbidden name.

    Parameters
    ----------
    names:
        Package names about to be installed (target first).
    config:
        The active ``InstallConfig``.
    """
    hits = find_forbidden(names, config)
    if hits:
        logger.error("Refusing to install forbidden package(s): %s", ", ".join(hits))
        raise ForbiddenFormulaError(hits[0], FORBIDDEN_ENV_VAR)
