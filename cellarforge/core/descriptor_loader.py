"""Descriptor loading — turns ``<name>.toml`` files into frozen descriptors.

The loader only parses data; it never evaluates code.  The install core
depends on the ``DescriptorLookup`` protocol, so any source of descriptors
(a directory of TOML files, an API, a test fixture) can be plugged in.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError

from cellarforge.errors import DescriptorError
from cellarforge.models.descriptor import PackageDescriptor

logger = logging.getLogger(__name__)


@runtime_checkable
class DescriptorLookup(Protocol):
    """Anything that can map a package name to its descriptor."""

    def get(self, name: str) -> PackageDescriptor | None:
        """Return the descriptor for ``name`` or ``None`` if unknown."""
        ...


class StaticLookup:
    """In-memory lookup over descriptors the caller already holds."""

    def __init__(self, descriptors: list[PackageDescriptor]) -> None:
        self._by_name = {d.name: d for d in descriptors}

    def get(self, name: str) -> PackageDescriptor | None:
        return self._by_name.get(name)


class DescriptorLoader:
    """Loads descriptors from ``<formula_path>/<name>.toml``.

    Parameters
    ----------
    formula_path:
        Directory holding one TOML file per package.
    """

    def __init__(self, formula_path: Path) -> None:
        self._root = Path(formula_path)
        self._cache: dict[str, PackageDescriptor | None] = {}

    def path_for(self, name: str) -> Path:
        return self._root / f"{name}.toml"

    def get(self, name: str) -> PackageDescriptor | None:
        if name not in self._cache:
            self._cache[name] = self._load(name)
        return self._cache[name]

    def _load(self, name: str) -> PackageDescriptor | None:
        path = self.path_for(name)
        if "/" in name or not path.is_file():
            return None
        try:
            with open(path, "rb") as fh:
                data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise DescriptorError(f"{path}: invalid TOML: {exc}") from exc

        data.setdefault("name", name)
        if data["name"] != name:
            raise DescriptorError(
                f"{path}: declares name {data['name']!r}, expected {name!r}"
            )
        try:
            descriptor = PackageDescriptor.model_validate(data)
        except ValidationError as exc:
            raise DescriptorError(f"{path}: {exc}") from exc
        logger.debug("Loaded descriptor %s %s from %s", name, descriptor.version, path)
        return descriptor
