"""Dependency resolver — orders a target and its transitive dependencies.

The resolver produces an ``InstallPlan`` in which every dependency precedes
its dependents.  Traversal is depth-first, post-order, following the
declared dependency order, so plans are deterministic.  Each package is
visited once, however many paths reach it.

Failures (cycles, unknown names, impossible head requests) raise
``ResolutionError`` and have no side effects.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from cellarforge.config import InstallConfig
from cellarforge.core.acquirer import select_artifact_kind
from cellarforge.core.descriptor_loader import DescriptorLookup
from cellarforge.errors import ResolutionError
from cellarforge.models.descriptor import PackageDescriptor
from cellarforge.models.plan import InstallPlan, InstallStep
from cellarforge.models.states import InstallRequest

logger = logging.getLogger(__name__)


class DependencyResolver:
    """Builds install plans from a descriptor lookup.

    Parameters
    ----------
    lookup:
        Maps package names to descriptors.
    config:
        The active ``InstallConfig`` (platform tag for artifact selection).
    """

    def __init__(self, lookup: DescriptorLookup, config: InstallConfig) -> None:
        self._lookup = lookup
        self._config = config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def lookup_target(self, name: str) -> PackageDescriptor:
        """Return the target's descriptor or raise a missing-dependency error."""
        descriptor = self._lookup.get(name)
        if descriptor is None:
            raise ResolutionError(
                f"No available package with the name {name!r}.",
                reason=ResolutionError.MISSING,
                chain=[name],
            )
        return descriptor

    def resolve(self, target: PackageDescriptor, request: InstallRequest) -> InstallPlan:
        """Produce the ordered plan for ``target``.

        With ``request.ignore_dependencies`` the plan is the target alone.
        """
        requested: dict[str, set[str]] = {target.name: set(request.options)}
        if request.ignore_dependencies:
            order = [target]
        else:
            order = self._topological_order(target, requested)

        steps: list[InstallStep] = []
        for descriptor in order:
            is_target = descriptor.name == target.name
            options = self._effective_options(descriptor, requested.get(descriptor.name, ()))
            kind = select_artifact_kind(
                descriptor,
                request,
                is_target=is_target,
                options=options,
                platform_tag=self._config.platform_tag,
            )
            steps.append(
                InstallStep(
                    descriptor=descriptor,
                    kind=kind,
                    options=options,
                    is_target=is_target,
                )
            )

        plan = InstallPlan(target=target.name, steps=steps)
        logger.info("Resolved %s: %s", target.name, " -> ".join(plan.names))
        return plan

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    def _topological_order(
        self, target: PackageDescriptor, requested: dict[str, set[str]]
    ) -> list[PackageDescriptor]:
        order: list[PackageDescriptor] = []
        visited: set[str] = set()
        in_progress: list[str] = []

        def visit(descriptor: PackageDescriptor) -> None:
            in_progress.append(descriptor.name)
            for dep in descriptor.dependencies:
                requested.setdefault(dep.name, set()).update(dep.options)
                if dep.name in in_progress:
                    chain = in_progress[in_progress.index(dep.name):] + [dep.name]
                    raise ResolutionError(
                        f"Cyclic dependency detected: {' -> '.join(chain)}",
                        reason=ResolutionError.CYCLIC,
                        chain=chain,
                    )
                if dep.name in visited:
                    continue
                child = self._lookup.get(dep.name)
                if child is None:
                    chain = [*in_progress, dep.name]
                    raise ResolutionError(
                        f"{descriptor.name} depends on {dep.name}, "
                        f"which is not available ({' -> '.join(chain)})",
                        reason=ResolutionError.MISSING,
                        chain=chain,
                    )
                visit(child)
            in_progress.pop()
            visited.add(descriptor.name)
            order.append(descriptor)

        visit(target)
        return order

    @staticmethod
    def _effective_options(
        descriptor: PackageDescriptor, requested: Iterable[str]
    ) -> frozenset[str]:
        options: set[str] = set()
        for option in requested:
            if descriptor.recognizes(option):
                options.add(option)
            else:
                logger.warning(
                    "%s: this package does not recognize the option %s; ignoring it",
                    descriptor.name, option,
                )
        return frozenset(options)
