"""Install orchestrator — the central coordinator for one install.

The orchestrator wires together the ForbiddenListGuard, DependencyResolver,
ArtifactAcquirer, BuildExecutor and StoreManager, and drives them through
the ``InstallMachine``:

    FORBID_CHECK -> RESOLVE -> [CONFIRM] -> (ACQUIRE -> [BUILD] -> STAGE)* -> DONE

Any ``InstallError`` moves the machine to FAILED and propagates with the
``InstallResult`` attached as ``.result``.  Entries committed before the
failure stay in the store.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from cellarforge.config import InstallConfig
from cellarforge.core.acquirer import AcquisitionBatch, ArtifactAcquirer, GitCheckout
from cellarforge.core.build_executor import BuildExecutor, DebugSymbolExtractor
from cellarforge.core.descriptor_loader import DescriptorLoader, DescriptorLookup
from cellarforge.core.download_cache import DownloadCache
from cellarforge.core.fetchers import Fetcher
from cellarforge.core.forbidden_guard import enforce_not_forbidden
from cellarforge.core.resolver import DependencyResolver
from cellarforge.core.runners import CommandRunner, SubprocessRunner
from cellarforge.core.state_machine import InstallMachine
from cellarforge.core.store import StoreManager
from cellarforge.errors import InstallDeclinedError, InstallError
from cellarforge.models.plan import ArtifactKind, InstallPlan, InstallStep
from cellarforge.models.states import (
    InstallRequest,
    InstallResult,
    InstallState,
    StepOutcome,
    StepResult,
)
from cellarforge.models.store import StoreEntry

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[InstallPlan], bool]


class InstallOrchestrator:
    """Runs install requests end to end.

    Parameters
    ----------
    config:
        The active ``InstallConfig``.
    lookup:
        Descriptor source; defaults to a ``DescriptorLoader`` over
        ``config.formula_path``.
    fetcher:
        Download backend for the cache.
    runner:
        Command backend shared by builds, checkouts and debug symbols.
    debug_extractor:
        Debug-symbol backend.
    confirm:
        Asked with the plan when the request is interactive.  Without one,
        interactive requests are declined.
    """

    def __init__(
        self,
        config: InstallConfig,
        lookup: DescriptorLookup | None = None,
        *,
        fetcher: Fetcher | None = None,
        runner: CommandRunner | None = None,
        debug_extractor: DebugSymbolExtractor | None = None,
        confirm: ConfirmCallback | None = None,
    ) -> None:
        self.config = config
        self.lookup = lookup or DescriptorLoader(config.formula_path)
        runner = runner or SubprocessRunner()

        self.resolver = DependencyResolver(self.lookup, config)
        self.cache = DownloadCache(config, fetcher)
        self.acquirer = ArtifactAcquirer(config, self.cache, GitCheckout(config, runner))
        self.builder = BuildExecutor(config, runner, debug_extractor)
        self.store = StoreManager(config)
        self._confirm = confirm

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def install(self, request: InstallRequest) -> InstallResult:
        """Install ``request.name`` and its dependencies.

        Returns the ``InstallResult`` on success.  Raises the originating
        ``InstallError`` (with ``.result`` set) on failure.
        """
        machine = InstallMachine(request.name)
        results: list[StepResult] = []
        try:
            self._run(request, machine, results)
        except InstallError as exc:
            machine.fail(str(exc))
            exc.result = self._result(request, machine, results, exc)
            raise
        except BaseException as exc:
            machine.fail(repr(exc))
            raise
        return self._result(request, machine, results)

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def _run(
        self, request: InstallRequest, machine: InstallMachine, results: list[StepResult]
    ) -> None:
        enforce_not_forbidden([request.name], self.config)

        machine.transition(InstallState.RESOLVE)
        target = self.resolver.lookup_target(request.name)
        plan = self.resolver.resolve(target, request)
        enforce_not_forbidden(plan.names, self.config)

        installed = self._find_installed(plan)
        remaining = [s for s in plan.steps if s.name not in installed]
        if not remaining:
            for step in plan.steps:
                results.append(self._already(step.name, installed[step.name]))
            logger.warning("%s is already installed", request.name)
            machine.transition(InstallState.DONE, detail="already installed")
            return

        if request.interactive:
            machine.transition(InstallState.CONFIRM)
            if self._confirm is None or not self._confirm(plan):
                raise InstallDeclinedError(f"Installation of {request.name} was declined.")

        with self.acquirer.acquire_all(remaining) as batch:
            try:
                for step in plan.steps:
                    existing = installed.get(step.name)
                    machine.transition(
                        InstallState.ACQUIRE,
                        package=step.name,
                        detail="already installed" if existing else step.kind.value,
                    )
                    if existing is not None:
                        results.append(self._already(step.name, existing))
                        continue
                    results.append(self._install_step(step, request, batch, machine))
            except BaseException:
                batch.cancel_pending()
                raise

        machine.transition(InstallState.DONE)
        logger.info("Installed %s", request.name)

    def _find_installed(self, plan: InstallPlan) -> dict[str, StoreEntry]:
        installed: dict[str, StoreEntry] = {}
        for step in plan.steps:
            # Head installs are only identifiable once the revision is known.
            if step.version_id is None:
                continue
            entry = self.store.find_installed(step.name, step.version_id)
            if entry is not None:
                logger.info("%s %s is already installed", step.name, step.version_id)
                installed[step.name] = entry
        return installed

    def _install_step(
        self,
        step: InstallStep,
        request: InstallRequest,
        batch: AcquisitionBatch,
        machine: InstallMachine,
    ) -> StepResult:
        artifact = batch.result(step.name)
        try:
            version_id = artifact.version_id
            if step.kind == ArtifactKind.HEAD:
                existing = self.store.find_installed(step.name, version_id)
                if existing is not None:
                    logger.info("%s %s is already installed", step.name, version_id)
                    return self._already(step.name, existing)

            debug_symbols = request.debug_symbols and step.is_target
            logger.info("Installing %s %s (%s)", step.name, version_id, step.kind.value)
            staging = self.store.new_staging_dir(step.name)
            try:
                if step.kind == ArtifactKind.PREBUILT:
                    machine.transition(InstallState.STAGE, package=step.name, detail="pour")
                    self.builder.extract_prebuilt(step, artifact, staging)
                else:
                    machine.transition(InstallState.BUILD, package=step.name)
                    self.builder.build(step, artifact, staging, debug_symbols=debug_symbols)
                    machine.transition(InstallState.STAGE, package=step.name)
                entry = self.store.commit(
                    staging,
                    step,
                    version_id,
                    revision=artifact.revision,
                    debug_symbols=debug_symbols,
                )
            except BaseException:
                self.store.discard(staging)
                raise
        finally:
            self.acquirer.release(artifact)

        if entry.already_installed:
            return self._already(step.name, entry)
        entry = self.store.link(entry, step.descriptor)
        return StepResult(name=step.name, outcome=StepOutcome.INSTALLED, entry=entry)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _already(name: str, entry: StoreEntry) -> StepResult:
        return StepResult(name=name, outcome=StepOutcome.ALREADY_INSTALLED, entry=entry)

    @staticmethod
    def _result(
        request: InstallRequest,
        machine: InstallMachine,
        results: list[StepResult],
        error: InstallError | None = None,
    ) -> InstallResult:
        return InstallResult(
            target=request.name,
            state=machine.state,
            steps=list(results),
            transitions=machine.history,
            error_kind=error.kind if error else "",
            error_message=str(error) if error else "",
        )
