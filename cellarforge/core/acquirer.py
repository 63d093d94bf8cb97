"""Artifact acquisition — choose, fetch and verify what each step installs.

Three concerns live here:

- ``select_artifact_kind`` is the policy deciding, at plan time, whether a
  step installs a prebuilt artifact, builds from source, or builds a head
  checkout.
- ``GitCheckout`` clones head repositories and pins their revision.
- ``ArtifactAcquirer`` turns a step into an ``AcquiredArtifact`` and runs
  many acquisitions on a bounded thread pool (``AcquisitionBatch``).
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from cellarforge.config import InstallConfig
from cellarforge.core.download_cache import BOTTLES, SOURCES, DownloadCache
from cellarforge.core.runners import CommandRunner, SubprocessRunner
from cellarforge.errors import DownloadError, ResolutionError
from cellarforge.models.descriptor import HEAD_VERSION, HeadLocation, PackageDescriptor
from cellarforge.models.plan import ArtifactKind, InstallStep
from cellarforge.models.states import InstallRequest
from cellarforge.models.store import AcquiredArtifact

logger = logging.getLogger(__name__)

_REVISION_RE = re.compile(r"^[0-9a-f]{7,64}$")


# ---------------------------------------------------------------------------
# Selection policy
# ---------------------------------------------------------------------------


def select_artifact_kind(
    descriptor: PackageDescriptor,
    request: InstallRequest,
    *,
    is_target: bool,
    options: frozenset[str],
    platform_tag: str,
) -> ArtifactKind:
    """Decide how a step obtains its files.

    Head, force-source and debug-symbol requests apply to the target only;
    dependencies with build options are built from source because a
    prebuilt artifact cannot honour them.

    Raises
    ------
    ResolutionError
        ``missing-head`` when a head install is requested for a package
        without a head location, ``no-artifact`` when nothing installable
        satisfies the request.
    """
    if is_target and request.force_head:
        if descriptor.head is None:
            raise ResolutionError(
                f"No head is defined for {descriptor.name}",
                reason=ResolutionError.MISSING_HEAD,
                chain=[descriptor.name],
            )
        return ArtifactKind.HEAD

    if descriptor.is_head_only:
        if descriptor.head is None:
            raise ResolutionError(
                f"{descriptor.name} is head-only but defines no head location",
                reason=ResolutionError.NO_ARTIFACT,
                chain=[descriptor.name],
            )
        return ArtifactKind.HEAD

    needs_source = bool(options) or (
        is_target and (request.force_source or request.debug_symbols)
    )
    bottle = descriptor.bottle_for(platform_tag)
    if bottle is not None and not needs_source:
        return ArtifactKind.PREBUILT
    if descriptor.source is not None:
        return ArtifactKind.SOURCE
    if descriptor.head is not None:
        logger.info("%s has no source archive; installing from its head", descriptor.name)
        return ArtifactKind.HEAD

    if bottle is not None:
        message = f"{descriptor.name} must be built from source but has no source archive"
    else:
        message = f"{descriptor.name} has no artifact for platform {platform_tag}"
    raise ResolutionError(message, reason=ResolutionError.NO_ARTIFACT, chain=[descriptor.name])


def head_version_id(revision: str) -> str:
    """Store version-id of a head install: ``HEAD-<short revision>``."""
    return f"{HEAD_VERSION}-{revision[:7].lower()}"


# ---------------------------------------------------------------------------
# Head checkouts
# ---------------------------------------------------------------------------


class GitCheckout:
    """Shallow-clones head repositories into the cache's Repos area."""

    def __init__(self, config: InstallConfig, runner: CommandRunner | None = None) -> None:
        self._root = Path(config.repos_cache).absolute()
        self._runner = runner or SubprocessRunner()

    def checkout(self, name: str, head: HeadLocation) -> tuple[Path, str]:
        """Clone ``head`` and return ``(checkout_dir, revision)``.

        The checkout directory is fresh for every call; callers remove it
        with ``ArtifactAcquirer.release`` once they are done with it.
        """
        self._root.mkdir(parents=True, exist_ok=True)
        workdir = Path(tempfile.mkdtemp(prefix=f"{name}--git-", dir=self._root))

        argv = ["git", "clone", "--depth", "1"]
        if head.branch:
            argv += ["--branch", head.branch]
        argv += [head.url, str(workdir)]

        logger.info("Cloning %s", head.url)
        result = self._runner.run(argv, cwd=self._root)
        if not result.ok:
            shutil.rmtree(workdir, ignore_errors=True)
            raise DownloadError(f"Failed to clone {head.url}: {result.stderr.strip()}")

        rev = self._runner.run(["git", "rev-parse", "HEAD"], cwd=workdir)
        revision = rev.stdout.strip().lower()
        if not rev.ok or not _REVISION_RE.match(revision):
            shutil.rmtree(workdir, ignore_errors=True)
            raise DownloadError(
                f"Could not determine the revision of {head.url}: {rev.stderr.strip()}"
            )
        logger.debug("%s is at %s", head.url, revision)
        return workdir, revision


# ---------------------------------------------------------------------------
# Acquirer
# ---------------------------------------------------------------------------


class ArtifactAcquirer:
    """Obtains the artifact of each install step.

    Parameters
    ----------
    config:
        The active ``InstallConfig``.
    cache:
        Download cache for prebuilt and source archives.
    git:
        Head checkout backend.
    """

    def __init__(
        self,
        config: InstallConfig,
        cache: DownloadCache | None = None,
        git: GitCheckout | None = None,
    ) -> None:
        self._config = config
        self.cache = cache or DownloadCache(config)
        self._git = git or GitCheckout(config)

    def acquire(self, step: InstallStep) -> AcquiredArtifact:
        """Fetch (or reuse) the artifact for one step."""
        descriptor = step.descriptor
        if step.kind == ArtifactKind.HEAD:
            if descriptor.head is None:
                raise DownloadError(f"{step.name} has no head location to check out")
            path, revision = self._git.checkout(step.name, descriptor.head)
            return AcquiredArtifact(
                name=step.name,
                kind=step.kind,
                path=path,
                version_id=head_version_id(revision),
                revision=revision,
            )

        if step.kind == ArtifactKind.PREBUILT:
            location = descriptor.bottle_for(self._config.platform_tag)
            namespace = BOTTLES
        else:
            location = descriptor.source
            namespace = SOURCES
        if location is None:
            raise DownloadError(f"{step.name} has no {step.kind.value} artifact to download")

        entry, hit = self.cache.fetch(
            location.url, location.sha256, namespace=namespace, package=step.name
        )
        return AcquiredArtifact(
            name=step.name,
            kind=step.kind,
            path=entry.path,
            version_id=descriptor.version,
            cache_hit=hit,
        )

    def acquire_all(self, steps: Iterable[InstallStep]) -> AcquisitionBatch:
        """Submit every step to a bounded pool, in order."""
        return AcquisitionBatch(self, list(steps), self._config.download_concurrency)

    def release(self, artifact: AcquiredArtifact) -> None:
        """Remove a head checkout once it has been built (or skipped)."""
        if artifact.kind == ArtifactKind.HEAD:
            shutil.rmtree(artifact.path, ignore_errors=True)


class AcquisitionBatch:
    """Acquisitions in flight for one install, keyed by package name.

    Steps are submitted in plan order; with a single worker they also run
    in plan order.  Use as a context manager: leaving the block cancels
    whatever has not started, waits for running work, and releases head
    checkouts nobody consumed.
    """

    def __init__(self, acquirer: ArtifactAcquirer, steps: list[InstallStep], max_workers: int) -> None:
        self._acquirer = acquirer
        self._pool = ThreadPoolExecutor(
            max_workers=max(1, max_workers), thread_name_prefix="cellarforge-fetch"
        )
        self._futures: dict[str, Future[AcquiredArtifact]] = {}
        self._consumed: set[str] = set()
        for step in steps:
            self._futures[step.name] = self._pool.submit(acquirer.acquire, step)
        logger.debug(
            "Submitted %d acquisition(s) with %d worker(s)", len(self._futures), max_workers
        )

    def __enter__(self) -> AcquisitionBatch:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __contains__(self, name: str) -> bool:
        return name in self._futures

    def result(self, name: str) -> AcquiredArtifact:
        """Block until ``name``'s acquisition finishes; re-raises its error."""
        self._consumed.add(name)
        return self._futures[name].result()

    def cancel_pending(self) -> int:
        """Cancel acquisitions that have not started yet."""
        cancelled = sum(1 for f in self._futures.values() if f.cancel())
        if cancelled:
            logger.info("Cancelled %d pending download(s)", cancelled)
        return cancelled

    def close(self) -> None:
        self.cancel_pending()
        self._pool.shutdown(wait=True, cancel_futures=True)
        for name, future in self._futures.items():
            if name in self._consumed or future.cancelled() or future.exception() is not None:
                continue
            self._acquirer.release(future.result())
