"""Build executor — turns an acquired artifact into a staged install tree.

Source and head steps run their declarative ``BuildProcedure`` in a fresh
working directory, then copy the declared ``install`` patterns into the
staging directory.  Prebuilt steps are unpacked straight into staging.

Nothing here touches the store or the shared prefix: the staging
directory handed in is the only place that receives files.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from cellarforge.config import InstallConfig
from cellarforge.core.archives import ArchiveError, unpack
from cellarforge.core.runners import CommandRunner, SubprocessRunner
from cellarforge.errors import BuildFailedError, StagingError
from cellarforge.models.plan import ArtifactKind, InstallStep
from cellarforge.models.store import AcquiredArtifact

logger = logging.getLogger(__name__)

_VCS_DIRS = (".git", ".hg", ".svn")
_STDERR_TAIL = 20


# ---------------------------------------------------------------------------
# Debug symbols
# ---------------------------------------------------------------------------


@runtime_checkable
class DebugSymbolExtractor(Protocol):
    """Protocol for debug-symbol backends.

    ``extract`` is handed the staging tree after the build and returns the
    debug-symbol bundles it produced.
    """

    def extract(self, staging: Path) -> list[Path]:
        ...


class DsymutilExtractor:
    """Produces ``<bin>.dSYM`` bundles next to each executable in ``bin/``."""

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self._runner = runner or SubprocessRunner()

    def extract(self, staging: Path) -> list[Path]:
        bin_dir = staging / "bin"
        if not bin_dir.is_dir():
            return []
        produced: list[Path] = []
        for exe in sorted(bin_dir.iterdir()):
            if exe.is_symlink() or not exe.is_file() or not os.access(exe, os.X_OK):
                continue
            bundle = exe.with_name(exe.name + ".dSYM")
            argv = ["dsymutil", str(exe), "-o", str(bundle)]
            result = self._runner.run(argv, cwd=staging)
            if not result.ok:
                raise BuildFailedError(
                    f"dsymutil failed for {exe.name}",
                    command=argv,
                    stderr=_tail(result.stderr),
                )
            produced.append(bundle)
        return produced


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class BuildExecutor:
    """Runs build procedures and unpacks prebuilt artifacts.

    Parameters
    ----------
    config:
        The active ``InstallConfig`` (scratch area, build PATH, platform
        support for debug symbols).
    runner:
        Command backend for build steps.
    debug_extractor:
        Backend that produces debug-symbol bundles.
    """

    def __init__(
        self,
        config: InstallConfig,
        runner: CommandRunner | None = None,
        debug_extractor: DebugSymbolExtractor | None = None,
    ) -> None:
        self._config = config
        self._runner = runner or SubprocessRunner()
        self._debug = debug_extractor or DsymutilExtractor(self._runner)

    def build(
        self,
        step: InstallStep,
        artifact: AcquiredArtifact,
        staging: Path,
        *,
        debug_symbols: bool = False,
    ) -> None:
        """Build ``step`` from ``artifact`` into ``staging``.

        Raises ``BuildFailedError`` on any failing command or I/O error; the
        working directory is removed either way.
        """
        descriptor = step.descriptor
        workdir = self._new_workdir(step.name)
        try:
            source_root = self._prepare_source(artifact, workdir)
            values = {
                "{prefix}": str(staging),
                "{source}": str(source_root),
                "{name}": step.name,
                "{version}": artifact.version_id,
            }
            env = self._build_env(workdir, staging, step.options)

            for command in descriptor.build.steps:
                if not command.applies_to(step.options):
                    continue
                argv = [_substitute(arg, values) for arg in command.run]
                logger.info("%s: %s", step.name, " ".join(argv))
                result = self._runner.run(argv, cwd=source_root, env=env)
                if not result.ok:
                    raise BuildFailedError(
                        f"{step.name}: command exited {result.returncode}: {' '.join(argv)}",
                        command=argv,
                        stderr=_tail(result.stderr),
                    )

            for pattern in descriptor.build.install:
                self._install_pattern(step.name, source_root, staging, pattern)

            if debug_symbols:
                if self._config.debug_symbols_supported:
                    bundles = self._debug.extract(staging)
                    logger.info("%s: produced %d debug symbol bundle(s)", step.name, len(bundles))
                else:
                    logger.info("Debug symbols are not supported on this platform; skipping")
        except (OSError, ArchiveError) as exc:
            raise BuildFailedError(f"{step.name}: build failed: {exc}") from exc
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    def extract_prebuilt(self, step: InstallStep, artifact: AcquiredArtifact, staging: Path) -> None:
        """Unpack a prebuilt archive into ``staging``.

        Archives laid out as ``<name>/<version>/...`` contribute that
        subtree; anything else contributes its root.
        """
        workdir = self._new_workdir(step.name)
        try:
            root = unpack(artifact.path, workdir / "bottle", strip_single_root=False)
            nested = root / step.name / artifact.version_id
            tree = nested if nested.is_dir() else root
            shutil.copytree(tree, staging, symlinks=True, dirs_exist_ok=True)
        except (OSError, ArchiveError) as exc:
            raise StagingError(f"{step.name}: could not extract {artifact.path.name}: {exc}") from exc
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_workdir(self, name: str) -> Path:
        root = Path(self._config.staging_root).absolute()
        root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{name}-build-", dir=root))

    @staticmethod
    def _prepare_source(artifact: AcquiredArtifact, workdir: Path) -> Path:
        if artifact.kind == ArtifactKind.HEAD:
            dest = workdir / "src"
            shutil.copytree(
                artifact.path, dest, symlinks=True, ignore=shutil.ignore_patterns(*_VCS_DIRS)
            )
            return dest
        return unpack(artifact.path, workdir / "src")

    def _build_env(self, workdir: Path, staging: Path, options: frozenset[str]) -> Mapping[str, str]:
        return {
            "PATH": self._config.build_path,
            "HOME": str(workdir),
            "PREFIX": str(staging),
            "CELLARFORGE_BUILD_OPTIONS": " ".join(sorted(options)),
        }

    @staticmethod
    def _install_pattern(name: str, source_root: Path, staging: Path, pattern: str) -> None:
        matches = sorted(p for p in source_root.glob(pattern) if p.name not in _VCS_DIRS)
        if not matches:
            raise BuildFailedError(f"{name}: install pattern {pattern!r} matched nothing")
        for match in matches:
            dest = staging / match.relative_to(source_root)
            dest.parent.mkdir(parents=True, exist_ok=True)
            if match.is_dir() and not match.is_symlink():
                shutil.copytree(
                    match, dest, symlinks=True, dirs_exist_ok=True,
                    ignore=shutil.ignore_patterns(*_VCS_DIRS),
                )
            else:
                shutil.copy2(match, dest, follow_symlinks=False)


def _substitute(arg: str, values: Mapping[str, str]) -> str:
    for placeholder, value in values.items():
        arg = arg.replace(placeholder, value)
    return arg


def _tail(text: str) -> str:
    return "\n".join(text.strip().splitlines()[-_STDERR_TAIL:])
