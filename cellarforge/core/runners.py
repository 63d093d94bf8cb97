"""Pluggable command runner used by builds, checkouts and debug symbols.

Defines the ``CommandRunner`` Protocol and the default subprocess-backed
implementation.  Tests and alternative sandboxes provide their own runner
instead of patching ``subprocess``.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command, decoupled from ``subprocess``."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@runtime_checkable
class CommandRunner(Protocol):
    """Protocol for command execution backends.

    Any object with a compatible ``run`` method satisfies this protocol.
    A missing executable must be reported as a non-zero ``CommandResult``
    (exit code 127), not as an exception.
    """

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        ...


class SubprocessRunner:
    """Runs commands with ``subprocess.run`` and captures their output."""

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        args = [str(a) for a in argv]
        logger.debug("exec: %s (cwd=%s)", " ".join(args), cwd)
        try:
            proc = subprocess.run(
                args,
                cwd=str(cwd),
                env=dict(env) if env is not None else None,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            return CommandResult(argv=args, returncode=127, stderr=str(exc))
        return CommandResult(
            argv=args,
            returncode=proc.returncode,
            stdout=proc.stdout,
            stderr=proc.stderr,
        )
