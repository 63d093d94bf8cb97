"""Install state machine models — deterministic transitions and results."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from cellarforge.models.store import StoreEntry


class InstallState(str, Enum):
    """States of one install invocation."""

    FORBID_CHECK = "forbid_check"
    RESOLVE = "resolve"
    CONFIRM = "confirm"
    ACQUIRE = "acquire"
    BUILD = "build"
    STAGE = "stage"
    DONE = "done"
    FAILED = "failed"


_S = InstallState

# Valid state transitions, enforced by InstallMachine.
# ACQUIRE -> ACQUIRE is an idempotent skip of an installed step;
# STAGE -> ACQUIRE moves on to the next step of the plan.
# DONE and FAILED are terminal.
VALID_TRANSITIONS: dict[InstallState, set[InstallState]] = {
    _S.FORBID_CHECK: {_S.RESOLVE, _S.FAILED},
    _S.RESOLVE: {_S.CONFIRM, _S.ACQUIRE, _S.DONE, _S.FAILED},
    _S.CONFIRM: {_S.ACQUIRE, _S.DONE, _S.FAILED},
    _S.ACQUIRE: {_S.ACQUIRE, _S.BUILD, _S.STAGE, _S.DONE, _S.FAILED},
    _S.BUILD: {_S.STAGE, _S.FAILED},
    _S.STAGE: {_S.ACQUIRE, _S.DONE, _S.FAILED},
    _S.DONE: set(),
    _S.FAILED: set(),
}


class StateTransition(BaseModel):
    """Records a single state transition for the install history."""

    model_config = ConfigDict(frozen=True)

    from_state: InstallState
    to_state: InstallState
    package: str = ""
    detail: str = ""
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class InstallRequest(BaseModel):
    """What the caller asked for; built once at the CLI boundary."""

    model_config = ConfigDict(frozen=True)

    name: str
    options: frozenset[str] = frozenset()
    interactive: bool = False
    force_head: bool = False
    force_source: bool = False
    debug_symbols: bool = False
    ignore_dependencies: bool = False


class StepOutcome(str, Enum):
    INSTALLED = "installed"
    ALREADY_INSTALLED = "already_installed"


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    outcome: StepOutcome
    entry: StoreEntry


class InstallResult(BaseModel):
    """Outcome of one install invocation."""

    model_config = ConfigDict(frozen=True)

    target: str
    state: InstallState
    steps: list[StepResult] = []
    transitions: list[StateTransition] = []
    error_kind: str = ""
    error_message: str = ""

    @property
    def success(self) -> bool:
        return self.state == InstallState.DONE
