"""Deterministic install state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- No way out of DONE or FAILED
- Every transition recorded, in order, with the package it concerns
"""

from __future__ import annotations

import logging

from cellarforge.errors import InvalidTransitionError
from cellarforge.models.states import (
    VALID_TRANSITIONS,
    InstallState,
    StateTransition,
)

logger = logging.getLogger(__name__)


class InstallMachine:
    """Tracks the state of one install invocation.

    Parameters
    ----------
    target:
        Name of the package being installed (recorded on transitions
        that do not concern a specific plan step).
    """

    def __init__(self, target: str) -> None:
        self._target = target
        self._state = InstallState.FORBID_CHECK
        self._history: list[StateTransition] = []

    @property
    def state(self) -> InstallState:
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        """A copy of every transition so far."""
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self._state]

    def can_transition(self, target_state: InstallState) -> bool:
        return target_state in VALID_TRANSITIONS[self._state]

    def transition(
        self, target_state: InstallState, *, package: str = "", detail: str = ""
    ) -> StateTransition:
        """Move to ``target_state``; raises ``InvalidTransitionError`` if not allowed."""
        current = self._state
        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {self._target} from {current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        record = StateTransition(
            from_state=current,
            to_state=target_state,
            package=package or self._target,
            detail=detail,
        )
        self._history.append(record)
        self._state = target_state
        logger.debug(
            "%s: %s -> %s %s", record.package, current.value, target_state.value, detail
        )
        return record

    def fail(self, detail: str = "", *, package: str = "") -> StateTransition | None:
        """Enter FAILED from any non-terminal state; a no-op once terminal."""
        if self.is_terminal:
            return None
        return self.transition(InstallState.FAILED, package=package, detail=detail)
