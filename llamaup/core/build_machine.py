"""Build state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Terminal states (DONE, FAILED) accept nothing further
- Every transition recorded, in order, for the build result
"""

from __future__ import annotations

import logging

from llamaup.models.build import VALID_TRANSITIONS, BuildState, BuildTransition

logger = logging.getLogger(__name__)


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class BuildMachine:
    """Tracks one build run through its states.

    Starts in RESOLVE_INPUTS.  ``history`` is the ordered list of every
    transition taken.
    """

    def __init__(self) -> None:
        self._state = BuildState.RESOLVE_INPUTS
        self._history: list[BuildTransition] = []

    @property
    def state(self) -> BuildState:
        return self._state

    @property
    def history(self) -> list[BuildTransition]:
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self._state]

    def can_transition(self, target: BuildState) -> bool:
        return target in VALID_TRANSITIONS[self._state]

    def transition(self, target: BuildState, detail: str = "") -> BuildTransition:
        """Move to *target*, recording the transition.

        Raises ``InvalidTransitionError`` if the move is not allowed from the
        current state.
        """
        allowed = VALID_TRANSITIONS[self._state]
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition build from {self._state.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )
        record = BuildTransition(from_state=self._state, to_state=target, detail=detail)
        self._history.append(record)
        logger.debug("build: %s -> %s %s", self._state.value, target.value, detail)
        self._state = target
        return record

    def fail(self, detail: str = "") -> None:
        """Enter FAILED from any non-terminal state; no-op once terminal."""
        if not self.is_terminal:
            self.transition(BuildState.FAILED, detail)
