"""Linear pipeline state machine.

    idle -> building_dependencies -> building_application -> assembling -> complete

``failed`` is reachable from every non-terminal state. No state is ever
re-entered; a new build is a new run with a new machine. Every
transition is recorded in the build ledger.
"""

from __future__ import annotations

import logging

from slimforge import __version__
from slimforge.core.build_ledger import BuildLedger
from slimforge.core.errors import PipelineError
from slimforge.models.ledger import LedgerEntry
from slimforge.models.pipeline import (
    PHASE_FOR_STATE,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    PipelineState,
)

logger = logging.getLogger(__name__)


class InvalidTransitionError(PipelineError):
    """Raised when a requested state transition is not valid."""


class PipelineStateMachine:
    """Tracks and records the state of one pipeline run.

    Parameters
    ----------
    ledger:
        The build ledger to record transitions into.
    run_id:
        Identifier of the run this machine belongs to.
    """

    def __init__(self, ledger: BuildLedger, run_id: str) -> None:
        self._ledger = ledger
        self._run_id = run_id
        self._state = PipelineState.IDLE
        self._visited: list[PipelineState] = [PipelineState.IDLE]

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def visited(self) -> list[PipelineState]:
        """States entered so far, in order."""
        return list(self._visited)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def transition(
        self,
        target: PipelineState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        artifact_references: list[str] | None = None,
        detail: str = "",
    ) -> LedgerEntry:
        """Move to *target*, recording the transition in the ledger.

        Returns the sealed LedgerEntry.
        """
        allowed = VALID_TRANSITIONS.get(self._state, set())
        if target not in allowed or target in self._visited:
            raise InvalidTransitionError(
                f"Cannot transition run {self._run_id} from {self._state.value} "
                f"to {target.value}. Allowed: {sorted(s.value for s in allowed)}"
            )

        phase = PHASE_FOR_STATE[self._state if target == PipelineState.FAILED else target]
        entry = LedgerEntry(
            run_id=self._run_id,
            phase=phase,
            state_transition=f"{self._state.value}->{target.value}",
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=artifact_references or [],
            detail=detail,
            pipeline_version=__version__,
        )
        sealed = self._ledger.append(entry)

        logger.debug("run %s: %s", self._run_id, sealed.state_transition)
        self._state = target
        self._visited.append(target)
        return sealed

    def fail(self, detail: str) -> LedgerEntry | None:
        """Move to FAILED from any non-terminal state.

        Returns None when the run is already terminal.
        """
        if self.is_terminal:
            return None
        return self.transition(PipelineState.FAILED, detail=detail)
