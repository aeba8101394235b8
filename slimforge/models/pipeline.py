"""Pipeline state model: a strictly linear state machine."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from slimforge.models.artifacts import DependencyCache, Executable
from slimforge.models.image import RuntimeImage


class PipelineState(str, Enum):
    """States of a single pipeline run."""

    IDLE = "idle"
    BUILDING_DEPENDENCIES = "building_dependencies"
    BUILDING_APPLICATION = "building_application"
    ASSEMBLING = "assembling"
    COMPLETE = "complete"
    FAILED = "failed"


# Valid state transitions, enforced by PipelineStateMachine.
# No state is re-entered; COMPLETE and FAILED are terminal.
VALID_TRANSITIONS: dict[PipelineState, set[PipelineState]] = {
    PipelineState.IDLE: {PipelineState.BUILDING_DEPENDENCIES, PipelineState.FAILED},
    PipelineState.BUILDING_DEPENDENCIES: {
        PipelineState.BUILDING_APPLICATION,
        PipelineState.FAILED,
    },
    PipelineState.BUILDING_APPLICATION: {PipelineState.ASSEMBLING, PipelineState.FAILED},
    PipelineState.ASSEMBLING: {PipelineState.COMPLETE, PipelineState.FAILED},
    PipelineState.COMPLETE: set(),  # terminal
    PipelineState.FAILED: set(),  # terminal
}

TERMINAL_STATES: frozenset[PipelineState] = frozenset(
    {PipelineState.COMPLETE, PipelineState.FAILED}
)

# Which phase runs while the pipeline sits in a given state.
PHASE_FOR_STATE: dict[PipelineState, str] = {
    PipelineState.IDLE: "pipeline",
    PipelineState.BUILDING_DEPENDENCIES: "dependencies",
    PipelineState.BUILDING_APPLICATION: "application",
    PipelineState.ASSEMBLING: "assembly",
    PipelineState.COMPLETE: "pipeline",
    PipelineState.FAILED: "pipeline",
}


class BuildResult(BaseModel):
    """Outcome of a successful pipeline run."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    dependency_cache: DependencyCache
    executable: Executable
    image: RuntimeImage

    @property
    def cache_hit(self) -> bool:
        return self.dependency_cache.hit
