"""Tests for the PipelineStateMachine: linear transitions and ledger recording."""

from __future__ import annotations

import pytest

from slimforge.core.build_ledger import BuildLedger
from slimforge.core.state_machine import InvalidTransitionError, PipelineStateMachine
from slimforge.models.pipeline import PipelineState

HAPPY_PATH = [
    PipelineState.BUILDING_DEPENDENCIES,
    PipelineState.BUILDING_APPLICATION,
    PipelineState.ASSEMBLING,
    PipelineState.COMPLETE,
]


class TestPipelineStateMachine:
    def test_starts_idle(self, ledger: BuildLedger, run_id: str):
        machine = PipelineStateMachine(ledger, run_id)
        assert machine.state == PipelineState.IDLE
        assert not machine.is_terminal

    def test_happy_path(self, ledger: BuildLedger, run_id: str):
        machine = PipelineStateMachine(ledger, run_id)
        for target in HAPPY_PATH:
            machine.transition(target)
        assert machine.state == PipelineState.COMPLETE
        assert machine.is_terminal
        assert machine.visited == [PipelineState.IDLE, *HAPPY_PATH]

    def test_transitions_are_recorded(self, ledger: BuildLedger, run_id: str):
        machine = PipelineStateMachine(ledger, run_id)
        for target in HAPPY_PATH:
            machine.transition(target, input_hash="in", output_hash="out")
        entries = ledger.get_run_entries(run_id)
        assert [e.state_transition for e in entries] == [
            "idle->building_dependencies",
            "building_dependencies->building_application",
            "building_application->assembling",
            "assembling->complete",
        ]
        assert [e.phase for e in entries] == [
            "dependencies",
            "application",
            "assembly",
            "pipeline",
        ]

    def test_skip_phase_rejected(self, ledger: BuildLedger, run_id: str):
        machine = PipelineStateMachine(ledger, run_id)
        with pytest.raises(InvalidTransitionError):
            machine.transition(PipelineState.BUILDING_APPLICATION)
        assert machine.state == PipelineState.IDLE
        assert ledger.get_run_entries(run_id) == []

    @pytest.mark.parametrize("steps", range(4))
    def test_fail_from_any_non_terminal_state(
        self, ledger: BuildLedger, run_id: str, steps: int
    ):
        machine = PipelineStateMachine(ledger, run_id)
        for target in HAPPY_PATH[:steps]:
            machine.transition(target)
        entry = machine.fail("boom")
        assert entry is not None
        assert entry.to_state == "failed"
        assert entry.detail == "boom"
        assert machine.state == PipelineState.FAILED

    def test_fail_records_phase_that_failed(self, ledger: BuildLedger, run_id: str):
        machine = PipelineStateMachine(ledger, run_id)
        machine.transition(PipelineState.BUILDING_DEPENDENCIES)
        machine.transition(PipelineState.BUILDING_APPLICATION)
        entry = machine.fail("compile error")
        assert entry is not None
        assert entry.phase == "application"

    def test_fail_when_terminal_is_noop(self, ledger: BuildLedger, run_id: str):
        machine = PipelineStateMachine(ledger, run_id)
        for target in HAPPY_PATH:
            machine.transition(target)
        assert machine.fail("late") is None
        assert machine.state == PipelineState.COMPLETE

    def test_no_transition_out_of_failed(self, ledger: BuildLedger, run_id: str):
        machine = PipelineStateMachine(ledger, run_id)
        machine.fail("early")
        with pytest.raises(InvalidTransitionError):
            machine.transition(PipelineState.BUILDING_DEPENDENCIES)
