"""Tests for the milestone/phase/task transition tables."""

from __future__ import annotations

import pytest

from milestone_pipeline.errors import IllegalTransitionError, PipelineError
from milestone_pipeline.fsm import (
    MILESTONE_TRANSITIONS,
    PHASE_TRANSITIONS,
    TASK_TRANSITIONS,
    allowed_next,
    transition,
)
from milestone_pipeline.models import (
    MilestoneState,
    MilestoneStatus,
    PhaseState,
    PhaseStatus,
    TaskState,
    TaskStatus,
)


class TestTaskTransitions:
    def test_forward_path_is_allowed(self) -> None:
        task = TaskState()
        for status in ("planning", "plan_locked", "implementing", "completed"):
            result = transition(task, status)
            assert result is task
        assert task.status == TaskStatus.COMPLETED

    def test_skipping_a_status_raises_and_leaves_status(self) -> None:
        task = TaskState()
        with pytest.raises(IllegalTransitionError) as excinfo:
            transition(task, TaskStatus.COMPLETED, path="m01/p01/t01")

        assert task.status == TaskStatus.PENDING
        err = excinfo.value
        assert err.kind == "task"
        assert err.current == "pending"
        assert err.attempted == "completed"
        assert err.allowed == ("planning",)
        assert "m01/p01/t01" in str(err)

    def test_completed_is_terminal(self) -> None:
        task = TaskState(status=TaskStatus.COMPLETED)
        assert allowed_next(task) == frozenset()
        with pytest.raises(IllegalTransitionError):
            transition(task, "pending")
        assert task.status == TaskStatus.COMPLETED

    def test_unknown_status_string_is_rejected(self) -> None:
        task = TaskState(status=TaskStatus.PLANNING)
        with pytest.raises(IllegalTransitionError):
            transition(task, "spec_locked")
        assert task.status == TaskStatus.PLANNING


class TestMilestoneAndPhaseTransitions:
    def test_milestone_forward_path(self) -> None:
        milestone = MilestoneState()
        for status in MilestoneStatus:
            if status == MilestoneStatus.PENDING:
                continue
            transition(milestone, status)
        assert milestone.status == MilestoneStatus.COMPLETED

    def test_phase_cannot_go_backwards(self) -> None:
        phase = PhaseState(status=PhaseStatus.IN_PROGRESS)
        with pytest.raises(IllegalTransitionError) as excinfo:
            transition(phase, PhaseStatus.PLANNING)
        assert excinfo.value.kind == "phase"
        assert phase.status == PhaseStatus.IN_PROGRESS

    def test_illegal_transition_is_a_pipeline_error(self) -> None:
        with pytest.raises(PipelineError):
            transition(MilestoneState(), MilestoneStatus.IN_PROGRESS)


@pytest.mark.parametrize("table", [MILESTONE_TRANSITIONS, PHASE_TRANSITIONS, TASK_TRANSITIONS])
def test_tables_are_linear_chains(table: dict) -> None:
    """Every non-terminal status has exactly one successor; one status is terminal."""
    terminal = [status for status, targets in table.items() if not targets]
    assert len(terminal) == 1
    for status, targets in table.items():
        assert len(targets) <= 1
        assert status not in targets
