"""Load, save, and checkpoint pipeline state; locate the resume point."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from loguru import logger

from .errors import StateCorruptError, StateNotFoundError
from .io_utils import _atomic_write_json
from .logging_utils import log_step
from .models import (
    MilestoneState,
    MilestoneStatus,
    PhaseState,
    PhaseStatus,
    PipelineState,
    ResumePoint,
    TaskState,
    TaskStatus,
)
from .utils import sorted_ids


def load_state(path: Path) -> PipelineState:
    """Read the persisted pipeline state.

    Raises:
        StateNotFoundError: If `path` does not exist.
        StateCorruptError: If the file is not a JSON object with valid statuses.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise StateNotFoundError(f"State file not found: {path}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StateCorruptError(f"State file is malformed JSON: {path} ({exc})") from exc
    if not isinstance(data, dict):
        raise StateCorruptError(f"State file must contain a JSON object: {path}")
    try:
        return PipelineState.from_dict(data)
    except (ValueError, TypeError) as exc:
        raise StateCorruptError(f"State file has invalid content: {path} ({exc})") from exc


def save_state(path: Path, state: PipelineState) -> None:
    """Rewrite the whole state document atomically (temp file + rename)."""
    _atomic_write_json(path, state.to_dict())


def checkpoint(path: Path, state: PipelineState, step: str) -> None:
    """Persist `state` and log which step caused the write."""
    save_state(path, state)
    log_step("", "checkpoint", f"State saved after: {step}")


def get_milestone(state: PipelineState, milestone_id: str) -> MilestoneState:
    try:
        return state.milestones[milestone_id]
    except KeyError:
        raise KeyError(f"Milestone not found: {milestone_id}") from None


def get_phase(state: PipelineState, milestone_id: str, phase_id: str) -> PhaseState:
    milestone = get_milestone(state, milestone_id)
    try:
        return milestone.phases[phase_id]
    except KeyError:
        raise KeyError(f"Phase not found: {milestone_id}/{phase_id}") from None


def get_task(state: PipelineState, milestone_id: str, phase_id: str, task_id: str) -> TaskState:
    phase = get_phase(state, milestone_id, phase_id)
    try:
        return phase.tasks[task_id]
    except KeyError:
        raise KeyError(f"Task not found: {milestone_id}/{phase_id}/{task_id}") from None


# ---------------------------------------------------------------------------
# Resume point
# ---------------------------------------------------------------------------


def find_resume_point(state: PipelineState) -> Optional[ResumePoint]:
    """Compute the next unit of work for a restarted run.

    Pointers (`current_milestone`, `current_phase`, `current_task`) are tried
    first; a lexical scan is the fallback. Returns None when everything is
    completed.
    """
    if state.current_milestone:
        milestone = state.milestones.get(state.current_milestone)
        if milestone is not None and milestone.status != MilestoneStatus.COMPLETED:
            return _resume_in_milestone(state.current_milestone, milestone)
        if milestone is None:
            logger.debug("current milestone pointer {} is stale", state.current_milestone)

    for milestone_id in sorted_ids(state.milestones):
        milestone = state.milestones[milestone_id]
        if milestone.status == MilestoneStatus.COMPLETED:
            continue
        return _resume_in_milestone(milestone_id, milestone)
    return None


def _resume_in_milestone(milestone_id: str, milestone: MilestoneState) -> ResumePoint:
    if milestone.status in (MilestoneStatus.PENDING, MilestoneStatus.PLANNING):
        return ResumePoint(milestone_id)

    if milestone.current_phase:
        phase = milestone.phases.get(milestone.current_phase)
        if phase is not None and phase.status != PhaseStatus.COMPLETED:
            return _resume_in_phase(milestone_id, milestone.current_phase, phase)

    for phase_id in sorted_ids(milestone.phases):
        phase = milestone.phases[phase_id]
        if phase.status == PhaseStatus.COMPLETED:
            continue
        return _resume_in_phase(milestone_id, phase_id, phase)

    # Every phase is done; the milestone awaits its own completion step.
    return ResumePoint(milestone_id)


def _resume_in_phase(milestone_id: str, phase_id: str, phase: PhaseState) -> ResumePoint:
    if phase.status in (PhaseStatus.PENDING, PhaseStatus.PLANNING):
        return ResumePoint(milestone_id, phase_id)

    if phase.current_task:
        task = phase.tasks.get(phase.current_task)
        if task is not None and task.status != TaskStatus.COMPLETED:
            return ResumePoint(milestone_id, phase_id, phase.current_task)

    for task_id in sorted_ids(phase.tasks):
        if phase.tasks[task_id].status == TaskStatus.COMPLETED:
            continue
        return ResumePoint(milestone_id, phase_id, task_id)

    return ResumePoint(milestone_id, phase_id)


def progress_counts(state: PipelineState) -> dict[str, tuple[int, int]]:
    """Return `(completed, total)` per level."""
    counts = {"milestones": [0, 0], "phases": [0, 0], "tasks": [0, 0]}
    for milestone in state.milestones.values():
        counts["milestones"][1] += 1
        if milestone.status == MilestoneStatus.COMPLETED:
            counts["milestones"][0] += 1
        for phase in milestone.phases.values():
            counts["phases"][1] += 1
            if phase.status == PhaseStatus.COMPLETED:
                counts["phases"][0] += 1
            for task in phase.tasks.values():
                counts["tasks"][1] += 1
                if task.status == TaskStatus.COMPLETED:
                    counts["tasks"][0] += 1
    return {key: (done, total) for key, (done, total) in counts.items()}
