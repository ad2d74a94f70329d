"""Rewind milestones, phases, or tasks and delete their generated artifacts.

Reset is an explicit operator tool: it writes statuses directly instead of going
through the transition tables, which only allow forward moves.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from loguru import logger

from .config import PipelineConfig
from .constants import (
    IMPL_ARTIFACT_PREFIXES,
    PHASES_DIR,
    SPEC_ARTIFACT_PREFIXES,
    TASK_ARTIFACT_PREFIXES,
    TASKS_DIR,
)
from .models import (
    MilestoneStatus,
    PhaseState,
    PhaseStatus,
    PipelineState,
    TaskState,
    TaskStatus,
)
from .state import get_milestone, get_phase, get_task

RESET_TARGETS = ("pending", "implementing")


def clean_artifacts(directory: Path, prefixes: Iterable[str]) -> list[Path]:
    """Delete files directly under `directory` whose names start with any prefix.

    Seed specs (`spec.md`) and child directories are never touched.

    Returns:
        The paths that were removed.
    """
    if not directory.is_dir():
        return []
    prefixes = tuple(prefixes)
    removed: list[Path] = []
    for entry in sorted(directory.iterdir()):
        if not entry.is_file() or not entry.name.startswith(prefixes):
            continue
        try:
            entry.unlink()
        except OSError as exc:
            logger.warning("Unable to remove artifact {}: {}", entry, exc)
            continue
        removed.append(entry)
    return removed


def _reset_task_state(task: TaskState) -> None:
    task.status = TaskStatus.PENDING
    task.planning.rewind()
    task.implementation.rewind()


def _reset_phase_state(phase: PhaseState) -> None:
    phase.status = PhaseStatus.PENDING
    phase.planning.rewind()
    phase.current_task = None
    for task in phase.tasks.values():
        _reset_task_state(task)


def reset_milestone(config: PipelineConfig, state: PipelineState, milestone_id: str) -> list[Path]:
    """Return a milestone and every descendant to `pending`.

    Only the milestone's own planning artifacts are deleted; child seed specs
    and child artifacts stay on disk.
    """
    milestone = get_milestone(state, milestone_id)
    milestone.status = MilestoneStatus.PENDING
    milestone.planning.rewind()
    milestone.current_phase = None
    for phase in milestone.phases.values():
        _reset_phase_state(phase)
    if state.current_milestone == milestone_id:
        state.current_milestone = None
    return clean_artifacts(config.milestones_path / milestone_id, SPEC_ARTIFACT_PREFIXES)


def reset_phase(config: PipelineConfig, state: PipelineState, milestone_id: str, phase_id: str) -> list[Path]:
    phase = get_phase(state, milestone_id, phase_id)
    _reset_phase_state(phase)
    milestone = get_milestone(state, milestone_id)
    if milestone.status == MilestoneStatus.COMPLETED:
        milestone.status = MilestoneStatus.IN_PROGRESS
    phase_dir = config.milestones_path / milestone_id / PHASES_DIR / phase_id
    return clean_artifacts(phase_dir, SPEC_ARTIFACT_PREFIXES)


def reset_task(
    config: PipelineConfig,
    state: PipelineState,
    milestone_id: str,
    phase_id: str,
    task_id: str,
    *,
    to_implementing: bool = False,
) -> list[Path]:
    """Rewind a task.

    Args:
        to_implementing: Keep the locked plan and its planning counters, rewind
            to `plan_locked`, and delete only implementation artifacts.
    """
    task = get_task(state, milestone_id, phase_id, task_id)
    task.implementation.rewind()
    if to_implementing:
        task.status = TaskStatus.PLAN_LOCKED
        prefixes = IMPL_ARTIFACT_PREFIXES
    else:
        task.status = TaskStatus.PENDING
        task.planning.rewind()
        prefixes = TASK_ARTIFACT_PREFIXES

    # Reopen ancestors so the walker revisits this task.
    phase = get_phase(state, milestone_id, phase_id)
    if phase.status == PhaseStatus.COMPLETED:
        phase.status = PhaseStatus.IN_PROGRESS
    milestone = get_milestone(state, milestone_id)
    if milestone.status == MilestoneStatus.COMPLETED:
        milestone.status = MilestoneStatus.IN_PROGRESS

    task_dir = config.milestones_path / milestone_id / PHASES_DIR / phase_id / TASKS_DIR / task_id
    return clean_artifacts(task_dir, prefixes)


def reset_path(
    config: PipelineConfig,
    state: PipelineState,
    path: str,
    *,
    to: str = "pending",
) -> tuple[str, list[Path]]:
    """Dispatch `m01`, `m01/p01`, or `m01/p01/t01` to the matching reset.

    Returns:
        A human-readable summary and the removed artifact paths.

    Raises:
        ValueError: If the path shape or target is invalid.
        KeyError: If the unit does not exist in state.
    """
    if to not in RESET_TARGETS:
        raise ValueError(f"Unknown reset target '{to}' (expected one of {', '.join(RESET_TARGETS)})")
    parts = [p for p in path.strip().strip("/").split("/") if p]
    if to == "implementing" and len(parts) != 3:
        raise ValueError("--to implementing only applies to tasks (m01/p01/t01)")

    if len(parts) == 1:
        removed = reset_milestone(config, state, parts[0])
        return f"Reset milestone {parts[0]} to pending.", removed
    if len(parts) == 2:
        removed = reset_phase(config, state, parts[0], parts[1])
        return f"Reset phase {parts[0]}/{parts[1]} to pending.", removed
    if len(parts) == 3:
        removed = reset_task(config, state, *parts, to_implementing=(to == "implementing"))
        task = get_task(state, *parts)
        return f"Reset task {'/'.join(parts)} to {task.status.value}.", removed
    raise ValueError("Invalid path format. Use: m01, m01/p01, or m01/p01/t01")
