"""Create the initial pipeline state from a master plan or an existing directory tree."""

from __future__ import annotations

import shutil
from pathlib import Path

from .config import PipelineConfig
from .constants import PHASES_DIR, SEED_SPEC_FILE, SPEC_LOCKED_FILE, TASKS_DIR
from .errors import ScaffoldError
from .models import MilestoneState, MilestoneStatus, PhaseState, PhaseStatus, PipelineState, TaskState
from .scaffold import Scaffolder
from .utils import is_safe_id, warn_on_mixed_id_widths


def _child_dirs(parent: Path, scope: str) -> list[Path]:
    if not parent.is_dir():
        return []
    dirs = sorted((p for p in parent.iterdir() if p.is_dir()), key=lambda p: p.name)
    for path in dirs:
        if not is_safe_id(path.name):
            raise ScaffoldError(f"Directory name {path.name!r} under {scope or 'milestones'} is not a valid unit id")
    warn_on_mixed_id_widths([p.name for p in dirs], scope)
    return dirs


def _lock_seed_spec(unit_dir: Path) -> None:
    spec_path = unit_dir / SEED_SPEC_FILE
    locked_path = unit_dir / SPEC_LOCKED_FILE
    if spec_path.exists() and not locked_path.exists():
        shutil.copyfile(spec_path, locked_path)


def init_from_tree(config: PipelineConfig, *, pre_planned: bool = False) -> PipelineState:
    """Build state by scanning `<pipeline_dir>/milestones/` for existing units.

    Tasks are registered only when their directory holds a seed `spec.md`.
    With `pre_planned`, milestone and phase seed specs are copied to
    `spec-locked.md` and those units start at `spec_locked`.

    Raises:
        ScaffoldError: If the milestones directory is missing or a directory
            name is not a usable id.
    """
    milestones_dir = config.milestones_path
    if not milestones_dir.is_dir():
        raise ScaffoldError(
            f"Milestones directory not found: {milestones_dir}. "
            "Create your milestone/phase/task structure with spec.md files first."
        )

    state = PipelineState(project=config.project)
    for milestone_dir in _child_dirs(milestones_dir, ""):
        milestone = MilestoneState()
        if pre_planned:
            _lock_seed_spec(milestone_dir)
            milestone.status = MilestoneStatus.SPEC_LOCKED

        for phase_dir in _child_dirs(milestone_dir / PHASES_DIR, milestone_dir.name):
            phase = PhaseState()
            if pre_planned:
                _lock_seed_spec(phase_dir)
                phase.status = PhaseStatus.SPEC_LOCKED

            scope = f"{milestone_dir.name}/{phase_dir.name}"
            for task_dir in _child_dirs(phase_dir / TASKS_DIR, scope):
                if (task_dir / SEED_SPEC_FILE).exists():
                    phase.tasks[task_dir.name] = TaskState()
            milestone.phases[phase_dir.name] = phase

        state.milestones[milestone_dir.name] = milestone
    return state


def bootstrap_from_master_plan(config: PipelineConfig, scaffolder: Scaffolder) -> PipelineState:
    """Scaffold milestone seed specs from the master plan and register them.

    Phases and tasks are scaffolded later, as each parent spec locks.

    Raises:
        ScaffoldError: If the master plan is missing or yields no milestones.
    """
    if not config.master_plan_path.exists():
        raise ScaffoldError(
            f"Master plan not found: {config.master_plan_path}. Create it in the project root first."
        )
    items = scaffolder.scaffold_milestones()
    state = PipelineState(project=config.project)
    for item in items:
        if (config.milestones_path / item.id).is_dir():
            state.milestones[item.id] = MilestoneState()
    if not state.milestones and not config.dry_run:
        raise ScaffoldError("No milestones extracted from master plan")
    return state
