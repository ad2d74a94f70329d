"""Drive the milestone -> phase -> task hierarchy forward as far as state allows.

One `Walker.walk()` call advances every unit in lexical ID order and stops when
either a phase completes (a human review gate, reported as `Halted`) or there is
nothing left to do (`Finished`). State is checkpointed after every mutation so
an interrupted walk resumes exactly where it left off.
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

from .agents import AgentInvoker
from .config import PipelineConfig
from .constants import (
    IMPL_DRAFT_PREFIX,
    IMPL_LOCKED_FILE,
    IMPL_TIEBREAK_FILE,
    PHASES_DIR,
    PLAN_DRAFT_PREFIX,
    PLAN_LOCKED_FILE,
    REVIEW_PREFIX,
    SEED_SPEC_FILE,
    SPEC_DRAFT_PREFIX,
    SPEC_LOCKED_FILE,
    TASKS_DIR,
)
from .cycle import ArtifactNames, CycleContext, run_iteration_cycle
from .fsm import transition
from .git_ops import GitGate
from .io_utils import _read_text
from .logging_utils import log_step
from .models import (
    Continue,
    Finished,
    Halted,
    MilestoneStatus,
    PhaseStatus,
    PipelineState,
    TaskStatus,
    WalkOutcome,
)
from .scaffold import ChildScaffolder
from .state import checkpoint, get_milestone, get_phase, get_task, save_state
from .templates import TemplateRenderer
from .utils import sorted_ids

SPEC_ARTIFACTS = ArtifactNames(draft_prefix=SPEC_DRAFT_PREFIX, locked_name=SPEC_LOCKED_FILE)
PLAN_ARTIFACTS = ArtifactNames(draft_prefix=PLAN_DRAFT_PREFIX, locked_name=PLAN_LOCKED_FILE)
IMPL_ARTIFACTS = ArtifactNames(
    draft_prefix=IMPL_DRAFT_PREFIX,
    locked_name=IMPL_LOCKED_FILE,
    feedback_prefix=REVIEW_PREFIX,
    tiebreak_name=IMPL_TIEBREAK_FILE,
)


class Walker:
    """Advance pipeline state by running cycles, scaffolding, and git gates."""

    def __init__(
        self,
        config: PipelineConfig,
        invoker: AgentInvoker,
        templates: TemplateRenderer,
        scaffolder: ChildScaffolder,
        git: GitGate,
    ) -> None:
        self.config = config
        self.invoker = invoker
        self.templates = templates
        self.scaffolder = scaffolder
        self.git = git

    # -- paths ----------------------------------------------------------------

    def milestone_dir(self, milestone_id: str) -> Path:
        return self.config.milestones_path / milestone_id

    def phase_dir(self, milestone_id: str, phase_id: str) -> Path:
        return self.milestone_dir(milestone_id) / PHASES_DIR / phase_id

    def task_dir(self, milestone_id: str, phase_id: str, task_id: str) -> Path:
        return self.phase_dir(milestone_id, phase_id) / TASKS_DIR / task_id

    def _checkpoint(self, state: PipelineState, step: str) -> None:
        checkpoint(self.config.state_path, state, step)

    # -- walk -----------------------------------------------------------------

    def walk(self, state: PipelineState) -> Union[Halted, Finished]:
        """Advance `state` until a phase completes or all milestones are done.

        Returns:
            `Halted(milestone_id, phase_id)` after any phase completes,
            otherwise `Finished` once every milestone is completed.

        Raises:
            PipelineError: Agent, scaffold, template, or transition failures
                propagate; the last checkpoint on disk is the resume point.
        """
        for milestone_id in sorted_ids(state.milestones):
            milestone = get_milestone(state, milestone_id)
            if milestone.status == MilestoneStatus.COMPLETED:
                continue
            state.current_milestone = milestone_id
            outcome = self._walk_milestone(state, milestone_id)
            if isinstance(outcome, Halted):
                return outcome

        state.current_milestone = None
        save_state(self.config.state_path, state)
        log_step("", "walk", "All milestones completed")
        return Finished()

    def _walk_milestone(self, state: PipelineState, milestone_id: str) -> WalkOutcome:
        milestone = get_milestone(state, milestone_id)
        milestone_dir = self.milestone_dir(milestone_id)

        if milestone.status in (MilestoneStatus.PENDING, MilestoneStatus.PLANNING):
            if milestone.status == MilestoneStatus.PENDING:
                transition(milestone, MilestoneStatus.PLANNING, path=milestone_id)
                self._checkpoint(state, f"milestone {milestone_id} -> planning")

            result = run_iteration_cycle(
                CycleContext(
                    label=milestone_id,
                    level="milestone",
                    level_config=self.config.level("milestone"),
                    artifact_dir=milestone_dir,
                    artifact_names=SPEC_ARTIFACTS,
                    template_vars={
                        "MASTER_PLAN_PATH": str(self.config.master_plan_path),
                        "SPEC_PATH": str(milestone_dir / SEED_SPEC_FILE),
                    },
                ),
                self.invoker,
                self.templates,
            )
            milestone.planning.record(result.iterations, result.tiebreaker_used)
            transition(milestone, MilestoneStatus.SPEC_LOCKED, path=milestone_id)
            self._checkpoint(state, f"milestone {milestone_id} spec locked")

        if milestone.status == MilestoneStatus.SPEC_LOCKED:
            self.scaffolder.expand_phases(milestone_dir, state, milestone_id)
            self._checkpoint(state, f"milestone {milestone_id} phases scaffolded")
            transition(milestone, MilestoneStatus.IN_PROGRESS, path=milestone_id)
            self._checkpoint(state, f"milestone {milestone_id} -> in_progress")

        for phase_id in sorted_ids(milestone.phases):
            if milestone.phases[phase_id].status == PhaseStatus.COMPLETED:
                continue
            milestone.current_phase = phase_id
            outcome = self._walk_phase(state, milestone_id, phase_id)
            if isinstance(outcome, Halted):
                return outcome

        transition(milestone, MilestoneStatus.COMPLETED, path=milestone_id)
        milestone.current_phase = None
        self._checkpoint(state, f"milestone {milestone_id} completed")
        return Continue()

    def _walk_phase(self, state: PipelineState, milestone_id: str, phase_id: str) -> WalkOutcome:
        label = f"{milestone_id}/{phase_id}"
        phase = get_phase(state, milestone_id, phase_id)
        milestone_dir = self.milestone_dir(milestone_id)
        phase_dir = self.phase_dir(milestone_id, phase_id)

        if phase.status in (PhaseStatus.PENDING, PhaseStatus.PLANNING):
            if phase.status == PhaseStatus.PENDING:
                transition(phase, PhaseStatus.PLANNING, path=label)
                self._checkpoint(state, f"phase {label} -> planning")

            result = run_iteration_cycle(
                CycleContext(
                    label=label,
                    level="phase",
                    level_config=self.config.level("phase"),
                    artifact_dir=phase_dir,
                    artifact_names=SPEC_ARTIFACTS,
                    template_vars={
                        "MASTER_PLAN_PATH": str(self.config.master_plan_path),
                        "MILESTONE_SPEC_PATH": str(milestone_dir / SPEC_LOCKED_FILE),
                        "SPEC_PATH": str(phase_dir / SEED_SPEC_FILE),
                    },
                ),
                self.invoker,
                self.templates,
            )
            phase.planning.record(result.iterations, result.tiebreaker_used)
            transition(phase, PhaseStatus.SPEC_LOCKED, path=label)
            self._checkpoint(state, f"phase {label} spec locked")

        if phase.status == PhaseStatus.SPEC_LOCKED:
            self.scaffolder.expand_tasks(phase_dir, state, milestone_id, phase_id)
            self._checkpoint(state, f"phase {label} tasks scaffolded")
            if self.config.git.enabled:
                self.git.create_phase_branch(milestone_id, phase_id)
            transition(phase, PhaseStatus.IN_PROGRESS, path=label)
            self._checkpoint(state, f"phase {label} -> in_progress")

        for task_id in sorted_ids(phase.tasks):
            if phase.tasks[task_id].status == TaskStatus.COMPLETED:
                continue
            phase.current_task = task_id
            self._walk_task(state, milestone_id, phase_id, task_id)

        transition(phase, PhaseStatus.COMPLETED, path=label)
        phase.current_task = None
        self._checkpoint(state, f"phase {label} completed")

        if self.config.git.enabled:
            self.git.create_phase_pr(milestone_id, phase_id)
            self.git.return_to_main()
            save_state(self.config.state_path, state)
            log_step(label, "phase", "Phase completed - PR created, awaiting review")
        else:
            log_step(label, "phase", "Phase completed - awaiting review")
        return Halted(milestone_id=milestone_id, phase_id=phase_id)

    def _walk_task(self, state: PipelineState, milestone_id: str, phase_id: str, task_id: str) -> None:
        label = f"{milestone_id}/{phase_id}/{task_id}"
        task = get_task(state, milestone_id, phase_id, task_id)
        milestone_dir = self.milestone_dir(milestone_id)
        phase_dir = self.phase_dir(milestone_id, phase_id)
        task_dir = self.task_dir(milestone_id, phase_id, task_id)

        if task.status in (TaskStatus.PENDING, TaskStatus.PLANNING):
            if task.status == TaskStatus.PENDING:
                transition(task, TaskStatus.PLANNING, path=label)
                self._checkpoint(state, f"task {label} -> planning")

            result = run_iteration_cycle(
                CycleContext(
                    label=label,
                    level="task",
                    level_config=self.config.level("task"),
                    artifact_dir=task_dir,
                    artifact_names=PLAN_ARTIFACTS,
                    template_vars={
                        "MASTER_PLAN_PATH": str(self.config.master_plan_path),
                        "MILESTONE_SPEC_PATH": str(milestone_dir / SPEC_LOCKED_FILE),
                        "PHASE_SPEC_PATH": str(phase_dir / SPEC_LOCKED_FILE),
                        "SPEC_PATH": str(task_dir / SEED_SPEC_FILE),
                        "COMPLETED_SIBLINGS_SECTION": self.completed_siblings_section(
                            state, milestone_id, phase_id, task_id
                        ),
                    },
                ),
                self.invoker,
                self.templates,
            )
            task.planning.record(result.iterations, result.tiebreaker_used)
            transition(task, TaskStatus.PLAN_LOCKED, path=label)
            self._checkpoint(state, f"task {label} plan locked")

        if task.status in (TaskStatus.PLAN_LOCKED, TaskStatus.IMPLEMENTING):
            if task.status == TaskStatus.PLAN_LOCKED:
                transition(task, TaskStatus.IMPLEMENTING, path=label)
                self._checkpoint(state, f"task {label} -> implementing")

            result = run_iteration_cycle(
                CycleContext(
                    label=label,
                    level="implementation",
                    level_config=self.config.level("implementation"),
                    artifact_dir=task_dir,
                    artifact_names=IMPL_ARTIFACTS,
                    template_vars={
                        "PLAN_LOCKED_PATH": str(task_dir / PLAN_LOCKED_FILE),
                        "SPEC_PATH": str(task_dir / SEED_SPEC_FILE),
                        "PHASE_SPEC_PATH": str(phase_dir / SPEC_LOCKED_FILE),
                    },
                ),
                self.invoker,
                self.templates,
            )
            task.implementation.record(result.iterations, result.tiebreaker_used)
            transition(task, TaskStatus.COMPLETED, path=label)
            self._checkpoint(state, f"task {label} completed")

            if self.config.git.enabled:
                self.git.commit_task_completion(milestone_id, phase_id, task_id)

    def completed_siblings_section(
        self,
        state: PipelineState,
        milestone_id: str,
        phase_id: str,
        current_task_id: str,
    ) -> str:
        """Collect locked plans of completed tasks that sort before `current_task_id`.

        Returns an empty string when there are none.
        """
        phase = get_phase(state, milestone_id, phase_id)
        parts: list[str] = []
        for task_id in sorted_ids(phase.tasks):
            if task_id >= current_task_id:
                break
            if phase.tasks[task_id].status != TaskStatus.COMPLETED:
                continue
            plan_path = self.task_dir(milestone_id, phase_id, task_id) / PLAN_LOCKED_FILE
            if not plan_path.exists():
                continue
            parts.append(f"### Task {task_id} (completed)\n\n{_read_text(plan_path)}\n")
        if not parts:
            return ""
        return "## Completed Sibling Tasks\n\n" + "\n".join(parts)
