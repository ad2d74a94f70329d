"""Materialize child units (milestones, phases, tasks) from a locked parent artifact."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from .agents import AgentInvoker
from .config import PipelineConfig
from .constants import PHASES_DIR, SEED_SPEC_FILE, SPEC_LOCKED_FILE, TASKS_DIR
from .errors import ScaffoldError
from .io_utils import _write_text
from .logging_utils import log_step
from .models import PhaseState, PipelineState, TaskState
from .schemas import ScaffoldItem, ScaffoldResult
from .templates import TemplateRenderer
from .utils import is_safe_id, warn_on_mixed_id_widths


class ChildScaffolder(Protocol):
    def expand_phases(self, milestone_dir: Path, state: PipelineState, milestone_id: str) -> None: ...

    def expand_tasks(self, phase_dir: Path, state: PipelineState, milestone_id: str, phase_id: str) -> None: ...


class Scaffolder:
    """Ask the scaffold agent to split a locked spec into seeded child units.

    Expansion is idempotent: a parent that already has children in state is
    left alone, and existing seed specs on disk are never overwritten.
    """

    def __init__(self, config: PipelineConfig, invoker: AgentInvoker, templates: TemplateRenderer) -> None:
        self.config = config
        self.invoker = invoker
        self.templates = templates

    def _extract(self, template: str, variables: dict[str, str], scope: str) -> list[ScaffoldItem]:
        prompt = self.templates.render(template, variables)
        opts = self.config.scaffold.options
        raw = self.invoker.call_structured(self.config.scaffold.agent, prompt, opts)
        try:
            result = ScaffoldResult.model_validate(raw)
        except ValidationError as exc:
            raise ScaffoldError(f"Scaffold output for {scope or 'master plan'} is invalid: {exc}") from exc
        return validate_items(result.items, scope)

    def scaffold_milestones(self) -> list[ScaffoldItem]:
        """Seed `milestones/<id>/spec.md` for each milestone in the master plan."""
        log_step("", "scaffold", "Extracting milestones from master plan")
        if self.config.dry_run:
            log_step("", "scaffold", "[DRY-RUN] Skipping milestone scaffolding")
            return []

        items = self._extract(
            self.config.scaffold.templates.milestones,
            {"MASTER_PLAN_PATH": str(self.config.master_plan_path)},
            "",
        )
        for item in items:
            spec_path = self.config.milestones_path / item.id / SEED_SPEC_FILE
            if spec_path.exists():
                log_step(item.id, "scaffold", "Milestone directory already exists - skipping")
                continue
            _write_text(spec_path, item.spec)
            log_step(item.id, "scaffold", f"Created milestone seed spec: {item.title}")
        return items

    def expand_phases(self, milestone_dir: Path, state: PipelineState, milestone_id: str) -> None:
        milestone = state.milestones[milestone_id]
        if milestone.phases:
            log_step(milestone_id, "scaffold", "Phases already exist in state - skipping")
            return

        log_step(milestone_id, "scaffold", "Extracting phases from locked milestone spec")
        if self.config.dry_run:
            log_step(milestone_id, "scaffold", "[DRY-RUN] Skipping phase scaffolding")
            return

        items = self._extract(
            self.config.scaffold.templates.phases,
            {
                "MASTER_PLAN_PATH": str(self.config.master_plan_path),
                "MILESTONE_SPEC_PATH": str(milestone_dir / SPEC_LOCKED_FILE),
            },
            milestone_id,
        )
        for item in items:
            spec_path = milestone_dir / PHASES_DIR / item.id / SEED_SPEC_FILE
            if not spec_path.exists():
                _write_text(spec_path, item.spec)
            milestone.phases[item.id] = PhaseState()
            log_step(f"{milestone_id}/{item.id}", "scaffold", f"Created phase seed spec: {item.title}")

    def expand_tasks(self, phase_dir: Path, state: PipelineState, milestone_id: str, phase_id: str) -> None:
        label = f"{milestone_id}/{phase_id}"
        phase = state.milestones[milestone_id].phases[phase_id]
        if phase.tasks:
            log_step(label, "scaffold", "Tasks already exist in state - skipping")
            return

        log_step(label, "scaffold", "Extracting tasks from locked phase spec")
        if self.config.dry_run:
            log_step(label, "scaffold", "[DRY-RUN] Skipping task scaffolding")
            return

        milestone_dir = self.config.milestones_path / milestone_id
        items = self._extract(
            self.config.scaffold.templates.tasks,
            {
                "MASTER_PLAN_PATH": str(self.config.master_plan_path),
                "MILESTONE_SPEC_PATH": str(milestone_dir / SPEC_LOCKED_FILE),
                "PHASE_SPEC_PATH": str(phase_dir / SPEC_LOCKED_FILE),
            },
            label,
        )
        for item in items:
            spec_path = phase_dir / TASKS_DIR / item.id / SEED_SPEC_FILE
            if not spec_path.exists():
                _write_text(spec_path, item.spec)
            phase.tasks[item.id] = TaskState()
            log_step(f"{label}/{item.id}", "scaffold", f"Created task seed spec: {item.title}")


def validate_items(items: list[ScaffoldItem], scope: str) -> list[ScaffoldItem]:
    """Reject empty, duplicate, or path-unsafe child IDs.

    Raises:
        ScaffoldError: If the list cannot be used to create child units.
    """
    where = scope or "master plan"
    if not items:
        raise ScaffoldError(f"No child units extracted from {where}")
    seen: set[str] = set()
    for item in items:
        if not is_safe_id(item.id):
            raise ScaffoldError(f"Invalid child id {item.id!r} extracted from {where}")
        if item.id in seen:
            raise ScaffoldError(f"Duplicate child id {item.id!r} extracted from {where}")
        seen.add(item.id)
    warn_on_mixed_id_widths(seen, scope)
    return items
