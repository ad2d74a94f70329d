"""Shared fixtures and fakes for pipeline tests."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Optional

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from milestone_pipeline.config import AgentCallOptions, PipelineConfig, build_pipeline_config
from milestone_pipeline.models import AgentResult, PipelineState
from milestone_pipeline.schemas import parse_decision
from milestone_pipeline.templates import TemplateLoader


class FakeInvoker:
    """Scripted agent: creators return numbered text, challengers pop verdicts."""

    def __init__(self, verdicts: Optional[list[str]] = None, structured: Optional[list[dict[str, Any]]] = None):
        self.verdicts = list(verdicts or [])
        self.structured = list(structured or [])
        self.calls: list[tuple[str, str, AgentCallOptions]] = []

    def call(self, agent_id: str, prompt: str, options: AgentCallOptions) -> AgentResult:
        self.calls.append((agent_id, prompt, options))
        n = len(self.calls)
        if options.schema:
            verdict = self.verdicts.pop(0) if self.verdicts else "approved"
            raw = json.dumps({"verdict": verdict, "feedback": f"feedback from call {n}"})
            return AgentResult(raw=raw, decision=parse_decision(raw, options.schema))
        return AgentResult(raw=f"{agent_id} output from call {n}")

    def call_structured(self, agent_id: str, prompt: str, options: AgentCallOptions) -> dict[str, Any]:
        self.calls.append((agent_id, prompt, options))
        return self.structured.pop(0) if self.structured else {"items": []}

    @property
    def challenger_calls(self) -> int:
        return sum(1 for _, _, options in self.calls if options.schema and options.schema != "scaffold.json")


class FakeScaffolder:
    """Adds fixed children instead of asking an agent."""

    def __init__(self, phases: Optional[dict[str, list[str]]] = None, tasks: Optional[dict[str, list[str]]] = None):
        self.phases = phases or {}
        self.tasks = tasks or {}
        self.expanded: list[str] = []

    def expand_phases(self, milestone_dir: Path, state: PipelineState, milestone_id: str) -> None:
        from milestone_pipeline.models import PhaseState

        self.expanded.append(milestone_id)
        milestone = state.milestones[milestone_id]
        if milestone.phases:
            return
        for phase_id in self.phases.get(milestone_id, []):
            milestone.phases[phase_id] = PhaseState()

    def expand_tasks(self, phase_dir: Path, state: PipelineState, milestone_id: str, phase_id: str) -> None:
        from milestone_pipeline.models import TaskState

        label = f"{milestone_id}/{phase_id}"
        self.expanded.append(label)
        phase = state.milestones[milestone_id].phases[phase_id]
        if phase.tasks:
            return
        for task_id in self.tasks.get(label, []):
            phase.tasks[task_id] = TaskState()


class FakeGit:
    def __init__(self) -> None:
        self.events: list[tuple[str, ...]] = []

    def create_phase_branch(self, milestone_id: str, phase_id: str) -> None:
        self.events.append(("branch", milestone_id, phase_id))

    def commit_task_completion(self, milestone_id: str, phase_id: str, task_id: str) -> None:
        self.events.append(("commit", milestone_id, phase_id, task_id))

    def create_phase_pr(self, milestone_id: str, phase_id: str) -> Optional[str]:
        self.events.append(("pr", milestone_id, phase_id))
        return None

    def return_to_main(self) -> None:
        self.events.append(("main",))


def make_config(project_dir: Path, overrides: Optional[dict[str, Any]] = None, *, dry_run: bool = False) -> PipelineConfig:
    return build_pipeline_config(project_dir, overrides or {}, dry_run=dry_run)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    root.mkdir()
    (root / "MASTER_PLAN.md").write_text("# Master plan\n", encoding="utf-8")
    return root


@pytest.fixture
def config(project_dir: Path) -> PipelineConfig:
    return make_config(project_dir, {"git": {"enabled": False}})


@pytest.fixture
def templates() -> TemplateLoader:
    return TemplateLoader()
