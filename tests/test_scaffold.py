"""Tests for materializing child units from locked specs."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeInvoker, make_config
from milestone_pipeline.config import PipelineConfig
from milestone_pipeline.errors import ScaffoldError
from milestone_pipeline.models import MilestoneState, PhaseState, PipelineState, TaskState
from milestone_pipeline.scaffold import Scaffolder, validate_items
from milestone_pipeline.schemas import ScaffoldItem
from milestone_pipeline.templates import TemplateLoader


def _items(*ids: str) -> dict:
    return {"items": [{"id": i, "title": f"Title {i}", "spec": f"Spec for {i}\n"} for i in ids]}


def test_scaffold_milestones_writes_seed_specs(config: PipelineConfig, templates: TemplateLoader) -> None:
    invoker = FakeInvoker(structured=[_items("m01", "m02")])
    existing = config.milestones_path / "m02" / "spec.md"
    existing.parent.mkdir(parents=True)
    existing.write_text("hand written")

    items = Scaffolder(config, invoker, templates).scaffold_milestones()

    assert [item.id for item in items] == ["m01", "m02"]
    assert (config.milestones_path / "m01" / "spec.md").read_text() == "Spec for m01\n"
    assert existing.read_text() == "hand written"
    agent, prompt, options = invoker.calls[0]
    assert agent == "opus"
    assert options.schema == "scaffold.json"
    assert str(config.master_plan_path) in prompt


def test_expand_phases_registers_pending_children(config: PipelineConfig, templates: TemplateLoader) -> None:
    state = PipelineState(project="demo", milestones={"m01": MilestoneState()})
    milestone_dir = config.milestones_path / "m01"
    invoker = FakeInvoker(structured=[_items("p01", "p02")])

    Scaffolder(config, invoker, templates).expand_phases(milestone_dir, state, "m01")

    assert sorted(state.milestones["m01"].phases) == ["p01", "p02"]
    assert (milestone_dir / "phases" / "p02" / "spec.md").read_text() == "Spec for p02\n"
    assert str(milestone_dir / "spec-locked.md") in invoker.calls[0][1]


def test_expand_is_idempotent_when_children_exist(config: PipelineConfig, templates: TemplateLoader) -> None:
    phase = PhaseState(tasks={"t01": TaskState()})
    state = PipelineState(project="demo", milestones={"m01": MilestoneState(phases={"p01": phase})})
    invoker = FakeInvoker()

    Scaffolder(config, invoker, templates).expand_tasks(
        config.milestones_path / "m01" / "phases" / "p01", state, "m01", "p01"
    )

    assert invoker.calls == []
    assert list(phase.tasks) == ["t01"]


def test_expand_tasks_writes_under_phase(config: PipelineConfig, templates: TemplateLoader) -> None:
    state = PipelineState(project="demo", milestones={"m01": MilestoneState(phases={"p01": PhaseState()})})
    phase_dir = config.milestones_path / "m01" / "phases" / "p01"

    Scaffolder(config, FakeInvoker(structured=[_items("t01")]), templates).expand_tasks(phase_dir, state, "m01", "p01")

    assert list(state.milestones["m01"].phases["p01"].tasks) == ["t01"]
    assert (phase_dir / "tasks" / "t01" / "spec.md").exists()


def test_zero_items_raise(config: PipelineConfig, templates: TemplateLoader) -> None:
    state = PipelineState(project="demo", milestones={"m01": MilestoneState()})
    with pytest.raises(ScaffoldError, match="No child units"):
        Scaffolder(config, FakeInvoker(structured=[{"items": []}]), templates).expand_phases(
            config.milestones_path / "m01", state, "m01"
        )
    assert state.milestones["m01"].phases == {}


def test_malformed_output_raises(config: PipelineConfig, templates: TemplateLoader) -> None:
    state = PipelineState(project="demo", milestones={"m01": MilestoneState()})
    bad = {"items": [{"id": "p01"}]}
    with pytest.raises(ScaffoldError, match="invalid"):
        Scaffolder(config, FakeInvoker(structured=[bad]), templates).expand_phases(
            config.milestones_path / "m01", state, "m01"
        )


@pytest.mark.parametrize("bad_id", ["../escape", "a/b", "", ".hidden"])
def test_unsafe_ids_are_rejected(bad_id: str) -> None:
    with pytest.raises(ScaffoldError):
        validate_items([ScaffoldItem(id=bad_id, title="t", spec="s")], "m01")


def test_duplicate_ids_are_rejected() -> None:
    items = [ScaffoldItem(id="p01", title="a", spec="s"), ScaffoldItem(id="p01", title="b", spec="s")]
    with pytest.raises(ScaffoldError, match="Duplicate"):
        validate_items(items, "m01")


def test_dry_run_skips_agent(project_dir: Path, templates: TemplateLoader) -> None:
    config = make_config(project_dir, dry_run=True)
    state = PipelineState(project="demo", milestones={"m01": MilestoneState()})
    invoker = FakeInvoker()
    scaffolder = Scaffolder(config, invoker, templates)

    assert scaffolder.scaffold_milestones() == []
    scaffolder.expand_phases(config.milestones_path / "m01", state, "m01")

    assert invoker.calls == []
    assert state.milestones["m01"].phases == {}
