"""Tests for creating initial state from a tree or a master plan."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeInvoker, make_config
from milestone_pipeline.bootstrap import bootstrap_from_master_plan, init_from_tree
from milestone_pipeline.config import PipelineConfig
from milestone_pipeline.errors import ScaffoldError
from milestone_pipeline.models import MilestoneStatus, PhaseStatus, TaskStatus
from milestone_pipeline.scaffold import Scaffolder
from milestone_pipeline.templates import TemplateLoader


def _seed(path: Path, text: str = "seed\n") -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)


def _build_tree(config: PipelineConfig) -> None:
    root = config.milestones_path
    _seed(root / "m01" / "spec.md")
    _seed(root / "m01" / "phases" / "p01" / "spec.md")
    _seed(root / "m01" / "phases" / "p01" / "tasks" / "t01" / "spec.md")
    _seed(root / "m01" / "phases" / "p01" / "tasks" / "t02" / "spec.md")
    (root / "m01" / "phases" / "p01" / "tasks" / "t03").mkdir()
    _seed(root / "m02" / "spec.md")


def test_init_scans_tree(config: PipelineConfig) -> None:
    _build_tree(config)

    state = init_from_tree(config)

    assert list(state.milestones) == ["m01", "m02"]
    phase = state.milestones["m01"].phases["p01"]
    assert list(phase.tasks) == ["t01", "t02"]
    assert phase.status == PhaseStatus.PENDING
    assert all(t.status == TaskStatus.PENDING for t in phase.tasks.values())
    assert not (config.milestones_path / "m01" / "spec-locked.md").exists()


def test_init_pre_planned_locks_specs(config: PipelineConfig) -> None:
    _build_tree(config)

    state = init_from_tree(config, pre_planned=True)

    assert state.milestones["m01"].status == MilestoneStatus.SPEC_LOCKED
    assert state.milestones["m01"].phases["p01"].status == PhaseStatus.SPEC_LOCKED
    assert (config.milestones_path / "m01" / "spec-locked.md").read_text() == "seed\n"
    assert (config.milestones_path / "m01" / "phases" / "p01" / "spec-locked.md").exists()
    assert state.milestones["m01"].phases["p01"].tasks["t01"].status == TaskStatus.PENDING


def test_init_requires_milestones_dir(config: PipelineConfig) -> None:
    with pytest.raises(ScaffoldError, match="Milestones directory not found"):
        init_from_tree(config)


def test_init_rejects_unsafe_directory_names(config: PipelineConfig) -> None:
    _seed(config.milestones_path / "m 01" / "spec.md")
    with pytest.raises(ScaffoldError, match="not a valid unit id"):
        init_from_tree(config)


def test_bootstrap_registers_scaffolded_milestones(config: PipelineConfig) -> None:
    items = {"items": [{"id": "m01", "title": "Core", "spec": "core"}, {"id": "m02", "title": "UI", "spec": "ui"}]}
    scaffolder = Scaffolder(config, FakeInvoker(structured=[items]), TemplateLoader())

    state = bootstrap_from_master_plan(config, scaffolder)

    assert list(state.milestones) == ["m01", "m02"]
    assert state.project == config.project
    assert (config.milestones_path / "m02" / "spec.md").read_text() == "ui"


def test_bootstrap_requires_master_plan(tmp_path: Path) -> None:
    config = make_config(tmp_path)
    scaffolder = Scaffolder(config, FakeInvoker(), TemplateLoader())
    with pytest.raises(ScaffoldError, match="Master plan not found"):
        bootstrap_from_master_plan(config, scaffolder)
