"""Tests for the draft -> challenge -> refine -> tiebreak loop."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import FakeInvoker
from milestone_pipeline.config import PipelineConfig
from milestone_pipeline.cycle import CycleContext, run_iteration_cycle
from milestone_pipeline.errors import DecisionParseError
from milestone_pipeline.templates import TemplateLoader
from milestone_pipeline.walker import IMPL_ARTIFACTS, SPEC_ARTIFACTS


def _ctx(config: PipelineConfig, artifact_dir: Path, level: str = "milestone") -> CycleContext:
    return CycleContext(
        label="m01",
        level=level,  # type: ignore[arg-type]
        level_config=config.level(level),
        artifact_dir=artifact_dir,
        artifact_names=IMPL_ARTIFACTS if level == "implementation" else SPEC_ARTIFACTS,
        template_vars={"MASTER_PLAN_PATH": "MASTER_PLAN.md", "SPEC_PATH": str(artifact_dir / "spec.md")},
    )


def test_approved_on_first_iteration(tmp_path: Path, config: PipelineConfig, templates: TemplateLoader) -> None:
    invoker = FakeInvoker(["approved"])
    result = run_iteration_cycle(_ctx(config, tmp_path / "m01"), invoker, templates)

    assert result.iterations == 1
    assert result.tiebreaker_used is False
    assert len(invoker.calls) == 2
    locked = tmp_path / "m01" / "spec-locked.md"
    assert locked.read_text() == (tmp_path / "m01" / "spec-v1.md").read_text()
    assert result.artifact == locked.read_text()


def test_approved_after_two_rejections_locks_third_draft(
    tmp_path: Path, config: PipelineConfig, templates: TemplateLoader
) -> None:
    invoker = FakeInvoker(["needs_revision", "needs_revision", "approved"])
    artifact_dir = tmp_path / "m01"
    result = run_iteration_cycle(_ctx(config, artifact_dir), invoker, templates)

    assert result.iterations == 3
    assert result.tiebreaker_used is False
    assert len(invoker.calls) == 6
    assert (artifact_dir / "spec-locked.md").read_text() == (artifact_dir / "spec-v3.md").read_text()
    assert not (artifact_dir / "tiebreak.md").exists()

    # Refine prompts point at the previous draft and its feedback.
    refine_prompt = invoker.calls[2][1]
    assert str(artifact_dir / "spec-v1.md") in refine_prompt
    assert str(artifact_dir / "feedback-v1.md") in refine_prompt


def test_all_rejections_invoke_tiebreaker_once(tmp_path: Path, config: PipelineConfig, templates: TemplateLoader) -> None:
    invoker = FakeInvoker(["needs_revision"] * 3)
    artifact_dir = tmp_path / "m01"
    result = run_iteration_cycle(_ctx(config, artifact_dir), invoker, templates)

    assert result.iterations == 3
    assert result.tiebreaker_used is True
    assert len(invoker.calls) == 7
    tiebreak_agent, tiebreak_prompt, _ = invoker.calls[-1]
    assert tiebreak_agent == config.level("milestone").agents.tiebreaker
    for i in (1, 2, 3):
        assert str(artifact_dir / f"spec-v{i}.md") in tiebreak_prompt
        assert str(artifact_dir / f"feedback-v{i}.md") in tiebreak_prompt
    assert (artifact_dir / "spec-locked.md").read_text() == (artifact_dir / "tiebreak.md").read_text()
    assert result.artifact == (artifact_dir / "tiebreak.md").read_text()


def test_existing_locked_artifact_skips_all_calls(
    tmp_path: Path, config: PipelineConfig, templates: TemplateLoader
) -> None:
    artifact_dir = tmp_path / "m01"
    artifact_dir.mkdir()
    (artifact_dir / "spec-locked.md").write_text("final spec")
    invoker = FakeInvoker()

    result = run_iteration_cycle(_ctx(config, artifact_dir), invoker, templates)

    assert invoker.calls == []
    assert result.iterations == 0
    assert result.artifact == "final spec"


def test_resume_with_draft_on_disk_goes_straight_to_challenge(
    tmp_path: Path, config: PipelineConfig, templates: TemplateLoader
) -> None:
    artifact_dir = tmp_path / "m01"
    artifact_dir.mkdir()
    (artifact_dir / "spec-v1.md").write_text("draft from a previous run")
    invoker = FakeInvoker(["approved"])

    result = run_iteration_cycle(_ctx(config, artifact_dir), invoker, templates)

    assert len(invoker.calls) == 1
    assert invoker.calls[0][2].schema == "challenge-decision.json"
    assert result.artifact == "draft from a previous run"


def test_resume_with_feedback_on_disk_does_not_rechallenge(
    tmp_path: Path, config: PipelineConfig, templates: TemplateLoader
) -> None:
    artifact_dir = tmp_path / "m01"
    artifact_dir.mkdir()
    (artifact_dir / "spec-v1.md").write_text("draft 1")
    (artifact_dir / "feedback-v1.md").write_text(json.dumps({"verdict": "needs_revision", "feedback": "tighten scope"}))
    invoker = FakeInvoker(["approved"])

    result = run_iteration_cycle(_ctx(config, artifact_dir), invoker, templates)

    # One refine call and one challenge call for v2; v1 is never re-challenged.
    assert len(invoker.calls) == 2
    assert invoker.calls[0][2].schema is None
    assert invoker.challenger_calls == 1
    assert result.iterations == 2
    assert (artifact_dir / "spec-locked.md").read_text() == (artifact_dir / "spec-v2.md").read_text()


def test_resume_with_approved_feedback_locks_without_calls(
    tmp_path: Path, config: PipelineConfig, templates: TemplateLoader
) -> None:
    artifact_dir = tmp_path / "m01"
    artifact_dir.mkdir()
    (artifact_dir / "spec-v1.md").write_text("draft 1")
    (artifact_dir / "feedback-v1.md").write_text('Looks good.\n\n```json\n{"verdict": "approved", "feedback": ""}\n```\n')
    invoker = FakeInvoker()

    result = run_iteration_cycle(_ctx(config, artifact_dir), invoker, templates)

    assert invoker.calls == []
    assert result.iterations == 1
    assert (artifact_dir / "spec-locked.md").read_text() == "draft 1"


def test_existing_tiebreak_output_is_reused(tmp_path: Path, config: PipelineConfig, templates: TemplateLoader) -> None:
    artifact_dir = tmp_path / "m01"
    artifact_dir.mkdir()
    rejected = json.dumps({"verdict": "needs_revision", "feedback": "no"})
    for i in (1, 2, 3):
        (artifact_dir / f"spec-v{i}.md").write_text(f"draft {i}")
        (artifact_dir / f"feedback-v{i}.md").write_text(rejected)
    (artifact_dir / "tiebreak.md").write_text("tiebreak verdict")
    invoker = FakeInvoker()

    result = run_iteration_cycle(_ctx(config, artifact_dir), invoker, templates)

    assert invoker.calls == []
    assert result.tiebreaker_used is True
    assert (artifact_dir / "spec-locked.md").read_text() == "tiebreak verdict"


def test_unparseable_feedback_raises(tmp_path: Path, config: PipelineConfig, templates: TemplateLoader) -> None:
    artifact_dir = tmp_path / "m01"
    artifact_dir.mkdir()
    (artifact_dir / "spec-v1.md").write_text("draft 1")
    (artifact_dir / "feedback-v1.md").write_text("I have thoughts but no verdict.")

    with pytest.raises(DecisionParseError):
        run_iteration_cycle(_ctx(config, artifact_dir), FakeInvoker(), templates)
    assert not (artifact_dir / "spec-locked.md").exists()


def test_implementation_cycle_uses_its_own_artifact_names(
    tmp_path: Path, config: PipelineConfig, templates: TemplateLoader
) -> None:
    artifact_dir = tmp_path / "t01"
    invoker = FakeInvoker(["needs_revision"] * 3)
    result = run_iteration_cycle(_ctx(config, artifact_dir, level="implementation"), invoker, templates)

    assert result.tiebreaker_used is True
    names = sorted(p.name for p in artifact_dir.iterdir())
    assert names == [
        "impl-final.md",
        "impl-notes-v1.md",
        "impl-notes-v2.md",
        "impl-notes-v3.md",
        "review-v1.md",
        "review-v2.md",
        "review-v3.md",
        "tiebreak-impl.md",
    ]
    impl = config.level("implementation")
    assert [agent for agent, _, _ in invoker.calls[:2]] == [impl.agents.creator, impl.agents.challenger]
