"""Tests for decision parsing and structured output extraction."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from milestone_pipeline.errors import DecisionParseError
from milestone_pipeline.models import Verdict
from milestone_pipeline.schemas import (
    ScaffoldResult,
    parse_decision,
    parse_structured_output,
    schema_json,
    write_schema_file,
)


class TestParseDecision:
    def test_plain_json(self) -> None:
        decision = parse_decision('{"verdict": "approved", "feedback": "ship it"}')
        assert decision.approved
        assert decision.feedback == "ship it"

    def test_json_embedded_in_prose(self) -> None:
        raw = 'Review done. {"verdict": "needs_revision", "feedback": "missing tests"} Thanks.'
        decision = parse_decision(raw)
        assert decision.verdict == Verdict.NEEDS_REVISION
        assert decision.feedback == "missing tests"

    def test_fenced_block(self) -> None:
        raw = "Notes first.\n\n```json\n{\"verdict\": \"approved\"}\n```\n"
        assert parse_decision(raw).approved

    def test_rejected_is_needs_revision(self) -> None:
        assert parse_decision('{"verdict": "REJECTED"}').verdict == Verdict.NEEDS_REVISION

    def test_claude_envelope_with_structured_output(self) -> None:
        raw = json.dumps({"result": "prose", "structured_output": {"verdict": "approved", "feedback": ""}})
        assert parse_decision(raw).approved

    def test_claude_envelope_with_result_text(self) -> None:
        raw = json.dumps({"type": "result", "result": "Verdict: needs_revision\nFix naming."})
        assert parse_decision(raw).verdict == Verdict.NEEDS_REVISION

    def test_verdict_line_fallback(self) -> None:
        decision = parse_decision("Overall the plan is solid.\n\n**Verdict:** approved\n")
        assert decision.approved

    def test_review_schema_accepts_issues(self) -> None:
        raw = json.dumps(
            {
                "verdict": "needs_revision",
                "feedback": "bug",
                "issues": [{"file": "app.py", "description": "off by one"}],
            }
        )
        assert not parse_decision(raw, "review-decision.json").approved

    def test_invalid_verdict_value_raises(self) -> None:
        with pytest.raises(DecisionParseError):
            parse_decision('{"verdict": "maybe"}')

    @pytest.mark.parametrize("raw", ["", "Looks fine to me.", '{"feedback": "no verdict"}'])
    def test_no_verdict_raises(self, raw: str) -> None:
        with pytest.raises(DecisionParseError):
            parse_decision(raw)


class TestStructuredOutput:
    def test_envelope_structured_output(self) -> None:
        items = {"items": [{"id": "m01", "title": "Core", "spec": "Build core"}]}
        assert parse_structured_output(json.dumps({"structured_output": items})) == items

    def test_envelope_result_string(self) -> None:
        items = {"items": []}
        assert parse_structured_output(json.dumps({"result": json.dumps(items)})) == items

    def test_inline_block(self) -> None:
        out = 'Here you go:\n{"items": [{"id": "p01", "title": "t", "spec": "s"}]}\n'
        result = ScaffoldResult.model_validate(parse_structured_output(out))
        assert [item.id for item in result.items] == ["p01"]

    def test_garbage_raises(self) -> None:
        with pytest.raises(DecisionParseError):
            parse_structured_output("no json here")


def test_schema_files_are_generated_from_models(tmp_path: Path) -> None:
    schema = json.loads(schema_json("challenge-decision.json"))
    assert "verdict" in schema["properties"]

    path = write_schema_file("scaffold.json", tmp_path / "schemas")
    assert path.exists()
    assert "items" in json.loads(path.read_text())["properties"]

    with pytest.raises(KeyError):
        schema_json("nope.json")
