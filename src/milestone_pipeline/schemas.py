"""Pydantic models for structured agent output and decision parsing."""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import DecisionParseError
from .models import Decision, Verdict

_VERDICT_LINE_RE = re.compile(
    r"[\"']?verdict[\"']?\s*[:=][\s\"'*`]*(approved|needs_revision|rejected)\b",
    re.IGNORECASE,
)
_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


class ChallengeDecision(BaseModel):
    """Verdict emitted by a challenger on a spec or plan draft."""

    model_config = ConfigDict(extra="ignore")

    verdict: Literal["approved", "needs_revision"]
    feedback: str = ""

    @field_validator("verdict", mode="before")
    @classmethod
    def _normalize_verdict(cls, value: Any) -> Any:
        text = str(value or "").strip().lower()
        return "needs_revision" if text == "rejected" else text


class ReviewIssue(BaseModel):
    file: str
    description: str


class ReviewDecision(ChallengeDecision):
    """Verdict emitted when reviewing an implementation."""

    issues: list[ReviewIssue] = Field(default_factory=list)


class ScaffoldItem(BaseModel):
    id: str
    title: str
    spec: str


class ScaffoldResult(BaseModel):
    items: list[ScaffoldItem] = Field(default_factory=list)


SCHEMA_MODELS: dict[str, type[BaseModel]] = {
    "challenge-decision.json": ChallengeDecision,
    "review-decision.json": ReviewDecision,
    "scaffold.json": ScaffoldResult,
}


def _decision_model(schema_name: Optional[str]) -> type[ChallengeDecision]:
    if schema_name == "review-decision.json":
        return ReviewDecision
    return ChallengeDecision


def schema_json(schema_name: str) -> str:
    """Return the JSON schema text handed to agent CLIs for `schema_name`."""
    model = SCHEMA_MODELS.get(schema_name)
    if model is None:
        raise KeyError(f"Unknown schema: {schema_name}")
    return json.dumps(model.model_json_schema(), indent=2)


def write_schema_file(schema_name: str, directory: Path) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / schema_name
    path.write_text(schema_json(schema_name), encoding="utf-8")
    return path


def _json_candidates(raw: str) -> list[Any]:
    text = raw.strip()
    candidates: list[Any] = []
    blocks = [text]
    blocks.extend(match.group(1) for match in _FENCED_JSON_RE.finditer(text))
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        blocks.append(text[first : last + 1])
    for block in blocks:
        try:
            candidates.append(json.loads(block))
        except json.JSONDecodeError:
            continue
    return candidates


def parse_decision(raw: str, schema_name: Optional[str] = None) -> Decision:
    """Extract an approve/reject decision from raw agent output.

    Accepts a JSON object, JSON embedded in prose or a fenced block, a Claude
    envelope carrying `structured_output`, or a `verdict: approved` line.

    Raises:
        DecisionParseError: If no verdict can be found.
    """
    model = _decision_model(schema_name)
    for candidate in _json_candidates(raw or ""):
        if isinstance(candidate, dict) and "structured_output" in candidate:
            inner = candidate["structured_output"]
            if isinstance(inner, str):
                try:
                    inner = json.loads(inner)
                except json.JSONDecodeError:
                    inner = None
            if isinstance(inner, dict):
                candidate = inner
        if isinstance(candidate, dict) and "verdict" not in candidate and isinstance(candidate.get("result"), str):
            try:
                return parse_decision(candidate["result"], schema_name)
            except DecisionParseError:
                continue
        if not isinstance(candidate, dict) or "verdict" not in candidate:
            continue
        try:
            parsed = model.model_validate(candidate)
        except ValidationError as exc:
            raise DecisionParseError(f"Decision does not match {schema_name or 'decision'} schema: {exc}") from exc
        return Decision(verdict=Verdict(parsed.verdict), feedback=parsed.feedback)

    match = _VERDICT_LINE_RE.search(raw or "")
    if match:
        verdict = match.group(1).lower()
        if verdict == "rejected":
            verdict = Verdict.NEEDS_REVISION.value
        return Decision(verdict=Verdict(verdict), feedback=(raw or "").strip())

    preview = (raw or "").strip()[:200]
    raise DecisionParseError(f"No verdict found in agent output: {preview!r}")


def parse_structured_output(stdout: str) -> dict[str, Any]:
    """Extract a JSON object from CLI output (envelope, `result`, or inline block).

    Raises:
        DecisionParseError: If no JSON object can be recovered.
    """
    text = (stdout or "").strip()
    try:
        envelope = json.loads(text)
    except json.JSONDecodeError:
        envelope = None
    if isinstance(envelope, dict):
        structured = envelope.get("structured_output")
        if structured is not None:
            if isinstance(structured, str):
                try:
                    structured = json.loads(structured)
                except json.JSONDecodeError as exc:
                    raise DecisionParseError(f"structured_output is not JSON: {exc}") from exc
            if isinstance(structured, dict):
                return structured
        result = envelope.get("result")
        if isinstance(result, str):
            try:
                inner = json.loads(result)
            except json.JSONDecodeError:
                inner = None
            if isinstance(inner, dict):
                return inner
        if "items" in envelope:
            return envelope

    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        try:
            data = json.loads(text[first : last + 1])
        except json.JSONDecodeError:
            data = None
        if isinstance(data, dict):
            return data
    raise DecisionParseError("Failed to parse structured output from agent")
