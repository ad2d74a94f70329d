"""Invoke the Claude and Codex CLIs as blocking subprocesses and decode their output.

Two invokers share one interface:

* `CliAgentInvoker` spawns the real binaries with a hard wall-clock timeout.
* `DryRunInvoker` returns canned responses and queued decisions, so the whole
  pipeline can be exercised without spawning anything.
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional, Protocol, Sequence

from loguru import logger

from .config import AgentCallOptions, PipelineConfig
from .constants import AGENT_ENV_BLOCKLIST, STDERR_TAIL_CHARS
from .errors import AgentInvocationError, AgentTimeoutError
from .io_utils import _read_text, _remove_quietly
from .logging_utils import log_step
from .models import AgentResult, Decision, Verdict
from .schemas import parse_decision, parse_structured_output, schema_json, write_schema_file


class AgentInvoker(Protocol):
    def call(self, agent_id: str, prompt: str, options: AgentCallOptions) -> AgentResult: ...

    def call_structured(self, agent_id: str, prompt: str, options: AgentCallOptions) -> dict[str, Any]: ...


def _clean_env() -> dict[str, str]:
    env = dict(os.environ)
    for key in AGENT_ENV_BLOCKLIST:
        env.pop(key, None)
    return env


class CliAgentInvoker:
    """Run agent CLIs with `subprocess.run` under the configured timeout."""

    def __init__(
        self,
        config: PipelineConfig,
        *,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self.config = config
        self._run = run

    def call(self, agent_id: str, prompt: str, options: AgentCallOptions) -> AgentResult:
        if agent_id == "opus":
            return self._call_claude(prompt, options)
        if agent_id == "codex":
            return self._call_codex(prompt, options)
        raise AgentInvocationError(f"Unknown agent: {agent_id}")

    def call_structured(self, agent_id: str, prompt: str, options: AgentCallOptions) -> dict[str, Any]:
        if agent_id != "opus":
            raise AgentInvocationError("Structured calls are only supported for the opus agent")
        if not options.schema:
            raise AgentInvocationError("Structured calls require a schema")
        args = self._claude_args(prompt, options, output_format="json")
        log_step("", "cli", f"claude -p structured (tools: {','.join(options.tools) or 'none'}, schema: {options.schema})")
        stdout = self._execute("claude", self.config.agents.opus.bin, args)
        return parse_structured_output(stdout)

    # -- claude ---------------------------------------------------------------

    def _claude_args(self, prompt: str, options: AgentCallOptions, *, output_format: str) -> list[str]:
        opus = self.config.agents.opus
        max_turns = options.max_turns or opus.default_max_turns
        args = [
            "-p",
            prompt,
            "--model",
            opus.model,
            "--output-format",
            output_format,
            "--max-turns",
            str(max_turns),
        ]
        if options.tools:
            args.extend(["--allowedTools", ",".join(options.tools)])
        if options.schema:
            args.extend(["--json-schema", schema_json(options.schema)])
        return args

    def _call_claude(self, prompt: str, options: AgentCallOptions) -> AgentResult:
        is_decision = bool(options.schema)
        args = self._claude_args(prompt, options, output_format="json" if is_decision else "text")
        log_step(
            "",
            "cli",
            f"claude -p (tools: {','.join(options.tools) or 'none'}, "
            f"max-turns: {options.max_turns or self.config.agents.opus.default_max_turns}, "
            f"schema: {options.schema or 'none'})",
        )
        stdout = self._execute("claude", self.config.agents.opus.bin, args)
        if not is_decision:
            return AgentResult(raw=stdout)
        return self._parse_claude_decision(stdout, options.schema)

    def _parse_claude_decision(self, stdout: str, schema: Optional[str]) -> AgentResult:
        try:
            envelope = json.loads(stdout)
        except json.JSONDecodeError:
            envelope = None
        if not isinstance(envelope, dict):
            logger.debug("Claude JSON envelope parse failed, falling back to raw text")
            return AgentResult(raw=stdout, decision=parse_decision(stdout, schema))

        result = envelope.get("result") if isinstance(envelope.get("result"), str) else ""
        structured = envelope.get("structured_output")
        if structured is not None:
            structured_text = structured if isinstance(structured, str) else json.dumps(structured)
            decision = parse_decision(structured_text, schema)
            # The verdict block stays in the persisted text so a resumed run can re-parse it.
            raw = f"{result}\n\n```json\n{structured_text}\n```\n" if result else structured_text
            return AgentResult(raw=raw, decision=decision)
        raw = result or stdout
        return AgentResult(raw=raw, decision=parse_decision(raw, schema))

    # -- codex ----------------------------------------------------------------

    def _call_codex(self, prompt: str, options: AgentCallOptions) -> AgentResult:
        sandbox = options.sandbox or self.config.agents.codex.default_sandbox
        args = ["exec", prompt, "--sandbox", sandbox]
        output_file: Optional[Path] = None
        if options.schema:
            tmp_dir = self.config.tmp_path
            schema_path = write_schema_file(options.schema, tmp_dir / "schemas")
            output_file = tmp_dir / f"codex-output-{uuid.uuid4().hex}.json"
            args.extend(["--output-schema", str(schema_path), "-o", str(output_file)])

        log_step("", "cli", f"codex exec (sandbox: {sandbox}, schema: {options.schema or 'none'})")
        stdout = self._execute("codex", self.config.agents.codex.bin, args)
        if output_file is None:
            return AgentResult(raw=stdout)

        try:
            raw = _read_text(output_file).strip()
        except OSError:
            logger.debug("Codex output file not found, falling back to stdout")
            raw = stdout
        _remove_quietly(output_file)
        return AgentResult(raw=raw, decision=parse_decision(raw, options.schema))

    # -- process --------------------------------------------------------------

    def _execute(self, name: str, binary: str, args: Sequence[str]) -> str:
        timeout = self.config.timeout_seconds
        try:
            result = self._run(
                [binary, *args],
                cwd=self.config.project_dir,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=_clean_env(),
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise AgentTimeoutError(name, timeout) from exc
        except OSError as exc:
            raise AgentInvocationError(f"{name} failed: {exc}") from exc

        if result.returncode != 0:
            stderr = (result.stderr or "")[:STDERR_TAIL_CHARS]
            raise AgentInvocationError(
                f"{name} exited with code {result.returncode}: {stderr}",
                exit_code=result.returncode,
                stderr=stderr,
            )
        return (result.stdout or "").strip()


@dataclass
class DryRunInvoker:
    """Stand-in invoker for `--dry-run` and tests.

    Decisions are consumed in order; once exhausted every challenge approves.
    """

    decisions: list[Decision] = field(default_factory=list)
    calls: list[tuple[str, str, AgentCallOptions]] = field(default_factory=list)

    def queue(self, *decisions: Decision) -> None:
        self.decisions.extend(decisions)

    def _next_decision(self) -> Decision:
        if self.decisions:
            return self.decisions.pop(0)
        return Decision(verdict=Verdict.APPROVED, feedback="")

    def call(self, agent_id: str, prompt: str, options: AgentCallOptions) -> AgentResult:
        self.calls.append((agent_id, prompt, options))
        cli = "claude" if agent_id == "opus" else "codex"
        preview = prompt if len(prompt) <= 80 else prompt[:80] + "..."
        log_step("", "cli", f"[DRY-RUN] {cli}: {preview}")
        if options.schema:
            decision = self._next_decision()
            raw = json.dumps({"verdict": decision.verdict.value, "feedback": decision.feedback})
            return AgentResult(raw=raw, decision=decision)
        return AgentResult(raw=f"Mock {cli} response for dry-run testing.")

    def call_structured(self, agent_id: str, prompt: str, options: AgentCallOptions) -> dict[str, Any]:
        self.calls.append((agent_id, prompt, options))
        log_step("", "cli", f"[DRY-RUN] structured call skipped (schema: {options.schema})")
        return {"items": []}


def build_invoker(config: PipelineConfig) -> AgentInvoker:
    if config.dry_run:
        return DryRunInvoker()
    return CliAgentInvoker(config)


def check_prereqs(
    config: PipelineConfig,
    *,
    which: Optional[Callable[[str], Optional[str]]] = None,
    require_gh: bool = True,
) -> list[tuple[str, str, Optional[str]]]:
    """Locate the agent and GitHub binaries.

    Returns:
        `(label, binary, resolved_path_or_None)` for each prerequisite.
    """
    checks = [
        ("Claude Code", config.agents.opus.bin),
        ("Codex CLI", config.agents.codex.bin),
    ]
    if require_gh and config.git.enabled and config.git.auto_pr:
        checks.append(("GitHub CLI", "gh"))
    which = which or shutil.which
    return [(label, binary, which(binary)) for label, binary in checks]
