"""Run one bounded draft -> challenge -> refine -> tiebreak approval loop.

Each step's output is written to the artifact directory before the next step
starts, and a step whose file already exists is never re-run. Killing the
process at any point and running the cycle again therefore continues from the
first missing file without repeating a paid agent call.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .agents import AgentInvoker
from .config import LevelConfig
from .constants import FEEDBACK_PREFIX, TIEBREAK_FILE
from .io_utils import _read_text, _write_text
from .logging_utils import log_step
from .models import CycleResult, Decision
from .schemas import parse_decision
from .templates import TemplateRenderer

CycleLevel = Literal["milestone", "phase", "task", "implementation"]


@dataclass(frozen=True)
class ArtifactNames:
    draft_prefix: str
    locked_name: str
    feedback_prefix: str = FEEDBACK_PREFIX
    tiebreak_name: str = TIEBREAK_FILE

    def draft(self, artifact_dir: Path, iteration: int) -> Path:
        return artifact_dir / f"{self.draft_prefix}{iteration}.md"

    def feedback(self, artifact_dir: Path, iteration: int) -> Path:
        return artifact_dir / f"{self.feedback_prefix}{iteration}.md"


@dataclass(frozen=True)
class CycleContext:
    label: str
    level: CycleLevel
    level_config: LevelConfig
    artifact_dir: Path
    artifact_names: ArtifactNames
    template_vars: dict[str, str] = field(default_factory=dict)

    @property
    def locked_path(self) -> Path:
        return self.artifact_dir / self.artifact_names.locked_name


def run_iteration_cycle(ctx: CycleContext, invoker: AgentInvoker, templates: TemplateRenderer) -> CycleResult:
    """Drive the approval loop for one unit of work until it locks.

    Args:
        ctx: Unit label, level config, artifact directory and naming scheme.
        invoker: Agent invoker used for creator, challenger and tiebreaker calls.
        templates: Renderer for the level's prompt templates.

    Returns:
        The locked artifact text, the number of iterations consumed by this
        call (0 when the artifact was already locked), and whether the
        tiebreaker decided the outcome.

    Raises:
        AgentError: If any agent call fails or a verdict cannot be decoded.
            Nothing is retried here; rejection verdicts are the only retry path.
    """
    cfg = ctx.level_config
    names = ctx.artifact_names
    artifact_dir = ctx.artifact_dir
    max_iterations = cfg.max_iterations
    base_vars = {**ctx.template_vars, "ARTIFACT_DIR": str(artifact_dir)}

    artifact_dir.mkdir(parents=True, exist_ok=True)
    locked_path = ctx.locked_path

    if locked_path.exists():
        log_step(ctx.label, ctx.level, "Locked artifact already exists - skipping cycle")
        return CycleResult(artifact=_read_text(locked_path), iterations=0, tiebreaker_used=False)

    for i in range(1, max_iterations + 1):
        draft_path = names.draft(artifact_dir, i)
        feedback_path = names.feedback(artifact_dir, i)

        if not draft_path.exists():
            if i == 1:
                prompt = templates.render(cfg.templates.draft, base_vars)
            else:
                prompt = templates.render(
                    cfg.templates.refine,
                    {
                        **base_vars,
                        "DRAFT_PATH": str(names.draft(artifact_dir, i - 1)),
                        "FEEDBACK_PATH": str(names.feedback(artifact_dir, i - 1)),
                    },
                )
            log_step(
                ctx.label,
                ctx.level,
                "Drafting" if i == 1 else f"Refining (iteration {i})",
                current=i,
                total=max_iterations,
            )
            result = invoker.call(cfg.agents.creator, prompt, cfg.creator_options)
            _write_text(draft_path, result.raw)
        else:
            log_step(ctx.label, ctx.level, f"Draft v{i} exists on disk - skipping")

        decision = _challenge(ctx, invoker, templates, base_vars, i, draft_path, feedback_path)

        if decision.approved:
            log_step(ctx.label, ctx.level, f"Draft v{i} approved")
            if not locked_path.exists():
                shutil.copyfile(draft_path, locked_path)
            return CycleResult(artifact=_read_text(locked_path), iterations=i, tiebreaker_used=False)

        log_step(ctx.label, ctx.level, f"Draft v{i} rejected", current=i, total=max_iterations)

    return _tiebreak(ctx, invoker, templates, base_vars)


def _challenge(
    ctx: CycleContext,
    invoker: AgentInvoker,
    templates: TemplateRenderer,
    base_vars: dict[str, str],
    iteration: int,
    draft_path: Path,
    feedback_path: Path,
) -> Decision:
    cfg = ctx.level_config
    schema = cfg.challenger_options.schema

    if feedback_path.exists():
        log_step(ctx.label, ctx.level, f"Feedback v{iteration} exists on disk - checking verdict")
        return parse_decision(_read_text(feedback_path), schema)

    prompt = templates.render(cfg.templates.challenge, {**base_vars, "DRAFT_PATH": str(draft_path)})
    log_step(
        ctx.label,
        ctx.level,
        f"Challenging draft v{iteration}",
        current=iteration,
        total=cfg.max_iterations,
    )
    result = invoker.call(cfg.agents.challenger, prompt, cfg.challenger_options)
    _write_text(feedback_path, result.raw)
    return result.decision if result.decision is not None else parse_decision(result.raw, schema)


def _tiebreak(
    ctx: CycleContext,
    invoker: AgentInvoker,
    templates: TemplateRenderer,
    base_vars: dict[str, str],
) -> CycleResult:
    cfg = ctx.level_config
    names = ctx.artifact_names
    n = cfg.max_iterations
    tiebreak_path = ctx.artifact_dir / names.tiebreak_name

    if tiebreak_path.exists():
        log_step(ctx.label, ctx.level, "Tiebreak output exists on disk - locking it")
        shutil.copyfile(tiebreak_path, ctx.locked_path)
        return CycleResult(artifact=_read_text(tiebreak_path), iterations=n, tiebreaker_used=True)

    log_step(ctx.label, ctx.level, f"All {n} iterations rejected - invoking tiebreaker")

    draft_paths = [str(names.draft(ctx.artifact_dir, i)) for i in range(1, n + 1)]
    feedback_paths = [str(names.feedback(ctx.artifact_dir, i)) for i in range(1, n + 1)]
    prompt = templates.render(
        cfg.templates.tiebreak,
        {
            **base_vars,
            "ALL_DRAFT_PATHS": "\n".join(draft_paths),
            "ALL_FEEDBACK_PATHS": "\n".join(feedback_paths),
            "NUM_ATTEMPTS": str(n),
        },
    )
    result = invoker.call(cfg.agents.tiebreaker, prompt, cfg.tiebreaker_options)

    _write_text(tiebreak_path, result.raw)
    shutil.copyfile(tiebreak_path, ctx.locked_path)
    log_step(ctx.label, ctx.level, "Tiebreaker produced final artifact")
    return CycleResult(artifact=result.raw, iterations=n, tiebreaker_used=True)
