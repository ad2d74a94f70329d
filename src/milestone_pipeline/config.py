"""Resolve pipeline configuration from built-in defaults and `.pipeline/config.yaml`."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Literal, Optional

from .constants import (
    CONFIG_FILE,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_OPUS_MAX_TURNS,
    DEFAULT_PROJECT_NAME,
    DEFAULT_TIMEOUT_SECONDS,
    LOGS_DIR,
    MASTER_PLAN_FILE,
    MILESTONES_DIR,
    STATE_DIR_NAME,
    STATE_FILE,
    TEMPLATES_DIR,
    TMP_DIR,
)
from .errors import ConfigError
from .io_utils import _load_data_with_error

AgentId = Literal["opus", "codex"]
SandboxMode = Literal["read-only", "workspace-write"]

LEVELS = ("milestone", "phase", "task", "implementation")
VALID_AGENTS = {"opus", "codex"}
VALID_SANDBOXES = {"read-only", "workspace-write"}

_READ_ONLY_TOOLS = ["Read", "Glob", "Grep"]


def _planning_level(prefix: str) -> dict[str, Any]:
    return {
        "agents": {"creator": "opus", "challenger": "codex", "tiebreaker": "opus"},
        "max_iterations": DEFAULT_MAX_ITERATIONS,
        "templates": {
            "draft": f"{prefix}/draft",
            "challenge": f"{prefix}/challenge",
            "refine": f"{prefix}/refine",
            "tiebreak": f"{prefix}/tiebreak",
        },
        "creator_options": {"tools": list(_READ_ONLY_TOOLS)},
        "challenger_options": {"tools": list(_READ_ONLY_TOOLS), "schema": "challenge-decision.json"},
        "tiebreaker_options": {"tools": list(_READ_ONLY_TOOLS)},
    }


DEFAULT_CONFIG: dict[str, Any] = {
    "project": DEFAULT_PROJECT_NAME,
    "pipeline_dir": STATE_DIR_NAME,
    "master_plan": MASTER_PLAN_FILE,
    "timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
    "agents": {
        "opus": {"bin": "claude", "model": "opus", "default_max_turns": DEFAULT_OPUS_MAX_TURNS},
        "codex": {"bin": "codex", "default_sandbox": "read-only"},
    },
    "levels": {
        "milestone": _planning_level("milestone"),
        "phase": _planning_level("phase"),
        "task": _planning_level("task"),
        "implementation": {
            "agents": {"creator": "codex", "challenger": "opus", "tiebreaker": "opus"},
            "max_iterations": DEFAULT_MAX_ITERATIONS,
            "templates": {
                "draft": "impl/implement",
                "challenge": "impl/review",
                "refine": "impl/implement-fix",
                "tiebreak": "impl/tiebreak",
            },
            "creator_options": {"sandbox": "workspace-write"},
            "challenger_options": {"sandbox": "workspace-write", "schema": "review-decision.json"},
            "tiebreaker_options": {"sandbox": "workspace-write"},
        },
    },
    "scaffold": {
        "agent": "opus",
        "options": {"tools": list(_READ_ONLY_TOOLS), "schema": "scaffold.json"},
        "templates": {
            "milestones": "scaffold/milestones",
            "phases": "scaffold/phases",
            "tasks": "scaffold/tasks",
        },
    },
    "git": {
        "enabled": True,
        "branch_prefix": "phase/",
        "base_branch": "main",
        "auto_commit": True,
        "auto_pr": True,
        "best_effort": True,
    },
}


@dataclass(frozen=True)
class AgentCallOptions:
    tools: tuple[str, ...] = ()
    sandbox: Optional[SandboxMode] = None
    max_turns: Optional[int] = None
    schema: Optional[str] = None


@dataclass(frozen=True)
class LevelAgents:
    creator: AgentId
    challenger: AgentId
    tiebreaker: AgentId


@dataclass(frozen=True)
class LevelTemplates:
    draft: str
    challenge: str
    refine: str
    tiebreak: str


@dataclass(frozen=True)
class LevelConfig:
    """Roles, iteration budget, templates, and call options for one cycle kind."""

    agents: LevelAgents
    max_iterations: int
    templates: LevelTemplates
    creator_options: AgentCallOptions = field(default_factory=AgentCallOptions)
    challenger_options: AgentCallOptions = field(default_factory=AgentCallOptions)
    tiebreaker_options: AgentCallOptions = field(default_factory=AgentCallOptions)


@dataclass(frozen=True)
class OpusConfig:
    bin: str = "claude"
    model: str = "opus"
    default_max_turns: int = DEFAULT_OPUS_MAX_TURNS


@dataclass(frozen=True)
class CodexConfig:
    bin: str = "codex"
    default_sandbox: SandboxMode = "read-only"


@dataclass(frozen=True)
class AgentBinaryConfig:
    opus: OpusConfig = field(default_factory=OpusConfig)
    codex: CodexConfig = field(default_factory=CodexConfig)


@dataclass(frozen=True)
class ScaffoldTemplates:
    milestones: str
    phases: str
    tasks: str


@dataclass(frozen=True)
class ScaffoldConfig:
    agent: AgentId
    options: AgentCallOptions
    templates: ScaffoldTemplates


@dataclass(frozen=True)
class GitConfig:
    enabled: bool = True
    branch_prefix: str = "phase/"
    base_branch: str = "main"
    auto_commit: bool = True
    auto_pr: bool = True
    best_effort: bool = True


@dataclass(frozen=True)
class PipelineConfig:
    """Resolved configuration for one project, threaded through every component."""

    project_dir: Path
    project: str
    pipeline_dir: str
    master_plan: str
    timeout_seconds: int
    agents: AgentBinaryConfig
    levels: dict[str, LevelConfig]
    scaffold: ScaffoldConfig
    git: GitConfig
    dry_run: bool = False

    @property
    def pipeline_path(self) -> Path:
        return self.project_dir / self.pipeline_dir

    @property
    def state_path(self) -> Path:
        return self.pipeline_path / STATE_FILE

    @property
    def milestones_path(self) -> Path:
        return self.pipeline_path / MILESTONES_DIR

    @property
    def tmp_path(self) -> Path:
        return self.pipeline_path / TMP_DIR

    @property
    def templates_path(self) -> Path:
        return self.pipeline_path / TEMPLATES_DIR

    @property
    def master_plan_path(self) -> Path:
        return self.project_dir / self.master_plan

    @property
    def log_dir(self) -> Path:
        return self.project_dir / LOGS_DIR

    def level(self, name: str) -> LevelConfig:
        try:
            return self.levels[name]
        except KeyError:
            raise ConfigError(f"Unknown level '{name}' (available: {', '.join(LEVELS)})") from None

    def with_dry_run(self, dry_run: bool = True) -> "PipelineConfig":
        return replace(self, dry_run=dry_run)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _as_dict(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{where}: expected mapping, got {type(value).__name__}")
    return value


def _agent_id(value: Any, where: str) -> AgentId:
    text = str(value or "").strip()
    if text not in VALID_AGENTS:
        raise ConfigError(f"{where}: unknown agent '{text}' (expected one of {sorted(VALID_AGENTS)})")
    return text  # type: ignore[return-value]


def _positive_int(value: Any, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ConfigError(f"{where}: expected a positive integer, got {value!r}")
    return value


def _call_options(raw: Any, where: str) -> AgentCallOptions:
    data = _as_dict(raw, where)
    tools = data.get("tools") or []
    if not isinstance(tools, list) or not all(isinstance(t, str) for t in tools):
        raise ConfigError(f"{where}.tools: expected a list of strings")
    sandbox = data.get("sandbox")
    if sandbox is not None and sandbox not in VALID_SANDBOXES:
        raise ConfigError(f"{where}.sandbox: expected one of {sorted(VALID_SANDBOXES)}, got {sandbox!r}")
    max_turns = data.get("max_turns")
    if max_turns is not None:
        max_turns = _positive_int(max_turns, f"{where}.max_turns")
    schema = data.get("schema")
    return AgentCallOptions(
        tools=tuple(tools),
        sandbox=sandbox,
        max_turns=max_turns,
        schema=str(schema) if schema else None,
    )


def _level_config(raw: Any, where: str) -> LevelConfig:
    data = _as_dict(raw, where)
    agents = _as_dict(data.get("agents"), f"{where}.agents")
    templates = _as_dict(data.get("templates"), f"{where}.templates")
    missing = [k for k in ("draft", "challenge", "refine", "tiebreak") if not templates.get(k)]
    if missing:
        raise ConfigError(f"{where}.templates: missing {', '.join(missing)}")
    challenger_options = _call_options(data.get("challenger_options"), f"{where}.challenger_options")
    if not challenger_options.schema:
        raise ConfigError(f"{where}.challenger_options.schema is required")
    return LevelConfig(
        agents=LevelAgents(
            creator=_agent_id(agents.get("creator"), f"{where}.agents.creator"),
            challenger=_agent_id(agents.get("challenger"), f"{where}.agents.challenger"),
            tiebreaker=_agent_id(agents.get("tiebreaker"), f"{where}.agents.tiebreaker"),
        ),
        max_iterations=_positive_int(data.get("max_iterations"), f"{where}.max_iterations"),
        templates=LevelTemplates(
            draft=str(templates["draft"]),
            challenge=str(templates["challenge"]),
            refine=str(templates["refine"]),
            tiebreak=str(templates["tiebreak"]),
        ),
        creator_options=_call_options(data.get("creator_options"), f"{where}.creator_options"),
        challenger_options=challenger_options,
        tiebreaker_options=_call_options(data.get("tiebreaker_options"), f"{where}.tiebreaker_options"),
    )


def build_pipeline_config(project_dir: Path, raw: dict[str, Any], *, dry_run: bool = False) -> PipelineConfig:
    """Build a `PipelineConfig` from a (merged) raw mapping.

    Raises:
        ConfigError: If any value has the wrong shape.
    """
    data = _deep_merge(DEFAULT_CONFIG, raw)
    agents = _as_dict(data.get("agents"), "agents")
    opus = _as_dict(agents.get("opus"), "agents.opus")
    codex = _as_dict(agents.get("codex"), "agents.codex")
    codex_sandbox = codex.get("default_sandbox", "read-only")
    if codex_sandbox not in VALID_SANDBOXES:
        raise ConfigError(f"agents.codex.default_sandbox: unknown sandbox {codex_sandbox!r}")

    levels_raw = _as_dict(data.get("levels"), "levels")
    levels = {name: _level_config(levels_raw.get(name), f"levels.{name}") for name in LEVELS}

    scaffold = _as_dict(data.get("scaffold"), "scaffold")
    scaffold_templates = _as_dict(scaffold.get("templates"), "scaffold.templates")
    scaffold_options = _call_options(scaffold.get("options"), "scaffold.options")
    if not scaffold_options.schema:
        raise ConfigError("scaffold.options.schema is required")

    git = _as_dict(data.get("git"), "git")

    return PipelineConfig(
        project_dir=project_dir.resolve(),
        project=str(data.get("project") or DEFAULT_PROJECT_NAME),
        pipeline_dir=str(data.get("pipeline_dir") or STATE_DIR_NAME),
        master_plan=str(data.get("master_plan") or MASTER_PLAN_FILE),
        timeout_seconds=_positive_int(data.get("timeout_seconds"), "timeout_seconds"),
        agents=AgentBinaryConfig(
            opus=OpusConfig(
                bin=str(opus.get("bin") or "claude"),
                model=str(opus.get("model") or "opus"),
                default_max_turns=_positive_int(opus.get("default_max_turns"), "agents.opus.default_max_turns"),
            ),
            codex=CodexConfig(bin=str(codex.get("bin") or "codex"), default_sandbox=codex_sandbox),
        ),
        levels=levels,
        scaffold=ScaffoldConfig(
            agent=_agent_id(scaffold.get("agent"), "scaffold.agent"),
            options=scaffold_options,
            templates=ScaffoldTemplates(
                milestones=str(scaffold_templates.get("milestones") or "scaffold/milestones"),
                phases=str(scaffold_templates.get("phases") or "scaffold/phases"),
                tasks=str(scaffold_templates.get("tasks") or "scaffold/tasks"),
            ),
        ),
        git=GitConfig(
            enabled=bool(git.get("enabled", True)),
            branch_prefix=str(git.get("branch_prefix") or ""),
            base_branch=str(git.get("base_branch") or "main"),
            auto_commit=bool(git.get("auto_commit", True)),
            auto_pr=bool(git.get("auto_pr", True)),
            best_effort=bool(git.get("best_effort", True)),
        ),
        dry_run=dry_run,
    )


def load_pipeline_config(
    project_dir: Path,
    *,
    dry_run: bool = False,
    pipeline_dir: str = STATE_DIR_NAME,
) -> PipelineConfig:
    """Load the optional config file and resolve it over the defaults.

    Args:
        project_dir: Repository root directory.
        dry_run: Run without spawning agents or touching git.
        pipeline_dir: Directory (relative to `project_dir`) holding `config.yaml`.

    Returns:
        The resolved configuration. A missing file yields the defaults.

    Raises:
        ConfigError: If the file cannot be parsed or holds invalid values.
    """
    project_dir = project_dir.resolve()
    path = project_dir / pipeline_dir / CONFIG_FILE
    data, err = _load_data_with_error(path, {})
    if err:
        raise ConfigError(f"Unable to read pipeline config: {err}")
    data.setdefault("pipeline_dir", pipeline_dir)
    return build_pipeline_config(project_dir, data, dry_run=dry_run)
