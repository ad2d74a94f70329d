"""Shared constants for pipeline state, artifacts, and defaults."""

from __future__ import annotations

STATE_DIR_NAME = ".pipeline"
STATE_FILE = "state.json"
CONFIG_FILE = "config.yaml"
TEMPLATES_DIR = "templates"
TMP_DIR = "tmp"
MILESTONES_DIR = "milestones"
PHASES_DIR = "phases"
TASKS_DIR = "tasks"
LOGS_DIR = "logs"
RUN_LOG_FILE = "run.log"

MASTER_PLAN_FILE = "MASTER_PLAN.md"
SEED_SPEC_FILE = "spec.md"

DEFAULT_PROJECT_NAME = "unnamed-project"
DEFAULT_TIMEOUT_SECONDS = 20 * 60
DEFAULT_MAX_ITERATIONS = 3
DEFAULT_OPUS_MAX_TURNS = 25
DEFAULT_GIT_TIMEOUT_SECONDS = 30
STDERR_TAIL_CHARS = 500

# Artifact naming per cycle kind.
SPEC_DRAFT_PREFIX = "spec-v"
PLAN_DRAFT_PREFIX = "plan-v"
IMPL_DRAFT_PREFIX = "impl-notes-v"
FEEDBACK_PREFIX = "feedback-v"
REVIEW_PREFIX = "review-v"
SPEC_LOCKED_FILE = "spec-locked.md"
PLAN_LOCKED_FILE = "plan-locked.md"
IMPL_LOCKED_FILE = "impl-final.md"
TIEBREAK_FILE = "tiebreak.md"
IMPL_TIEBREAK_FILE = "tiebreak-impl.md"

# Artifact prefixes removed by the reset command.
SPEC_ARTIFACT_PREFIXES = (SPEC_DRAFT_PREFIX, FEEDBACK_PREFIX, SPEC_LOCKED_FILE, "tiebreak")
TASK_ARTIFACT_PREFIXES = (
    PLAN_DRAFT_PREFIX,
    FEEDBACK_PREFIX,
    PLAN_LOCKED_FILE,
    "tiebreak",
    IMPL_DRAFT_PREFIX,
    REVIEW_PREFIX,
    IMPL_LOCKED_FILE,
)
IMPL_ARTIFACT_PREFIXES = (IMPL_DRAFT_PREFIX, REVIEW_PREFIX, IMPL_LOCKED_FILE, "tiebreak-impl")

# Environment variables stripped before spawning agent CLIs so nested sessions
# do not inherit the parent's session markers.
AGENT_ENV_BLOCKLIST = ("CLAUDECODE", "CLAUDE_CODE")
