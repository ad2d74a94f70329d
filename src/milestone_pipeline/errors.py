"""Exception hierarchy raised by the pipeline engine and its collaborators."""

from __future__ import annotations

from typing import Optional, Sequence


class PipelineError(Exception):
    """Base class for all pipeline failures."""


class IllegalTransitionError(PipelineError):
    """Raised when a status change is not allowed by the transition tables."""

    def __init__(
        self,
        kind: str,
        current: str,
        attempted: str,
        allowed: Sequence[str],
        path: Optional[str] = None,
    ) -> None:
        self.kind = kind
        self.current = current
        self.attempted = attempted
        self.allowed = tuple(allowed)
        self.path = path
        where = f" ({path})" if path else ""
        allowed_text = ", ".join(self.allowed) or "none"
        super().__init__(
            f"Invalid {kind} transition: {current} -> {attempted}{where}. Allowed: {allowed_text}"
        )


class StateError(PipelineError):
    """Persisted state could not be loaded."""

    remediation = "Run 'milestone-pipeline init' (or 'bootstrap') first."


class StateNotFoundError(StateError):
    pass


class StateCorruptError(StateError):
    remediation = "Fix or restore the state file, or re-create it with 'init --force'."


class ConfigError(PipelineError):
    pass


class TemplateError(PipelineError):
    pass


class AgentError(PipelineError):
    """Agent invocation failed; re-running the pipeline resumes safely."""


class AgentInvocationError(AgentError):
    def __init__(self, message: str, *, exit_code: Optional[int] = None, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class AgentTimeoutError(AgentError):
    def __init__(self, agent: str, timeout_seconds: int) -> None:
        super().__init__(f"{agent} timed out after {timeout_seconds}s")
        self.agent = agent
        self.timeout_seconds = timeout_seconds


class DecisionParseError(AgentError):
    pass


class ScaffoldError(PipelineError):
    pass


class GitOperationError(PipelineError):
    pass
