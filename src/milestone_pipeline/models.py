"""Define durable pipeline state and the result types returned by the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union


class MilestoneStatus(str, Enum):
    """Lifecycle of a milestone."""

    PENDING = "pending"
    PLANNING = "planning"
    SPEC_LOCKED = "spec_locked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PhaseStatus(str, Enum):
    """Lifecycle of a phase."""

    PENDING = "pending"
    PLANNING = "planning"
    SPEC_LOCKED = "spec_locked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TaskStatus(str, Enum):
    """Lifecycle of a task."""

    PENDING = "pending"
    PLANNING = "planning"
    PLAN_LOCKED = "plan_locked"
    IMPLEMENTING = "implementing"
    COMPLETED = "completed"


class Verdict(str, Enum):
    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"


def _coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Enum:
    if isinstance(value, enum_cls):
        return value
    if value is None:
        return default
    try:
        return enum_cls(str(value))
    except ValueError as exc:
        raise ValueError(f"Unknown {enum_cls.__name__} value: {value!r}") from exc


def _as_dict(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{field_name} must be an object, got {type(value).__name__}")
    return value


def _as_count(value: Any, field_name: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{field_name} must be a non-negative integer, got {value!r}")
    return value


def _as_optional_id(value: Any, field_name: str) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    raise ValueError(f"{field_name} must be a string or null, got {value!r}")


@dataclass
class IterationState:
    """Counters for one approval cycle of an entity."""

    iteration: int = 0
    total_attempts: int = 0
    tiebreaker_used: bool = False

    @classmethod
    def from_dict(cls, data: Any, field_name: str = "planning") -> "IterationState":
        data = _as_dict(data, field_name)
        tiebreaker_used = data.get("tiebreakerUsed", False)
        if not isinstance(tiebreaker_used, bool):
            raise ValueError(f"tiebreakerUsed must be a boolean, got {tiebreaker_used!r}")
        return cls(
            iteration=_as_count(data.get("iteration"), "iteration"),
            total_attempts=_as_count(data.get("totalAttempts"), "totalAttempts"),
            tiebreaker_used=tiebreaker_used,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "iteration": self.iteration,
            "totalAttempts": self.total_attempts,
            "tiebreakerUsed": self.tiebreaker_used,
        }

    def record(self, iterations: int, tiebreaker_used: bool) -> None:
        """Fold a finished cycle result into the counters."""
        self.iteration = iterations
        self.total_attempts += iterations
        self.tiebreaker_used = tiebreaker_used

    def rewind(self) -> None:
        """Clear the last cycle's outcome; `total_attempts` keeps accumulating."""
        self.iteration = 0
        self.tiebreaker_used = False


@dataclass
class TaskState:
    status: TaskStatus = TaskStatus.PENDING
    planning: IterationState = field(default_factory=IterationState)
    implementation: IterationState = field(default_factory=IterationState)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "TaskState":
        extra = dict(_as_dict(data, "task"))
        return cls(
            status=_coerce_enum(TaskStatus, extra.pop("status", None), TaskStatus.PENDING),  # type: ignore[arg-type]
            planning=IterationState.from_dict(extra.pop("planning", None)),
            implementation=IterationState.from_dict(extra.pop("implementation", None), "implementation"),
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "status": self.status.value,
                "planning": self.planning.to_dict(),
                "implementation": self.implementation.to_dict(),
            }
        )
        return data


@dataclass
class PhaseState:
    status: PhaseStatus = PhaseStatus.PENDING
    planning: IterationState = field(default_factory=IterationState)
    current_task: Optional[str] = None
    tasks: dict[str, TaskState] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "PhaseState":
        extra = dict(_as_dict(data, "phase"))
        tasks_raw = _as_dict(extra.pop("tasks", None), "tasks")
        return cls(
            status=_coerce_enum(PhaseStatus, extra.pop("status", None), PhaseStatus.PENDING),  # type: ignore[arg-type]
            planning=IterationState.from_dict(extra.pop("planning", None)),
            current_task=_as_optional_id(extra.pop("currentTask", None), "currentTask"),
            tasks={str(k): TaskState.from_dict(v) for k, v in tasks_raw.items()},
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "status": self.status.value,
                "planning": self.planning.to_dict(),
                "currentTask": self.current_task,
                "tasks": {k: v.to_dict() for k, v in self.tasks.items()},
            }
        )
        return data


@dataclass
class MilestoneState:
    status: MilestoneStatus = MilestoneStatus.PENDING
    planning: IterationState = field(default_factory=IterationState)
    current_phase: Optional[str] = None
    phases: dict[str, PhaseState] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "MilestoneState":
        extra = dict(_as_dict(data, "milestone"))
        phases_raw = _as_dict(extra.pop("phases", None), "phases")
        return cls(
            status=_coerce_enum(MilestoneStatus, extra.pop("status", None), MilestoneStatus.PENDING),  # type: ignore[arg-type]
            planning=IterationState.from_dict(extra.pop("planning", None)),
            current_phase=_as_optional_id(extra.pop("currentPhase", None), "currentPhase"),
            phases={str(k): PhaseState.from_dict(v) for k, v in phases_raw.items()},
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "status": self.status.value,
                "planning": self.planning.to_dict(),
                "currentPhase": self.current_phase,
                "phases": {k: v.to_dict() for k, v in self.phases.items()},
            }
        )
        return data


@dataclass
class PipelineState:
    """Root of the persisted document (`.pipeline/state.json`)."""

    project: str
    current_milestone: Optional[str] = None
    milestones: dict[str, MilestoneState] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineState":
        """Create a `PipelineState` from the persisted dictionary.

        Unknown keys at every level are kept in `extra` so they survive a
        load/save round trip.

        Raises:
            ValueError: If a status value is not a known enum member or a
                nested value has the wrong type.
        """
        extra = dict(data)
        milestones_raw = _as_dict(extra.pop("milestones", None), "milestones")
        return cls(
            project=str(extra.pop("project", "") or ""),
            current_milestone=_as_optional_id(extra.pop("currentMilestone", None), "currentMilestone"),
            milestones={str(k): MilestoneState.from_dict(v) for k, v in milestones_raw.items()},
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        data.update(
            {
                "project": self.project,
                "currentMilestone": self.current_milestone,
                "milestones": {k: v.to_dict() for k, v in self.milestones.items()},
            }
        )
        return data


@dataclass(frozen=True)
class ResumePoint:
    """Where a restarted run picks up. Missing IDs mean the parent level itself."""

    milestone_id: str
    phase_id: Optional[str] = None
    task_id: Optional[str] = None

    @property
    def label(self) -> str:
        return "/".join(part for part in (self.milestone_id, self.phase_id, self.task_id) if part)


@dataclass(frozen=True)
class Decision:
    verdict: Verdict
    feedback: str = ""

    @property
    def approved(self) -> bool:
        return self.verdict == Verdict.APPROVED


@dataclass(frozen=True)
class AgentResult:
    raw: str
    decision: Optional[Decision] = None


@dataclass(frozen=True)
class CycleResult:
    artifact: str
    iterations: int
    tiebreaker_used: bool


# Walk outcomes. `Continue` only travels between walker levels; `walk()`
# itself returns `Halted` or `Finished`.


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class Halted:
    """A phase completed and its PR awaits human review."""

    milestone_id: str
    phase_id: str

    @property
    def label(self) -> str:
        return f"{self.milestone_id}/{self.phase_id}"


@dataclass(frozen=True)
class Finished:
    pass


WalkOutcome = Union[Continue, Halted, Finished]
