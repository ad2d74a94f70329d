from __future__ import annotations

from typing import Optional, TypeVar, Union

from .errors import IllegalTransitionError
from .models import (
    MilestoneState,
    MilestoneStatus,
    PhaseState,
    PhaseStatus,
    TaskState,
    TaskStatus,
)

MILESTONE_TRANSITIONS: dict[MilestoneStatus, frozenset[MilestoneStatus]] = {
    MilestoneStatus.PENDING: frozenset({MilestoneStatus.PLANNING}),
    MilestoneStatus.PLANNING: frozenset({MilestoneStatus.SPEC_LOCKED}),
    MilestoneStatus.SPEC_LOCKED: frozenset({MilestoneStatus.IN_PROGRESS}),
    MilestoneStatus.IN_PROGRESS: frozenset({MilestoneStatus.COMPLETED}),
    MilestoneStatus.COMPLETED: frozenset(),
}

PHASE_TRANSITIONS: dict[PhaseStatus, frozenset[PhaseStatus]] = {
    PhaseStatus.PENDING: frozenset({PhaseStatus.PLANNING}),
    PhaseStatus.PLANNING: frozenset({PhaseStatus.SPEC_LOCKED}),
    PhaseStatus.SPEC_LOCKED: frozenset({PhaseStatus.IN_PROGRESS}),
    PhaseStatus.IN_PROGRESS: frozenset({PhaseStatus.COMPLETED}),
    PhaseStatus.COMPLETED: frozenset(),
}

TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PLANNING}),
    TaskStatus.PLANNING: frozenset({TaskStatus.PLAN_LOCKED}),
    TaskStatus.PLAN_LOCKED: frozenset({TaskStatus.IMPLEMENTING}),
    TaskStatus.IMPLEMENTING: frozenset({TaskStatus.COMPLETED}),
    TaskStatus.COMPLETED: frozenset(),
}

Entity = Union[MilestoneState, PhaseState, TaskState]
E = TypeVar("E", MilestoneState, PhaseState, TaskState)


def _table_for(entity: Entity) -> tuple[str, dict]:
    if isinstance(entity, MilestoneState):
        return "milestone", MILESTONE_TRANSITIONS
    if isinstance(entity, PhaseState):
        return "phase", PHASE_TRANSITIONS
    if isinstance(entity, TaskState):
        return "task", TASK_TRANSITIONS
    raise TypeError(f"No transition table for {type(entity).__name__}")


def allowed_next(entity: Entity) -> frozenset:
    """Return the statuses `entity` may move to from its current status."""
    _, table = _table_for(entity)
    return table[entity.status]


def transition(entity: E, new_status: Union[str, MilestoneStatus, PhaseStatus, TaskStatus], *, path: Optional[str] = None) -> E:
    """Move `entity` to `new_status` if its transition table allows it.

    Args:
        entity: Milestone, phase, or task state to update in place.
        new_status: Target status (enum member or its string value).
        path: Optional `m/p/t` label included in the error message.

    Returns:
        The same entity, updated.

    Raises:
        IllegalTransitionError: If the target is not reachable from the current
            status. The entity is left unchanged.
    """
    kind, table = _table_for(entity)
    current = entity.status
    allowed = table[current]
    target = next((s for s in allowed if s.value == str(getattr(new_status, "value", new_status))), None)
    if target is None:
        raise IllegalTransitionError(
            kind,
            current.value,
            str(getattr(new_status, "value", new_status)),
            sorted(s.value for s in allowed),
            path=path,
        )
    entity.status = target
    return entity
