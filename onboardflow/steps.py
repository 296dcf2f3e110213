"""Step lifecycle: not_started -> in_progress -> completed, or -> skipped.

Each transition function mutates the given step in place and returns
``True`` when state changed, ``False`` when the call was an identical
resubmission that was absorbed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Mapping, Optional

from .contracts import StepInstance, StepStatus, utcnow
from .errors import (
    AlreadyCompleted,
    DependencyNotSatisfied,
    InvalidTransition,
    RequiredStepCannotSkip,
)


def unfinished_dependencies(
    step: StepInstance, steps_by_id: Mapping[str, StepInstance]
) -> list[str]:
    """Return ids of dependencies that are neither completed nor skipped."""
    pending = []
    for dep_id in step.depends_on:
        dep = steps_by_id.get(dep_id)
        if dep is None or not dep.is_done:
            pending.append(dep_id)
    return pending


def dependencies_satisfied(
    step: StepInstance, steps_by_id: Mapping[str, StepInstance]
) -> bool:
    return not unfinished_dependencies(step, steps_by_id)


def _check_dependencies(
    step: StepInstance, steps_by_id: Mapping[str, StepInstance]
) -> None:
    pending = unfinished_dependencies(step, steps_by_id)
    if pending:
        raise DependencyNotSatisfied(step.id, pending)


def start_step(
    step: StepInstance,
    steps_by_id: Mapping[str, StepInstance],
    actor_id: str,
    now: Optional[datetime] = None,
) -> bool:
    if step.is_done:
        raise AlreadyCompleted(f"Step {step.id} is already {step.status.value}")

    _check_dependencies(step, steps_by_id)
    if step.status == StepStatus.IN_PROGRESS:
        return False
    step.status = StepStatus.IN_PROGRESS
    step.started_at = now or utcnow()
    step.started_by = actor_id
    return True


def complete_step(
    step: StepInstance,
    steps_by_id: Mapping[str, StepInstance],
    actor_id: str,
    actual_hours: Optional[float] = None,
    require_start: bool = False,
    now: Optional[datetime] = None,
) -> bool:
    if step.status == StepStatus.COMPLETED:
        if step.completed_by == actor_id:
            return False
        raise AlreadyCompleted(
            f"Step {step.id} was already completed by {step.completed_by}"
        )
    if step.status == StepStatus.SKIPPED:
        raise AlreadyCompleted(f"Step {step.id} was skipped")

    if step.status == StepStatus.NOT_STARTED and require_start:
        raise InvalidTransition(f"Step {step.id} must be started before completion")
    _check_dependencies(step, steps_by_id)
    if step.status == StepStatus.NOT_STARTED:
        step.started_at = step.started_at or now or utcnow()
        step.started_by = step.started_by or actor_id

    step.status = StepStatus.COMPLETED
    step.completed_at = now or utcnow()
    step.completed_by = actor_id
    if actual_hours is not None:
        step.actual_hours = actual_hours
    return True


def skip_step(
    step: StepInstance,
    actor_id: str,
    reason: str,
    waive: bool = False,
    now: Optional[datetime] = None,
) -> bool:
    """Skip a step. Required steps need ``waive=True``."""
    if step.status == StepStatus.SKIPPED:
        return False
    if step.status == StepStatus.COMPLETED:
        raise AlreadyCompleted(f"Step {step.id} is already completed")
    if step.required and not waive:
        raise RequiredStepCannotSkip(
            f"Step {step.name!r} is required and cannot be skipped without a waiver"
        )

    step.status = StepStatus.SKIPPED
    step.completed_at = now or utcnow()
    step.completed_by = actor_id
    step.skip_reason = reason
    step.waived = step.required
    return True


def reopen_step(step: StepInstance) -> bool:
    """Administrative reset of a finished step back to ``not_started``."""
    if not step.is_done:
        raise InvalidTransition(f"Step {step.id} is not finished; nothing to override")

    step.status = StepStatus.NOT_STARTED
    step.started_at = None
    step.started_by = None
    step.completed_at = None
    step.completed_by = None
    step.actual_hours = None
    step.skip_reason = None
    step.waived = False
    return True


def started_dependents(
    step: StepInstance, steps: Iterable[StepInstance]
) -> list[StepInstance]:
    """Steps that depend on ``step`` and have already left ``not_started``."""
    return [
        s
        for s in steps
        if step.id in s.depends_on and s.status != StepStatus.NOT_STARTED
    ]
