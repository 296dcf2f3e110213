"""Progress aggregation and derived instance status."""

from __future__ import annotations

from datetime import date
from typing import Iterable, List, Sequence

from .constants import PROGRESS_STAGES
from .contracts import (
    InstanceStatus,
    Milestone,
    MilestoneStatus,
    ProgressSummary,
    StepInstance,
    StepStatus,
    WorkflowInstance,
)

# Statuses the aggregator must never overwrite.
MANUAL_STATUSES = frozenset({InstanceStatus.ON_HOLD, InstanceStatus.CANCELLED})


def _percent(done: int, total: int) -> int:
    """Integer percentage rounded half up."""
    if total <= 0:
        return 0
    return (200 * done + total) // (2 * total)


def compute_progress(steps: Sequence[StepInstance]) -> int:
    """Completed-or-waived required steps over all required steps.

    Templates without any required step fall back to counting every step.
    """
    counted = [s for s in steps if s.required] or list(steps)
    return _percent(sum(1 for s in counted if s.is_done), len(counted))


def current_stage(status: InstanceStatus, progress: int) -> str:
    if status == InstanceStatus.NOT_STARTED:
        return "pre-boarding"
    if status == InstanceStatus.COMPLETED:
        return "completed"
    for bound, label in PROGRESS_STAGES:
        if progress < bound:
            return label
    return "completed"


def derive_status(
    instance: WorkflowInstance, steps: Sequence[StepInstance], progress: int, today: date
) -> InstanceStatus:
    if instance.status in MANUAL_STATUSES:
        return instance.status
    required = [s for s in steps if s.required] or list(steps)
    if progress == 100 and all(s.is_done for s in required):
        return InstanceStatus.COMPLETED
    if any(s.required and s.is_overdue(today) for s in steps):
        return InstanceStatus.OVERDUE
    return InstanceStatus.ACTIVE


def summarize(
    instance: WorkflowInstance,
    steps: Sequence[StepInstance],
    today: date,
    open_exceptions: int = 0,
) -> ProgressSummary:
    required = [s for s in steps if s.required]
    optional = [s for s in steps if not s.required]
    progress = compute_progress(steps)

    expected_days = None
    is_on_track = True
    days_elapsed = max(0, (today - instance.start_date).days)
    if instance.expected_completion_date is not None:
        expected_days = (instance.expected_completion_date - instance.start_date).days
        if instance.status != InstanceStatus.COMPLETED:
            is_on_track = days_elapsed <= expected_days

    return ProgressSummary(
        instance_id=instance.id,
        total_steps=len(steps),
        required_total=len(required),
        required_done=sum(1 for s in required if s.is_done),
        optional_total=len(optional),
        optional_done=sum(1 for s in optional if s.is_done),
        completed=sum(1 for s in steps if s.status == StepStatus.COMPLETED),
        in_progress=sum(1 for s in steps if s.status == StepStatus.IN_PROGRESS),
        pending=sum(1 for s in steps if s.status == StepStatus.NOT_STARTED),
        skipped=sum(1 for s in steps if s.status == StepStatus.SKIPPED),
        overdue=sum(1 for s in steps if s.is_overdue(today)),
        overall_progress=progress,
        current_stage=current_stage(instance.status, progress),
        days_elapsed=days_elapsed,
        expected_days=expected_days,
        is_on_track=is_on_track,
        open_exceptions=open_exceptions,
    )


def refresh_milestones(milestones: Iterable[Milestone], today: date) -> List[Milestone]:
    """Derive missed/pending milestone status; returns the ones that changed."""
    changed = []
    for milestone in milestones:
        if milestone.status == MilestoneStatus.COMPLETED:
            continue
        missed = milestone.target_date is not None and milestone.target_date < today
        status = MilestoneStatus.MISSED if missed else MilestoneStatus.PENDING
        if status != milestone.status:
            milestone.status = status
            changed.append(milestone)
    return changed


def recompute(
    instance: WorkflowInstance,
    steps: Sequence[StepInstance],
    today: date,
    open_exceptions: int = 0,
) -> ProgressSummary:
    """Refresh ``overall_progress`` and derived status on ``instance``."""
    progress = compute_progress(steps)
    status = derive_status(instance, steps, progress, today)

    instance.overall_progress = progress
    if status == InstanceStatus.COMPLETED:
        if instance.actual_completion_date is None:
            instance.actual_completion_date = today
    elif instance.status == InstanceStatus.COMPLETED:
        # only reachable after an administrative override reopened a step
        instance.actual_completion_date = None
    instance.status = status

    return summarize(instance, steps, today, open_exceptions)
