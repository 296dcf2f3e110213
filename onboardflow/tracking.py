"""Exception and milestone bookkeeping.

Exceptions are escalation signals: raising or resolving one never changes
step or instance status. Milestones are checkpoints independent of steps.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from .constants import INTEGRATION_FAILURE
from .contracts import (
    Milestone,
    MilestoneStatus,
    ResolutionStatus,
    Severity,
    WorkflowException,
    WorkflowIntegration,
    utcnow,
)
from .errors import AlreadyResolved, InvalidTransition


def open_exception(
    instance_id: str,
    exception_type: str,
    severity: Severity,
    title: str,
    description: str = "",
    step_id: Optional[str] = None,
    integration_id: Optional[str] = None,
    assigned_to: Optional[str] = None,
) -> WorkflowException:
    if not title.strip():
        raise ValueError("Exception title is required")
    return WorkflowException(
        instance_id=instance_id,
        step_id=step_id,
        integration_id=integration_id,
        exception_type=exception_type,
        severity=severity,
        title=title,
        description=description,
        assigned_to=assigned_to,
    )


def integration_failure(integration: WorkflowIntegration) -> WorkflowException:
    """The high-severity exception raised when an integration is exhausted."""
    return open_exception(
        instance_id=integration.instance_id,
        step_id=integration.step_id,
        integration_id=integration.id,
        exception_type=INTEGRATION_FAILURE,
        severity=Severity.HIGH,
        title=f"{integration.integration_type} integration failed",
        description=(
            f"Gave up after {integration.retry_count} failed attempts: "
            f"{integration.error_message or 'no error message'}"
        ),
    )


def resolve_exception(
    exception: WorkflowException,
    resolved_by: str,
    notes: str = "",
    now: Optional[datetime] = None,
) -> None:
    if exception.resolution_status == ResolutionStatus.RESOLVED:
        raise AlreadyResolved(
            f"Exception {exception.id} was already resolved by {exception.resolved_by}"
        )
    exception.resolution_status = ResolutionStatus.RESOLVED
    exception.resolved_by = resolved_by
    exception.resolved_at = now or utcnow()
    exception.resolution_notes = notes


def new_milestone(
    instance_id: str,
    name: str,
    description: str = "",
    target_date: Optional[date] = None,
) -> Milestone:
    if not name.strip():
        raise ValueError("Milestone name is required")
    return Milestone(
        instance_id=instance_id,
        name=name,
        description=description,
        target_date=target_date,
    )


def complete_milestone(milestone: Milestone, today: date) -> bool:
    if milestone.status == MilestoneStatus.COMPLETED:
        return False
    milestone.status = MilestoneStatus.COMPLETED
    milestone.completed_date = today
    return True


def mark_celebration_sent(milestone: Milestone) -> bool:
    """Returns ``True`` only the first time, when a notification should go out."""
    if milestone.status != MilestoneStatus.COMPLETED:
        raise InvalidTransition(
            f"Milestone {milestone.id} is {milestone.status.value}; only completed "
            "milestones can be celebrated"
        )
    if milestone.celebration_sent:
        return False
    milestone.celebration_sent = True
    return True
