from datetime import date, datetime, timezone

import pytest

from onboardflow.contracts import StepDefinition, StepStatus, WorkflowTemplate
from onboardflow.errors import (
    AlreadyCompleted,
    DependencyNotSatisfied,
    InvalidTransition,
    RequiredStepCannotSkip,
)
from onboardflow.instantiate import instantiate
from onboardflow.steps import (
    complete_step,
    dependencies_satisfied,
    reopen_step,
    skip_step,
    start_step,
    started_dependents,
)

NOW = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def _steps(template):
    _, steps = instantiate(template, "emp-1", date(2024, 1, 1))
    return steps, {s.id: s for s in steps}


def test_start_fails_until_dependencies_finish(make_template):
    steps, by_id = _steps(make_template(sequential=True))

    with pytest.raises(DependencyNotSatisfied) as excinfo:
        start_step(steps[1], by_id, "hr-1")
    assert excinfo.value.pending == [steps[0].id]
    assert steps[1].status == StepStatus.NOT_STARTED

    assert start_step(steps[0], by_id, "hr-1", now=NOW) is True
    assert steps[0].status == StepStatus.IN_PROGRESS
    assert steps[0].started_by == "hr-1"
    assert steps[0].started_at == NOW

    complete_step(steps[0], by_id, "hr-1")
    assert dependencies_satisfied(steps[1], by_id)
    assert start_step(steps[1], by_id, "hr-1") is True


def test_skipped_dependency_counts_as_finished():
    template = WorkflowTemplate(
        name="Optional first",
        steps=[
            StepDefinition(order_index=1, name="welcome call", required=False),
            StepDefinition(order_index=2, name="paperwork", depends_on=[1]),
        ],
    )
    steps, by_id = _steps(template)
    skip_step(steps[0], "hr-1", "employee declined")
    assert start_step(steps[1], by_id, "hr-1") is True


def test_restarting_in_progress_step_is_absorbed(onboarding_template):
    steps, by_id = _steps(onboarding_template)
    start_step(steps[0], by_id, "hr-1", now=NOW)
    assert start_step(steps[0], by_id, "hr-2") is False
    assert steps[0].started_by == "hr-1"


def test_start_after_completion_raises(onboarding_template):
    steps, by_id = _steps(onboarding_template)
    complete_step(steps[0], by_id, "hr-1")
    with pytest.raises(AlreadyCompleted):
        start_step(steps[0], by_id, "hr-1")


def test_complete_records_actor_and_hours(onboarding_template):
    steps, by_id = _steps(onboarding_template)
    assert complete_step(steps[0], by_id, "hr-1", actual_hours=1.5, now=NOW) is True

    step = steps[0]
    assert step.status == StepStatus.COMPLETED
    assert step.completed_by == "hr-1"
    assert step.completed_at == NOW
    assert step.started_at == NOW
    assert step.actual_hours == 1.5


def test_duplicate_completion(onboarding_template):
    steps, by_id = _steps(onboarding_template)
    complete_step(steps[0], by_id, "hr-1")

    assert complete_step(steps[0], by_id, "hr-1") is False
    with pytest.raises(AlreadyCompleted):
        complete_step(steps[0], by_id, "hr-2")


def test_complete_from_not_started_checks_dependencies(make_template):
    steps, by_id = _steps(make_template(sequential=True))
    with pytest.raises(DependencyNotSatisfied):
        complete_step(steps[1], by_id, "hr-1")


def test_complete_requires_start_when_configured(onboarding_template):
    steps, by_id = _steps(onboarding_template)
    with pytest.raises(InvalidTransition):
        complete_step(steps[0], by_id, "hr-1", require_start=True)

    start_step(steps[0], by_id, "hr-1")
    assert complete_step(steps[0], by_id, "hr-1", require_start=True) is True


def test_required_step_needs_waiver_to_skip(onboarding_template):
    steps, _ = _steps(onboarding_template)
    with pytest.raises(RequiredStepCannotSkip):
        skip_step(steps[0], "hr-1", "not needed")
    assert steps[0].status == StepStatus.NOT_STARTED

    assert skip_step(steps[0], "hr-1", "contractor", waive=True) is True
    assert steps[0].status == StepStatus.SKIPPED
    assert steps[0].waived is True
    assert steps[0].skip_reason == "contractor"


def test_skipping_optional_step(onboarding_template):
    steps, _ = _steps(onboarding_template)
    orientation = steps[3]

    assert skip_step(orientation, "hr-1", "remote hire") is True
    assert orientation.waived is False
    assert skip_step(orientation, "hr-1", "remote hire") is False


def test_skipping_completed_step_raises(onboarding_template):
    steps, by_id = _steps(onboarding_template)
    complete_step(steps[3], by_id, "hr-1")
    with pytest.raises(AlreadyCompleted):
        skip_step(steps[3], "hr-1", "too late")


def test_reopen_resets_finished_step(onboarding_template):
    steps, by_id = _steps(onboarding_template)
    complete_step(steps[0], by_id, "hr-1", actual_hours=2)

    assert reopen_step(steps[0]) is True
    step = steps[0]
    assert step.status == StepStatus.NOT_STARTED
    assert step.completed_at is None
    assert step.completed_by is None
    assert step.started_at is None
    assert step.actual_hours is None

    with pytest.raises(InvalidTransition):
        reopen_step(step)


def test_in_progress_step_rechecks_dependencies(make_template):
    steps, by_id = _steps(make_template(sequential=True))
    complete_step(steps[0], by_id, "hr-1")
    start_step(steps[1], by_id, "hr-1")
    reopen_step(steps[0])

    with pytest.raises(DependencyNotSatisfied):
        start_step(steps[1], by_id, "hr-1")
    with pytest.raises(DependencyNotSatisfied):
        complete_step(steps[1], by_id, "hr-1")
    assert steps[1].status == StepStatus.IN_PROGRESS


def test_started_dependents(make_template):
    steps, by_id = _steps(make_template(sequential=True))
    complete_step(steps[0], by_id, "hr-1")
    assert started_dependents(steps[0], steps) == []

    start_step(steps[1], by_id, "hr-1")
    assert started_dependents(steps[0], steps) == [steps[1]]
