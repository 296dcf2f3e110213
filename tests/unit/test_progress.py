from datetime import date

import pytest

from onboardflow.contracts import (
    InstanceStatus,
    Milestone,
    MilestoneStatus,
    StepDefinition,
    StepStatus,
    WorkflowTemplate,
)
from onboardflow.instantiate import instantiate
from onboardflow.progress import (
    compute_progress,
    current_stage,
    derive_status,
    recompute,
    refresh_milestones,
    summarize,
)


def _template(required_flags):
    return WorkflowTemplate(
        name="Flags",
        steps=[
            StepDefinition(order_index=i + 1, name=f"step {i + 1}", required=flag, due_days=i)
            for i, flag in enumerate(required_flags)
        ],
    )


def _done(step):
    step.status = StepStatus.COMPLETED


def test_progress_counts_required_steps_rounded_half_up():
    _, steps = instantiate(_template([True] * 3), "emp-1", date(2024, 1, 1))
    assert compute_progress(steps) == 0
    _done(steps[0])
    assert compute_progress(steps) == 33
    _done(steps[1])
    assert compute_progress(steps) == 67
    _done(steps[2])
    assert compute_progress(steps) == 100


def test_progress_rounds_exact_halves_up():
    _, steps = instantiate(_template([True] * 8), "emp-1", date(2024, 1, 1))
    _done(steps[0])
    assert compute_progress(steps) == 13


def test_optional_steps_do_not_move_progress(onboarding_template):
    _, steps = instantiate(onboarding_template, "emp-1", date(2024, 1, 1))
    _done(steps[3])
    assert compute_progress(steps) == 0


def test_all_optional_template_counts_every_step():
    _, steps = instantiate(_template([False, False]), "emp-1", date(2024, 1, 1))
    _done(steps[0])
    assert compute_progress(steps) == 50


def test_waived_required_step_counts_as_done(onboarding_template):
    _, steps = instantiate(onboarding_template, "emp-1", date(2024, 1, 1))
    steps[0].status = StepStatus.SKIPPED
    steps[0].waived = True
    assert compute_progress(steps) == 33


@pytest.mark.parametrize(
    "status,progress,label",
    [
        (InstanceStatus.NOT_STARTED, 0, "pre-boarding"),
        (InstanceStatus.ACTIVE, 0, "pre-boarding"),
        (InstanceStatus.ACTIVE, 24, "pre-boarding"),
        (InstanceStatus.ACTIVE, 25, "day-1"),
        (InstanceStatus.ACTIVE, 50, "week-1"),
        (InstanceStatus.OVERDUE, 75, "month-1"),
        (InstanceStatus.ACTIVE, 99, "month-1"),
        (InstanceStatus.ACTIVE, 100, "completed"),
        (InstanceStatus.COMPLETED, 100, "completed"),
    ],
)
def test_current_stage_labels(status, progress, label):
    assert current_stage(status, progress) == label


def test_derived_status(onboarding_template):
    instance, steps = instantiate(onboarding_template, "emp-1", date(2024, 1, 1))

    assert derive_status(instance, steps, 0, date(2024, 1, 2)) == InstanceStatus.ACTIVE
    # documents and system access were due on the 2nd
    assert derive_status(instance, steps, 0, date(2024, 1, 3)) == InstanceStatus.OVERDUE

    for step in steps[:3]:
        _done(step)
    assert derive_status(instance, steps, 100, date(2024, 2, 1)) == InstanceStatus.COMPLETED


def test_overdue_optional_step_does_not_make_instance_overdue(onboarding_template):
    instance, steps = instantiate(onboarding_template, "emp-1", date(2024, 1, 1))
    for step in steps[:3]:
        step.due_date = date(2024, 2, 1)
    assert derive_status(instance, steps, 0, date(2024, 1, 5)) == InstanceStatus.ACTIVE


def test_manual_statuses_are_never_overwritten(onboarding_template):
    instance, steps = instantiate(onboarding_template, "emp-1", date(2024, 1, 1))
    for step in steps[:3]:
        _done(step)
    for manual in (InstanceStatus.ON_HOLD, InstanceStatus.CANCELLED):
        instance.status = manual
        recompute(instance, steps, date(2024, 1, 3))
        assert instance.status == manual
        assert instance.overall_progress == 100


def test_recompute_sets_completion_date_once_and_clears_on_reopen(onboarding_template):
    instance, steps = instantiate(onboarding_template, "emp-1", date(2024, 1, 1))
    for step in steps[:3]:
        _done(step)

    recompute(instance, steps, date(2024, 1, 5))
    assert instance.status == InstanceStatus.COMPLETED
    assert instance.actual_completion_date == date(2024, 1, 5)

    recompute(instance, steps, date(2024, 1, 9))
    assert instance.actual_completion_date == date(2024, 1, 5)

    steps[1].status = StepStatus.NOT_STARTED
    summary = recompute(instance, steps, date(2024, 1, 6))
    assert instance.status == InstanceStatus.ACTIVE
    assert instance.actual_completion_date is None
    assert summary.overall_progress == 67


def test_summarize_counts_and_schedule(onboarding_template):
    instance, steps = instantiate(onboarding_template, "emp-1", date(2024, 1, 1))
    steps[0].status = StepStatus.COMPLETED
    steps[1].status = StepStatus.IN_PROGRESS
    steps[3].status = StepStatus.SKIPPED

    summary = summarize(instance, steps, date(2024, 1, 3), open_exceptions=2)
    assert summary.total_steps == 4
    assert summary.required_total == 3
    assert summary.required_done == 1
    assert summary.optional_total == 1
    assert summary.optional_done == 1
    assert summary.completed == 1
    assert summary.in_progress == 1
    assert summary.pending == 1
    assert summary.skipped == 1
    assert summary.overdue == 1
    assert summary.overall_progress == 33
    assert summary.current_stage == "day-1"
    assert summary.days_elapsed == 2
    assert summary.expected_days == 7
    assert summary.is_on_track is True
    assert summary.open_exceptions == 2

    late = summarize(instance, steps, date(2024, 1, 20))
    assert late.is_on_track is False


def test_refresh_milestones_marks_missed_targets():
    missed = Milestone(instance_id="i", name="First week", target_date=date(2024, 1, 7))
    upcoming = Milestone(instance_id="i", name="First month", target_date=date(2024, 2, 1))
    done = Milestone(
        instance_id="i",
        name="Day one",
        target_date=date(2024, 1, 1),
        status=MilestoneStatus.COMPLETED,
    )

    changed = refresh_milestones([missed, upcoming, done], date(2024, 1, 10))
    assert changed == [missed]
    assert missed.status == MilestoneStatus.MISSED
    assert upcoming.status == MilestoneStatus.PENDING
    assert done.status == MilestoneStatus.COMPLETED

    missed.target_date = date(2024, 1, 31)
    assert refresh_milestones([missed], date(2024, 1, 10)) == [missed]
    assert missed.status == MilestoneStatus.PENDING
