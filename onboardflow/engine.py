"""Workflow engine: every public operation is one committed unit of work.

Each call reads the instance and its children, applies the pure transition
functions from :mod:`steps`, :mod:`integrations` and :mod:`tracking`,
re-derives progress, and writes everything back through a single
``repository.commit`` guarded by the instance version. Integration requests
produced by the call are published only after that commit succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Union

from . import progress
from .config import OnboardflowConfig, load_config
from .constants import SYSTEM_ACTOR
from .contracts import (
    TERMINAL_INSTANCE_STATUSES,
    ChangeSet,
    InstanceQuery,
    InstanceReport,
    InstanceStatus,
    IntegrationRequest,
    IntegrationStatus,
    Milestone,
    ProgressSummary,
    Severity,
    StepInstance,
    StepStatus,
    WorkflowException,
    WorkflowInstance,
    WorkflowIntegration,
    WorkflowTemplate,
    WorkflowType,
    utcnow,
)
from .errors import ActiveInstanceExists, InvalidTransition, NotFound
from .instantiate import instantiate as build_instance
from .integrations import (
    acknowledge,
    build_request_payload,
    default_integration_type,
    new_integration,
    record_dispatch,
    record_result,
)
from .persistence import WorkflowRepository
from .steps import (
    complete_step,
    dependencies_satisfied,
    reopen_step,
    skip_step,
    start_step,
    started_dependents,
)
from .templates import TemplateService
from .tracking import (
    complete_milestone,
    integration_failure,
    mark_celebration_sent,
    new_milestone,
    open_exception,
    resolve_exception,
)
from .transports import BaseTransport, get_transport

logger = logging.getLogger(__name__)


@dataclass
class _Work:
    """State loaded for one operation plus everything it changed."""

    instance: WorkflowInstance
    steps: List[StepInstance]
    exceptions: List[WorkflowException]
    milestones: List[Milestone]
    expected_version: Optional[int]
    changed_steps: Dict[str, StepInstance] = field(default_factory=dict)
    changed_integrations: Dict[str, WorkflowIntegration] = field(default_factory=dict)
    changed_exceptions: Dict[str, WorkflowException] = field(default_factory=dict)
    changed_milestones: Dict[str, Milestone] = field(default_factory=dict)
    requests: List[IntegrationRequest] = field(default_factory=list)

    @property
    def steps_by_id(self) -> Dict[str, StepInstance]:
        return {s.id: s for s in self.steps}

    def step(self, step_id: str) -> StepInstance:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise NotFound("step", step_id)

    def exception(self, exception_id: str) -> WorkflowException:
        for exception in self.exceptions:
            if exception.id == exception_id:
                return exception
        raise NotFound("exception", exception_id)

    def milestone(self, milestone_id: str) -> Milestone:
        for milestone in self.milestones:
            if milestone.id == milestone_id:
                return milestone
        raise NotFound("milestone", milestone_id)

    def add_exception(self, exception: WorkflowException) -> None:
        self.exceptions.append(exception)
        self.changed_exceptions[exception.id] = exception

    def add_milestone(self, milestone: Milestone) -> None:
        self.milestones.append(milestone)
        self.changed_milestones[milestone.id] = milestone

    @property
    def open_exceptions(self) -> int:
        return sum(1 for e in self.exceptions if e.is_open)

    def has_changes(self) -> bool:
        return bool(
            self.changed_steps
            or self.changed_integrations
            or self.changed_exceptions
            or self.changed_milestones
        )

    def change_set(self) -> ChangeSet:
        return ChangeSet(
            instance=self.instance,
            steps=list(self.changed_steps.values()),
            integrations=list(self.changed_integrations.values()),
            exceptions=list(self.changed_exceptions.values()),
            milestones=list(self.changed_milestones.values()),
        )


class OnboardingEngine:
    """Public entry points for running onboarding workflows."""

    def __init__(
        self,
        repository: WorkflowRepository,
        transport: Optional[BaseTransport] = None,
        config: Optional[OnboardflowConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._config = config or load_config()
        self._transport = transport or get_transport(config=self._config)
        self._clock = clock or utcnow
        self.templates = TemplateService(repository)

    @property
    def repository(self) -> WorkflowRepository:
        return self._repository

    @property
    def transport(self) -> BaseTransport:
        return self._transport

    def _today(self) -> date:
        return self._clock().date()

    # ------------------------------------------------------------------
    # Unit of work plumbing

    async def _get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self._repository.get_instance(instance_id)
        if instance is None:
            raise NotFound("instance", instance_id)
        return instance

    async def _open(self, instance_id: str) -> _Work:
        instance = await self._get_instance(instance_id)
        return _Work(
            instance=instance,
            steps=await self._repository.get_steps(instance_id),
            exceptions=await self._repository.get_exceptions(instance_id),
            milestones=await self._repository.get_milestones(instance_id),
            expected_version=instance.version,
        )

    async def _load_integration(self, integration_id: str) -> WorkflowIntegration:
        integration = await self._repository.get_integration(integration_id)
        if integration is None:
            raise NotFound("integration", integration_id)
        return integration

    @staticmethod
    def _ensure_not_cancelled(instance: WorkflowInstance) -> None:
        if instance.status == InstanceStatus.CANCELLED:
            raise InvalidTransition(f"Instance {instance.id} is cancelled")

    def _auto_trigger(self, work: _Work, now: datetime) -> None:
        """Dispatch every auto-trigger step whose dependencies are satisfied."""
        instance = work.instance
        if instance.status in progress.MANUAL_STATUSES:
            return
        steps_by_id = work.steps_by_id
        for step in work.steps:
            if not step.auto_trigger or step.status != StepStatus.NOT_STARTED:
                continue
            if not dependencies_satisfied(step, steps_by_id):
                continue

            start_step(step, steps_by_id, SYSTEM_ACTOR, now=now)
            integration = new_integration(
                instance.id,
                default_integration_type(step),
                build_request_payload(instance, step),
                step_id=step.id,
                max_retries=self._config.engine.default_max_retries,
            )
            work.requests.append(record_dispatch(integration, now))
            work.changed_steps[step.id] = step
            work.changed_integrations[integration.id] = integration
            logger.info(
                f"Auto-triggered step {step.name!r} ({step.id}) via "
                f"{integration.integration_type} integration {integration.id}"
            )

    def _apply(self, work: _Work, now: datetime) -> ProgressSummary:
        """Auto-trigger, re-derive progress and status, refresh milestones."""
        self._auto_trigger(work, now)

        before = work.instance.status
        today = now.date()
        summary = progress.recompute(
            work.instance, work.steps, today, open_exceptions=work.open_exceptions
        )
        for milestone in progress.refresh_milestones(work.milestones, today):
            work.changed_milestones[milestone.id] = milestone

        if work.instance.status != before:
            logger.info(
                f"Instance {work.instance.id} {before.value} -> "
                f"{work.instance.status.value} ({summary.overall_progress}%)"
            )
        return summary

    async def _commit(self, work: _Work) -> WorkflowInstance:
        instance = await self._repository.commit(work.change_set(), work.expected_version)
        for request in work.requests:
            await self._transport.publish(request.integration_type, request)
            logger.debug(
                f"Published attempt {request.attempt} of integration "
                f"{request.integration_id} on {request.integration_type}"
            )
        return instance

    # ------------------------------------------------------------------
    # Instantiation

    async def instantiate(
        self,
        template: Union[str, WorkflowTemplate],
        employee_id: str,
        start_date: date,
        buddy_id: Optional[str] = None,
        manager_id: Optional[str] = None,
        expected_completion_date: Optional[date] = None,
        created_by: Optional[str] = None,
        notes: str = "",
    ) -> WorkflowInstance:
        """Start a workflow for ``employee_id`` from a template or its id."""
        if isinstance(template, str):
            template = await self.templates.get(template)

        if self._config.engine.single_active_instance:
            existing = await self.get_active_instance(employee_id, template.workflow_type)
            if existing is not None:
                raise ActiveInstanceExists(employee_id, existing.id)

        instance, steps = build_instance(
            template,
            employee_id,
            start_date,
            buddy_id=buddy_id,
            manager_id=manager_id,
            expected_completion_date=expected_completion_date,
            created_by=created_by,
            notes=notes,
        )
        work = _Work(
            instance=instance,
            steps=steps,
            exceptions=[],
            milestones=[],
            expected_version=None,
            changed_steps={s.id: s for s in steps},
        )
        self._apply(work, self._clock())
        committed = await self._commit(work)
        logger.info(
            f"Instantiated {template.name!r} for employee {employee_id} "
            f"as {committed.id} with {len(steps)} steps"
        )
        return committed

    # ------------------------------------------------------------------
    # Step transitions

    async def start_step(self, instance_id: str, step_id: str, actor_id: str) -> StepInstance:
        work = await self._open(instance_id)
        self._ensure_not_cancelled(work.instance)
        step = work.step(step_id)
        now = self._clock()
        if not start_step(step, work.steps_by_id, actor_id, now=now):
            logger.debug(f"Step {step_id} already in progress")
            return step

        work.changed_steps[step.id] = step
        self._apply(work, now)
        await self._commit(work)
        logger.info(f"Step {step.name!r} ({step_id}) started by {actor_id}")
        return step

    async def complete_step(
        self,
        instance_id: str,
        step_id: str,
        actor_id: str,
        actual_hours: Optional[float] = None,
    ) -> StepInstance:
        work = await self._open(instance_id)
        self._ensure_not_cancelled(work.instance)
        step = work.step(step_id)
        now = self._clock()
        changed = complete_step(
            step,
            work.steps_by_id,
            actor_id,
            actual_hours=actual_hours,
            require_start=self._config.engine.require_explicit_start,
            now=now,
        )
        if not changed:
            logger.warning(f"Duplicate completion of step {step_id} by {actor_id} ignored")
            return step

        work.changed_steps[step.id] = step
        self._apply(work, now)
        await self._commit(work)
        logger.info(f"Step {step.name!r} ({step_id}) completed by {actor_id}")
        return step

    async def skip_step(
        self,
        instance_id: str,
        step_id: str,
        actor_id: str,
        reason: str,
        waive: bool = False,
    ) -> StepInstance:
        """Skip a step; required steps need ``waive=True``."""
        work = await self._open(instance_id)
        self._ensure_not_cancelled(work.instance)
        step = work.step(step_id)
        now = self._clock()
        if not skip_step(step, actor_id, reason, waive=waive, now=now):
            logger.warning(f"Duplicate skip of step {step_id} ignored")
            return step

        work.changed_steps[step.id] = step
        self._apply(work, now)
        await self._commit(work)
        logger.info(
            f"Step {step.name!r} ({step_id}) skipped by {actor_id}"
            + (" under waiver" if step.waived else "")
        )
        return step

    async def override_completion(
        self, instance_id: str, step_id: str, actor_id: str, note: str
    ) -> StepInstance:
        """Reset a finished step to ``not_started``; the only way progress drops.

        Steps that depend on it must be reopened first if they have started.
        """
        if not note or not note.strip():
            raise ValueError("An override note is required")
        work = await self._open(instance_id)
        self._ensure_not_cancelled(work.instance)
        step = work.step(step_id)
        blocked = started_dependents(step, work.steps)
        if blocked:
            raise InvalidTransition(
                f"Step {step_id} cannot be reopened while dependent steps are under way: "
                + ", ".join(s.id for s in blocked)
            )
        reopen_step(step)

        now = self._clock()
        work.instance.append_note(actor_id, f"Override on step {step.name!r}: {note}", at=now)
        work.changed_steps[step.id] = step
        self._apply(work, now)
        await self._commit(work)
        logger.info(f"Step {step.name!r} ({step_id}) reopened by {actor_id}")
        return step

    # ------------------------------------------------------------------
    # Progress

    async def recompute(self, instance_id: str) -> ProgressSummary:
        """Re-derive progress and status; writes only when something changed."""
        work = await self._open(instance_id)
        instance = work.instance
        before = (
            instance.status,
            instance.overall_progress,
            instance.actual_completion_date,
        )
        summary = self._apply(work, self._clock())
        after = (
            instance.status,
            instance.overall_progress,
            instance.actual_completion_date,
        )
        if before != after or work.has_changes():
            await self._commit(work)
        return summary

    async def get_status(self, instance_id: str) -> InstanceReport:
        """Read-only report with status derived as of today."""
        instance = await self._get_instance(instance_id)
        steps = await self._repository.get_steps(instance_id)
        exceptions = await self._repository.get_exceptions(instance_id)
        milestones = await self._repository.get_milestones(instance_id)
        open_exceptions = [e for e in exceptions if e.is_open]

        today = self._today()
        summary = progress.recompute(
            instance, steps, today, open_exceptions=len(open_exceptions)
        )
        progress.refresh_milestones(milestones, today)
        return InstanceReport(
            instance=instance,
            steps=steps,
            progress=summary,
            open_exceptions=open_exceptions,
            integrations=await self._repository.get_integrations(instance_id),
            milestones=milestones,
        )

    # ------------------------------------------------------------------
    # Integrations

    async def trigger_integration(
        self,
        instance_id: str,
        integration_type: str,
        request_payload: Optional[Dict[str, Any]] = None,
        step_id: Optional[str] = None,
        max_retries: Optional[int] = None,
        integration_id: Optional[str] = None,
    ) -> WorkflowIntegration:
        """Create (or re-dispatch) an integration and publish its request."""
        work = await self._open(instance_id)
        self._ensure_not_cancelled(work.instance)
        now = self._clock()

        if integration_id is not None:
            integration = await self._load_integration(integration_id)
            if integration.instance_id != instance_id:
                raise NotFound("integration", integration_id)
            if integration.status == IntegrationStatus.SUCCEEDED:
                logger.debug(f"Integration {integration_id} already succeeded")
                return integration
        else:
            if step_id is not None:
                work.step(step_id)
            if max_retries is None:
                max_retries = self._config.engine.default_max_retries
            integration = new_integration(
                instance_id,
                integration_type,
                request_payload,
                step_id=step_id,
                max_retries=max_retries,
            )

        work.requests.append(record_dispatch(integration, now))
        work.changed_integrations[integration.id] = integration
        self._apply(work, now)
        await self._commit(work)
        logger.info(
            f"Dispatched {integration.integration_type} integration {integration.id} "
            f"(attempt {integration.dispatch_count})"
        )
        return integration

    async def acknowledge_integration(
        self, integration_id: str, external_id: str
    ) -> WorkflowIntegration:
        """Record the provider's correlation id; status moves to in_progress."""
        instance_id = (await self._load_integration(integration_id)).instance_id
        work = await self._open(instance_id)
        integration = await self._load_integration(integration_id)
        if not acknowledge(integration, external_id, now=self._clock()):
            return integration

        work.changed_integrations[integration.id] = integration
        await self._commit(work)
        return integration

    async def record_integration_result(
        self,
        integration_id: str,
        success: bool,
        response_payload: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> WorkflowIntegration:
        """Apply a provider result.

        Success auto-completes the linked auto-trigger step. A failure at the
        retry cap marks the integration failed and opens one high-severity
        ``integration_failure`` exception against the same step.
        """
        instance_id = (await self._load_integration(integration_id)).instance_id
        work = await self._open(instance_id)
        integration = await self._load_integration(integration_id)
        now = self._clock()

        outcome = record_result(
            integration,
            success,
            response_payload=response_payload,
            error_message=error_message,
            now=now,
        )
        if not outcome.changed:
            logger.warning(f"Duplicate success for integration {integration_id} ignored")
            return integration
        work.changed_integrations[integration.id] = integration

        cancelled = work.instance.status == InstanceStatus.CANCELLED
        if outcome.succeeded and integration.step_id and not cancelled:
            step = work.step(integration.step_id)
            if step.auto_trigger and step.status == StepStatus.IN_PROGRESS:
                complete_step(step, work.steps_by_id, SYSTEM_ACTOR, now=now)
                work.changed_steps[step.id] = step
                logger.info(f"Step {step.name!r} ({step.id}) completed by integration")
        elif outcome.exhausted:
            work.add_exception(integration_failure(integration))
        elif outcome.retry_allowed:
            logger.info(
                f"Integration {integration_id} failed "
                f"({integration.retry_count}/{integration.max_retries}): {error_message}"
            )

        if not cancelled:
            self._apply(work, now)
        await self._commit(work)
        return integration

    # ------------------------------------------------------------------
    # Exceptions

    async def raise_exception(
        self,
        instance_id: str,
        exception_type: str,
        severity: Severity,
        title: str,
        description: str = "",
        step_id: Optional[str] = None,
        assigned_to: Optional[str] = None,
    ) -> WorkflowException:
        """Open an escalation record. Step and instance status stay untouched."""
        work = await self._open(instance_id)
        if step_id is not None:
            work.step(step_id)
        exception = open_exception(
            instance_id,
            exception_type,
            severity,
            title,
            description=description,
            step_id=step_id,
            assigned_to=assigned_to,
        )
        work.add_exception(exception)
        await self._commit(work)
        logger.info(
            f"Raised {exception.severity.value} {exception_type} exception {exception.id} "
            f"on instance {instance_id}"
        )
        return exception

    async def resolve_exception(
        self, exception_id: str, resolved_by: str, notes: str = ""
    ) -> WorkflowException:
        record = await self._repository.get_exception(exception_id)
        if record is None:
            raise NotFound("exception", exception_id)
        work = await self._open(record.instance_id)
        exception = work.exception(exception_id)
        resolve_exception(exception, resolved_by, notes, now=self._clock())
        work.changed_exceptions[exception.id] = exception
        await self._commit(work)
        logger.info(f"Exception {exception_id} resolved by {resolved_by}")
        return exception

    async def list_exceptions(
        self, instance_id: str, open_only: bool = False
    ) -> List[WorkflowException]:
        await self._get_instance(instance_id)
        exceptions = await self._repository.get_exceptions(instance_id)
        if open_only:
            exceptions = [e for e in exceptions if e.is_open]
        return exceptions

    # ------------------------------------------------------------------
    # Milestones

    async def create_milestone(
        self,
        instance_id: str,
        name: str,
        description: str = "",
        target_date: Optional[date] = None,
    ) -> Milestone:
        work = await self._open(instance_id)
        milestone = new_milestone(instance_id, name, description, target_date)
        progress.refresh_milestones([milestone], self._today())
        work.add_milestone(milestone)
        await self._commit(work)
        return milestone

    async def _milestone_work(self, milestone_id: str) -> _Work:
        record = await self._repository.get_milestone(milestone_id)
        if record is None:
            raise NotFound("milestone", milestone_id)
        return await self._open(record.instance_id)

    async def complete_milestone(self, milestone_id: str) -> Milestone:
        work = await self._milestone_work(milestone_id)
        milestone = work.milestone(milestone_id)
        if complete_milestone(milestone, self._today()):
            work.changed_milestones[milestone.id] = milestone
            await self._commit(work)
            logger.info(f"Milestone {milestone.name!r} ({milestone_id}) completed")
        return milestone

    async def mark_celebration_sent(self, milestone_id: str) -> bool:
        """``True`` the first time only; the caller then sends the notification."""
        work = await self._milestone_work(milestone_id)
        milestone = work.milestone(milestone_id)
        if not mark_celebration_sent(milestone):
            return False
        work.changed_milestones[milestone.id] = milestone
        await self._commit(work)
        return True

    # ------------------------------------------------------------------
    # Administrative operations

    async def hold(self, instance_id: str, actor_id: str, reason: str) -> WorkflowInstance:
        work = await self._open(instance_id)
        instance = work.instance
        if instance.status == InstanceStatus.ON_HOLD:
            return instance
        if instance.is_terminal:
            raise InvalidTransition(f"Instance {instance_id} is {instance.status.value}")

        now = self._clock()
        instance.status = InstanceStatus.ON_HOLD
        instance.append_note(actor_id, f"On hold: {reason}", at=now)
        self._apply(work, now)
        committed = await self._commit(work)
        logger.info(f"Instance {instance_id} put on hold by {actor_id}")
        return committed

    async def resume(self, instance_id: str, actor_id: str) -> WorkflowInstance:
        work = await self._open(instance_id)
        instance = work.instance
        if instance.is_terminal:
            raise InvalidTransition(f"Instance {instance_id} is {instance.status.value}")
        if instance.status != InstanceStatus.ON_HOLD:
            return instance

        now = self._clock()
        instance.status = InstanceStatus.ACTIVE
        instance.append_note(actor_id, "Resumed", at=now)
        self._apply(work, now)
        committed = await self._commit(work)
        logger.info(f"Instance {instance_id} resumed by {actor_id}")
        return committed

    async def cancel(self, instance_id: str, actor_id: str, reason: str) -> WorkflowInstance:
        work = await self._open(instance_id)
        instance = work.instance
        if instance.status == InstanceStatus.CANCELLED:
            return instance
        if instance.status == InstanceStatus.COMPLETED:
            raise InvalidTransition(f"Instance {instance_id} is already completed")

        now = self._clock()
        instance.status = InstanceStatus.CANCELLED
        instance.append_note(actor_id, f"Cancelled: {reason}", at=now)
        committed = await self._commit(work)
        logger.info(f"Instance {instance_id} cancelled by {actor_id}")
        return committed

    async def add_note(self, instance_id: str, actor_id: str, text: str) -> WorkflowInstance:
        if not text or not text.strip():
            raise ValueError("Note text is required")
        work = await self._open(instance_id)
        work.instance.append_note(actor_id, text, at=self._clock())
        return await self._commit(work)

    async def delete_instance(self, instance_id: str) -> None:
        """Remove an instance together with all of its child records."""
        await self._get_instance(instance_id)
        await self._repository.delete_instance(instance_id)
        logger.info(f"Deleted instance {instance_id}")

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        return await self._get_instance(instance_id)

    async def get_active_instance(
        self, employee_id: str, workflow_type: WorkflowType = WorkflowType.ONBOARDING
    ) -> Optional[WorkflowInstance]:
        """Latest non-terminal instance of ``workflow_type`` for the employee."""
        statuses = [s for s in InstanceStatus if s not in TERMINAL_INSTANCE_STATUSES]
        matches = await self._repository.list_instances(
            InstanceQuery(
                employee_id=employee_id,
                workflow_type=workflow_type,
                statuses=statuses,
                limit=1,
            )
        )
        return matches[0] if matches else None

    async def list_instances(
        self, query: Optional[InstanceQuery] = None
    ) -> List[WorkflowInstance]:
        return await self._repository.list_instances(query)
