"""In-memory implementation of the workflow repository."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional, TypeVar

from pydantic import BaseModel

from ..contracts import (
    ChangeSet,
    InstanceQuery,
    Milestone,
    StepInstance,
    WorkflowException,
    WorkflowInstance,
    WorkflowIntegration,
    WorkflowTemplate,
    utcnow,
)
from ..errors import ConcurrentModification
from .repository import WorkflowRepository

ModelT = TypeVar("ModelT", bound=BaseModel)


def _copy(model: ModelT) -> ModelT:
    return model.model_copy(deep=True)


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._templates: Dict[str, WorkflowTemplate] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._steps: Dict[str, StepInstance] = {}
        self._integrations: Dict[str, WorkflowIntegration] = {}
        self._exceptions: Dict[str, WorkflowException] = {}
        self._milestones: Dict[str, Milestone] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        self._templates[template.id] = _copy(template)

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        template = self._templates.get(template_id)
        return _copy(template) if template else None

    async def list_templates(self) -> list[WorkflowTemplate]:
        return [_copy(t) for t in sorted(self._templates.values(), key=lambda t: t.name)]

    async def delete_template(self, template_id: str) -> None:
        self._templates.pop(template_id, None)

    # ------------------------------------------------------------------
    async def commit(
        self, changes: ChangeSet, expected_version: Optional[int]
    ) -> WorkflowInstance:
        instance = changes.instance
        async with self._lock:
            current = self._instances.get(instance.id)
            if expected_version is None:
                if current is not None:
                    raise ConcurrentModification(instance.id, expected_version)
            elif current is None or current.version != expected_version:
                raise ConcurrentModification(instance.id, expected_version)

            instance.version = (expected_version or 0) + 1
            instance.updated_at = utcnow()
            self._instances[instance.id] = _copy(instance)
            for step in changes.steps:
                self._steps[step.id] = _copy(step)
            for integration in changes.integrations:
                self._integrations[integration.id] = _copy(integration)
            for exception in changes.exceptions:
                self._exceptions[exception.id] = _copy(exception)
            for milestone in changes.milestones:
                self._milestones[milestone.id] = _copy(milestone)
        return _copy(instance)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        instance = self._instances.get(instance_id)
        return _copy(instance) if instance else None

    async def list_instances(
        self, query: Optional[InstanceQuery] = None
    ) -> list[WorkflowInstance]:
        query = query or InstanceQuery()
        matches = [i for i in self._instances.values() if query.matches(i)]
        matches.sort(key=lambda i: i.created_at, reverse=True)
        if query.limit is not None:
            matches = matches[: query.limit]
        return [_copy(i) for i in matches]

    async def delete_instance(self, instance_id: str) -> None:
        async with self._lock:
            self._instances.pop(instance_id, None)
            for store in (
                self._steps,
                self._integrations,
                self._exceptions,
                self._milestones,
            ):
                for record_id in [k for k, v in store.items() if v.instance_id == instance_id]:
                    del store[record_id]

    # ------------------------------------------------------------------
    async def get_steps(self, instance_id: str) -> list[StepInstance]:
        steps = [s for s in self._steps.values() if s.instance_id == instance_id]
        return [_copy(s) for s in sorted(steps, key=lambda s: s.order_index)]

    async def get_step(self, step_id: str) -> StepInstance | None:
        step = self._steps.get(step_id)
        return _copy(step) if step else None

    async def get_integrations(self, instance_id: str) -> list[WorkflowIntegration]:
        items = [i for i in self._integrations.values() if i.instance_id == instance_id]
        return [_copy(i) for i in sorted(items, key=lambda i: i.created_at)]

    async def get_integration(self, integration_id: str) -> WorkflowIntegration | None:
        integration = self._integrations.get(integration_id)
        return _copy(integration) if integration else None

    async def get_exceptions(self, instance_id: str) -> list[WorkflowException]:
        items = [e for e in self._exceptions.values() if e.instance_id == instance_id]
        return [_copy(e) for e in sorted(items, key=lambda e: e.created_at)]

    async def get_exception(self, exception_id: str) -> WorkflowException | None:
        exception = self._exceptions.get(exception_id)
        return _copy(exception) if exception else None

    async def get_milestones(self, instance_id: str) -> list[Milestone]:
        items = [m for m in self._milestones.values() if m.instance_id == instance_id]
        return [_copy(m) for m in sorted(items, key=lambda m: m.created_at)]

    async def get_milestone(self, milestone_id: str) -> Milestone | None:
        milestone = self._milestones.get(milestone_id)
        return _copy(milestone) if milestone else None
