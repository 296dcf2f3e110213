"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import (
    ChangeSet,
    InstanceQuery,
    Milestone,
    StepInstance,
    WorkflowException,
    WorkflowInstance,
    WorkflowIntegration,
    WorkflowTemplate,
)


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    ``commit`` is the only write path for instance state. It must be atomic
    and compare the stored instance ``version`` against ``expected_version``
    (``None`` meaning the instance must not exist yet), raising
    ``ConcurrentModification`` on mismatch.
    """

    # templates
    async def save_template(self, template: WorkflowTemplate) -> None:
        """Insert or replace a template and its step definitions."""

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        """Retrieve a template by id."""

    async def list_templates(self) -> list[WorkflowTemplate]:
        """Return all templates."""

    async def delete_template(self, template_id: str) -> None:
        """Remove a template. Instances keep their snapshots."""

    # instances
    async def commit(
        self, changes: ChangeSet, expected_version: Optional[int]
    ) -> WorkflowInstance:
        """Atomically write one unit of work; returns the stored instance."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve the instance by id."""

    async def list_instances(
        self, query: Optional[InstanceQuery] = None
    ) -> list[WorkflowInstance]:
        """Return matching instances, newest first."""

    async def delete_instance(self, instance_id: str) -> None:
        """Delete an instance and everything that references it."""

    # children
    async def get_steps(self, instance_id: str) -> list[StepInstance]:
        """Steps of an instance ordered by ``order_index``."""

    async def get_step(self, step_id: str) -> StepInstance | None:
        """Retrieve a single step by id."""

    async def get_integrations(self, instance_id: str) -> list[WorkflowIntegration]:
        """Integrations of an instance, oldest first."""

    async def get_integration(self, integration_id: str) -> WorkflowIntegration | None:
        """Retrieve a single integration by id."""

    async def get_exceptions(self, instance_id: str) -> list[WorkflowException]:
        """Exceptions of an instance, oldest first."""

    async def get_exception(self, exception_id: str) -> WorkflowException | None:
        """Retrieve a single exception by id."""

    async def get_milestones(self, instance_id: str) -> list[Milestone]:
        """Milestones of an instance, oldest first."""

    async def get_milestone(self, milestone_id: str) -> Milestone | None:
        """Retrieve a single milestone by id."""
