"""Template validation and authoring operations."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import ValidationError

from .constants import DEFAULT_ASSIGNED_ROLE
from .contracts import (
    StepDefinition,
    TemplateStatus,
    WorkflowTemplate,
    WorkflowType,
    new_id,
    utcnow,
)
from .errors import InvalidTemplate, NotFound
from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


def validate_template(template: WorkflowTemplate) -> None:
    """Raise ``InvalidTemplate`` if ``template`` cannot be instantiated."""
    if not template.name.strip():
        raise InvalidTemplate("Template name is required")
    if not template.steps:
        raise InvalidTemplate(f"Template {template.name!r} has no step definitions")

    seen: set[int] = set()
    for step in template.steps:
        if step.order_index in seen:
            raise InvalidTemplate(
                f"Template {template.name!r} has duplicate order index {step.order_index}"
            )
        seen.add(step.order_index)

    for step in template.steps:
        if step.due_days < 0:
            raise InvalidTemplate(
                f"Step {step.name!r} has a negative due-day offset ({step.due_days})"
            )
        for dep in step.depends_on:
            # dependencies must point backwards, which keeps the graph acyclic
            if dep not in seen:
                raise InvalidTemplate(
                    f"Step {step.name!r} depends on unknown order index {dep}"
                )
            if dep >= step.order_index:
                raise InvalidTemplate(
                    f"Step {step.name!r} may only depend on earlier steps (got {dep})"
                )


def normalize_steps(steps: List[StepDefinition]) -> List[StepDefinition]:
    """Fill in positional order indices and default roles."""
    normalized = []
    for position, step in enumerate(steps, start=1):
        update = {}
        if step.order_index == 0:
            update["order_index"] = position
        if not step.assigned_role:
            update["assigned_role"] = DEFAULT_ASSIGNED_ROLE
        normalized.append(step.model_copy(update=update) if update else step)
    return normalized


def load_template_file(path: str | Path) -> WorkflowTemplate:
    """Read a template definition from a YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    try:
        template = WorkflowTemplate(**data)
    except ValidationError as exc:
        raise InvalidTemplate(f"Invalid template file {path}: {exc}") from exc
    template.steps = normalize_steps(template.steps)
    return template


class TemplateService:
    """Authoring operations over the template store."""

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def create(self, template: WorkflowTemplate) -> WorkflowTemplate:
        template.steps = normalize_steps(template.steps)
        validate_template(template)
        await self._repository.save_template(template)
        logger.info(f"Created template {template.name!r} ({template.id})")
        return template

    async def get(self, template_id: str) -> WorkflowTemplate:
        template = await self._repository.get_template(template_id)
        if template is None:
            raise NotFound("template", template_id)
        return template

    async def list(
        self,
        workflow_type: Optional[WorkflowType] = None,
        active_only: bool = False,
    ) -> list[WorkflowTemplate]:
        templates = await self._repository.list_templates()
        if workflow_type is not None:
            templates = [t for t in templates if t.workflow_type == workflow_type]
        if active_only:
            templates = [t for t in templates if t.status == TemplateStatus.ACTIVE]
        return templates

    async def update(
        self,
        template_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[TemplateStatus] = None,
        steps: Optional[List[StepDefinition]] = None,
    ) -> WorkflowTemplate:
        """Edit a template. Running instances keep their own step snapshots."""
        template = await self.get(template_id)
        if name is not None:
            template.name = name
        if description is not None:
            template.description = description
        if status is not None:
            template.status = status
        if steps is not None:
            template.steps = normalize_steps(steps)
        validate_template(template)
        template.updated_at = utcnow()
        await self._repository.save_template(template)
        logger.info(f"Updated template {template.name!r} ({template.id})")
        return template

    async def duplicate(
        self, template_id: str, new_name: str, created_by: Optional[str] = None
    ) -> WorkflowTemplate:
        source = await self.get(template_id)
        copy = source.model_copy(
            deep=True,
            update={
                "id": new_id(),
                "name": new_name,
                "description": f"{source.description} (Copy)",
                "status": TemplateStatus.DRAFT,
                "created_by": created_by,
                "created_at": utcnow(),
                "updated_at": utcnow(),
            },
        )
        return await self.create(copy)

    async def toggle(self, template_id: str) -> WorkflowTemplate:
        """Flip a template between active and inactive."""
        template = await self.get(template_id)
        template.status = (
            TemplateStatus.INACTIVE
            if template.status == TemplateStatus.ACTIVE
            else TemplateStatus.ACTIVE
        )
        template.updated_at = utcnow()
        await self._repository.save_template(template)
        return template

    async def delete(self, template_id: str) -> None:
        await self.get(template_id)
        await self._repository.delete_template(template_id)
        logger.info(f"Deleted template {template_id}")
