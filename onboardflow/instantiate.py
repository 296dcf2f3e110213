"""Turn a workflow template into a running instance."""

from __future__ import annotations

import copy
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from .contracts import (
    InstanceStatus,
    StepInstance,
    TemplateStatus,
    WorkflowInstance,
    WorkflowTemplate,
)
from .errors import InvalidTemplate
from .templates import validate_template


def instantiate(
    template: WorkflowTemplate,
    employee_id: str,
    start_date: date,
    buddy_id: Optional[str] = None,
    manager_id: Optional[str] = None,
    expected_completion_date: Optional[date] = None,
    created_by: Optional[str] = None,
    notes: str = "",
) -> Tuple[WorkflowInstance, List[StepInstance]]:
    """Build an instance and one step per definition of ``template``.

    Step fields are copied, so later template edits never reach the
    returned steps. Dependencies are resolved into step instance ids here
    and never re-derived from ordering afterwards.
    """
    validate_template(template)
    if template.status == TemplateStatus.INACTIVE:
        raise InvalidTemplate(f"Template {template.name!r} is inactive")

    definitions = template.ordered_steps()
    if expected_completion_date is None:
        expected_completion_date = start_date + timedelta(
            days=max(d.due_days for d in definitions)
        )

    instance = WorkflowInstance(
        template_id=template.id,
        template_name=template.name,
        workflow_type=template.workflow_type,
        employee_id=employee_id,
        start_date=start_date,
        expected_completion_date=expected_completion_date,
        status=InstanceStatus.ACTIVE,
        overall_progress=0,
        assigned_buddy_id=buddy_id,
        assigned_manager_id=manager_id,
        notes=notes,
        created_by=created_by,
    )

    steps: List[StepInstance] = []
    ids_by_order: Dict[int, str] = {}
    previous: Optional[StepInstance] = None
    for definition in definitions:
        depends_on = [ids_by_order[order] for order in definition.depends_on]
        if template.sequential and previous is not None and previous.id not in depends_on:
            depends_on.append(previous.id)

        step = StepInstance(
            instance_id=instance.id,
            order_index=definition.order_index,
            name=definition.name,
            description=definition.description,
            step_type=definition.step_type,
            required=definition.required,
            auto_trigger=definition.auto_trigger,
            assigned_role=definition.assigned_role,
            integration_type=definition.integration_type,
            integration_config=copy.deepcopy(definition.integration_config),
            estimated_hours=definition.estimated_hours,
            due_date=start_date + timedelta(days=definition.due_days),
            depends_on=depends_on,
        )
        ids_by_order[definition.order_index] = step.id
        steps.append(step)
        previous = step

    return instance, steps
