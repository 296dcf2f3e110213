from .models import (
    ExceptionRow,
    InstanceRow,
    IntegrationRow,
    MilestoneRow,
    StepRow,
    TemplateRow,
)
from .workflow_db import WorkflowDB, to_async_url

__all__ = [
    "TemplateRow",
    "InstanceRow",
    "StepRow",
    "IntegrationRow",
    "ExceptionRow",
    "MilestoneRow",
    "WorkflowDB",
    "to_async_url",
]
