"""onboardflow: durable onboarding workflows for HR systems."""

from .contracts import (
    InstanceQuery,
    InstanceReport,
    ProgressSummary,
    StepDefinition,
    StepInstance,
    WorkflowInstance,
    WorkflowIntegration,
    WorkflowTemplate,
)
from .engine import OnboardingEngine
from .persistence import get_repository
from .templates import TemplateService
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "InstanceQuery",
    "InstanceReport",
    "OnboardingEngine",
    "ProgressSummary",
    "StepDefinition",
    "StepInstance",
    "TemplateService",
    "WorkflowInstance",
    "WorkflowIntegration",
    "WorkflowTemplate",
    "get_repository",
    "get_transport",
]
