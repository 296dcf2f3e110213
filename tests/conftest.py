from datetime import date, datetime, timezone

import pytest

from onboardflow.config import OnboardflowConfig
from onboardflow.contracts import StepDefinition, StepType, WorkflowTemplate
from onboardflow.engine import OnboardingEngine
from onboardflow.persistence import InMemoryWorkflowRepository
from onboardflow.transports.inmemory import InMemoryTransport


class FakeClock:
    """Settable clock handed to the engine."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set_date(self, day: date) -> None:
        self.now = datetime(day.year, day.month, day.day, 9, 0, tzinfo=timezone.utc)


def build_onboarding_template(**overrides) -> WorkflowTemplate:
    steps = [
        StepDefinition(
            order_index=1, name="Submit documents", step_type=StepType.DOCUMENT, due_days=1
        ),
        StepDefinition(
            order_index=2,
            name="Background check",
            step_type=StepType.BACKGROUND_CHECK,
            due_days=7,
        ),
        StepDefinition(
            order_index=3,
            name="System access",
            step_type=StepType.SYSTEM_ACCESS,
            due_days=1,
        ),
        StepDefinition(
            order_index=4,
            name="Orientation",
            step_type=StepType.MEETING,
            due_days=0,
            required=False,
        ),
    ]
    data = {"name": "Onboarding", "steps": steps}
    data.update(overrides)
    return WorkflowTemplate(**data)


@pytest.fixture
def onboarding_template() -> WorkflowTemplate:
    return build_onboarding_template()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def repository() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def transport() -> InMemoryTransport:
    return InMemoryTransport()


@pytest.fixture
def engine(repository, transport, clock) -> OnboardingEngine:
    return OnboardingEngine(repository, transport, config=OnboardflowConfig(), clock=clock)


@pytest.fixture
def make_template():
    """Factory for the four-step onboarding template with field overrides."""
    return build_onboarding_template
