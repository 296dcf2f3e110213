"""Error taxonomy for the onboarding workflow engine."""

from __future__ import annotations


class OnboardflowError(Exception):
    """Base class for all engine errors."""

    retryable = False


class NotFound(OnboardflowError):
    """A referenced template, instance, step or record does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class InvalidTemplate(OnboardflowError):
    """Malformed template; the caller must fix the template."""


class InvalidTransition(OnboardflowError):
    """Requested transition is not allowed from the current state."""


class DependencyNotSatisfied(OnboardflowError):
    """Step transition attempted before its dependencies finished."""

    def __init__(self, step_id: str, pending: list[str]) -> None:
        super().__init__(
            f"Step {step_id} depends on unfinished steps: {', '.join(pending)}"
        )
        self.step_id = step_id
        self.pending = pending


class RequiredStepCannotSkip(OnboardflowError):
    """Required steps may only be skipped through an explicit waiver."""


class AlreadyCompleted(OnboardflowError):
    """The step or integration already reached a terminal state."""


class AlreadyResolved(OnboardflowError):
    """The exception was already resolved."""


class IntegrationExhausted(OnboardflowError):
    """The integration consumed its retry budget and is terminally failed."""


class ActiveInstanceExists(OnboardflowError):
    """Employee already has a running instance of this workflow type."""

    def __init__(self, employee_id: str, instance_id: str) -> None:
        super().__init__(
            f"Employee {employee_id} already has an active workflow instance {instance_id}"
        )
        self.employee_id = employee_id
        self.instance_id = instance_id


class ConcurrentModification(OnboardflowError):
    """Optimistic-concurrency conflict; re-read and retry the operation."""

    retryable = True

    def __init__(self, instance_id: str, expected_version: int | None) -> None:
        super().__init__(
            f"Instance {instance_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
        self.instance_id = instance_id
        self.expected_version = expected_version
