"""Retry bookkeeping for external integration calls.

This module only tracks eligibility and state. Scheduling the actual retry
is the external integration collaborator's job; ``compute_backoff`` is
offered as an advisory delay.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .constants import DEFAULT_INTEGRATION_TYPES, DEFAULT_MAX_RETRIES
from .contracts import (
    IntegrationAttempt,
    IntegrationRequest,
    IntegrationStatus,
    StepInstance,
    WorkflowInstance,
    WorkflowIntegration,
    utcnow,
)
from .errors import AlreadyCompleted, IntegrationExhausted, InvalidTransition

logger = logging.getLogger(__name__)


def compute_backoff(
    retry_count: int, base: float = 2.0, cap: float = 300.0, jitter: float = 0.5
) -> float:
    """Exponential backoff in seconds with jitter, capped at ``cap``."""
    delay = min(cap, base ** retry_count)
    return delay + random.uniform(0, jitter)


@dataclass
class IntegrationOutcome:
    """What a ``record_result`` call did to an integration."""

    changed: bool
    succeeded: bool = False
    exhausted: bool = False
    retry_allowed: bool = False


def default_integration_type(step: StepInstance) -> str:
    if step.integration_type:
        return step.integration_type
    return DEFAULT_INTEGRATION_TYPES.get(step.step_type.value, step.step_type.value)


def build_request_payload(instance: WorkflowInstance, step: StepInstance) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "employee_id": instance.employee_id,
        "instance_id": instance.id,
        "step_id": step.id,
        "step_name": step.name,
    }
    payload.update(step.integration_config)
    return payload


def new_integration(
    instance_id: str,
    integration_type: str,
    request_payload: Optional[Dict[str, Any]] = None,
    step_id: Optional[str] = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> WorkflowIntegration:
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")
    return WorkflowIntegration(
        instance_id=instance_id,
        step_id=step_id,
        integration_type=integration_type,
        request_payload=dict(request_payload or {}),
        max_retries=max_retries,
    )


def retry_allowed(integration: WorkflowIntegration) -> bool:
    return (
        not integration.is_terminal
        and integration.retry_count < integration.max_retries
    )


def record_dispatch(
    integration: WorkflowIntegration, now: Optional[datetime] = None
) -> IntegrationRequest:
    """Log a dispatch attempt and build the outbound request for it."""
    if integration.status == IntegrationStatus.FAILED:
        raise IntegrationExhausted(
            f"Integration {integration.id} exhausted {integration.max_retries} retries"
        )
    if integration.status == IntegrationStatus.SUCCEEDED:
        raise AlreadyCompleted(f"Integration {integration.id} already succeeded")

    now = now or utcnow()
    integration.attempts.append(IntegrationAttempt(kind="dispatched", at=now))
    integration.status = IntegrationStatus.PENDING
    integration.last_attempt_at = now
    integration.updated_at = now
    return IntegrationRequest(
        integration_id=integration.id,
        instance_id=integration.instance_id,
        step_id=integration.step_id,
        integration_type=integration.integration_type,
        attempt=integration.dispatch_count,
        payload=integration.request_payload,
        timestamp=now,
    )


def acknowledge(
    integration: WorkflowIntegration, external_id: str, now: Optional[datetime] = None
) -> bool:
    """The provider accepted the call and returned its correlation id."""
    if integration.is_terminal:
        raise InvalidTransition(
            f"Integration {integration.id} is already {integration.status.value}"
        )
    if (
        integration.status == IntegrationStatus.IN_PROGRESS
        and integration.external_id == external_id
    ):
        return False
    integration.status = IntegrationStatus.IN_PROGRESS
    integration.external_id = external_id
    integration.updated_at = now or utcnow()
    return True


def record_result(
    integration: WorkflowIntegration,
    success: bool,
    response_payload: Optional[Dict[str, Any]] = None,
    error_message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IntegrationOutcome:
    if integration.status == IntegrationStatus.FAILED:
        raise IntegrationExhausted(
            f"Integration {integration.id} already failed after "
            f"{integration.retry_count} attempts; result rejected"
        )
    if integration.status == IntegrationStatus.SUCCEEDED:
        if success and response_payload == integration.response_payload:
            return IntegrationOutcome(changed=False, succeeded=True)
        raise AlreadyCompleted(f"Integration {integration.id} already succeeded")

    now = now or utcnow()
    integration.last_attempt_at = now
    integration.updated_at = now
    if response_payload is not None:
        integration.response_payload = response_payload

    if success:
        integration.attempts.append(IntegrationAttempt(kind="succeeded", at=now))
        integration.status = IntegrationStatus.SUCCEEDED
        integration.error_message = None
        return IntegrationOutcome(changed=True, succeeded=True)

    integration.attempts.append(
        IntegrationAttempt(kind="failed", at=now, error_message=error_message)
    )
    integration.error_message = error_message
    if integration.retry_count >= integration.max_retries:
        integration.status = IntegrationStatus.FAILED
        logger.warning(
            f"Integration {integration.id} ({integration.integration_type}) failed "
            f"{integration.retry_count}/{integration.max_retries} times; giving up"
        )
        return IntegrationOutcome(changed=True, exhausted=True)

    integration.status = IntegrationStatus.PENDING
    return IntegrationOutcome(changed=True, retry_allowed=True)


def next_retry_delay(integration: WorkflowIntegration) -> Optional[float]:
    """Advisory backoff before the next attempt, or ``None`` if none is allowed."""
    if not retry_allowed(integration):
        return None
    return compute_backoff(integration.retry_count)
