from datetime import date

import pytest

from onboardflow.contracts import (
    IntegrationStatus,
    StepInstance,
    StepType,
    WorkflowInstance,
)
from onboardflow.errors import AlreadyCompleted, IntegrationExhausted, InvalidTransition
from onboardflow.integrations import (
    acknowledge,
    build_request_payload,
    compute_backoff,
    default_integration_type,
    new_integration,
    next_retry_delay,
    record_dispatch,
    record_result,
    retry_allowed,
)


def _integration(max_retries=3):
    return new_integration(
        "inst-1", "background_check", {"ssn_last4": "1234"}, step_id="step-1", max_retries=max_retries
    )


def _step(**kwargs):
    data = {
        "instance_id": "inst-1",
        "order_index": 1,
        "name": "Laptop",
        "step_type": StepType.EQUIPMENT_SETUP,
        "due_date": date(2024, 1, 4),
    }
    data.update(kwargs)
    return StepInstance(**data)


def test_new_integration_is_pending():
    integration = _integration()
    assert integration.status == IntegrationStatus.PENDING
    assert integration.retry_count == 0
    assert integration.max_retries == 3
    assert retry_allowed(integration)


def test_max_retries_must_be_positive():
    with pytest.raises(ValueError):
        _integration(max_retries=0)


def test_dispatch_builds_request_with_attempt_number():
    integration = _integration()
    first = record_dispatch(integration)
    assert first.attempt == 1
    assert first.integration_id == integration.id
    assert first.integration_type == "background_check"
    assert first.payload == {"ssn_last4": "1234"}

    record_result(integration, success=False, error_message="timeout")
    second = record_dispatch(integration)
    assert second.attempt == 2
    assert integration.status == IntegrationStatus.PENDING


def test_request_round_trips_through_json():
    request = record_dispatch(_integration())
    assert type(request).from_json(request.to_json()) == request


def test_failures_exhaust_after_max_retries():
    integration = _integration()

    outcomes = [record_result(integration, False, error_message=f"err {i}") for i in range(3)]
    assert [o.exhausted for o in outcomes] == [False, False, True]
    assert [o.retry_allowed for o in outcomes] == [True, True, False]
    assert integration.status == IntegrationStatus.FAILED
    assert integration.retry_count == 3
    assert integration.error_message == "err 2"
    assert not retry_allowed(integration)
    assert next_retry_delay(integration) is None

    attempts = len(integration.attempts)
    with pytest.raises(IntegrationExhausted):
        record_result(integration, False, error_message="again")
    with pytest.raises(IntegrationExhausted):
        record_result(integration, True)
    with pytest.raises(IntegrationExhausted):
        record_dispatch(integration)
    assert len(integration.attempts) == attempts
    assert integration.retry_count == 3


def test_retry_count_is_derived_from_attempt_log():
    integration = _integration()
    record_dispatch(integration)
    record_result(integration, False, error_message="busy")
    record_dispatch(integration)

    assert [a.kind for a in integration.attempts] == ["dispatched", "failed", "dispatched"]
    assert integration.retry_count == 1
    assert integration.model_dump()["retry_count"] == 1


def test_success_and_duplicate_success():
    integration = _integration()
    outcome = record_result(integration, True, response_payload={"result": "clear"})
    assert outcome.changed and outcome.succeeded
    assert integration.status == IntegrationStatus.SUCCEEDED
    assert integration.response_payload == {"result": "clear"}

    duplicate = record_result(integration, True, response_payload={"result": "clear"})
    assert duplicate.changed is False

    with pytest.raises(AlreadyCompleted):
        record_result(integration, False, error_message="late failure")
    with pytest.raises(AlreadyCompleted):
        record_dispatch(integration)


def test_acknowledge_stores_external_id():
    integration = _integration()
    assert acknowledge(integration, "ext-42") is True
    assert integration.status == IntegrationStatus.IN_PROGRESS
    assert integration.external_id == "ext-42"
    assert acknowledge(integration, "ext-42") is False

    record_result(integration, True)
    with pytest.raises(InvalidTransition):
        acknowledge(integration, "ext-43")


def test_compute_backoff_grows_and_caps():
    assert compute_backoff(0, jitter=0) == 1.0
    assert compute_backoff(3, jitter=0) == 8.0
    assert compute_backoff(20, jitter=0) == 300.0
    delay = compute_backoff(2)
    assert 4.0 <= delay <= 4.5


def test_next_retry_delay_while_retries_remain():
    integration = _integration()
    record_result(integration, False)
    delay = next_retry_delay(integration)
    assert delay is not None and 2.0 <= delay <= 2.5


def test_default_integration_type():
    assert default_integration_type(_step()) == "equipment_provisioning"
    assert default_integration_type(_step(step_type=StepType.DOCUMENT)) == "document_signature"
    assert default_integration_type(_step(step_type=StepType.TRAINING)) == "training"
    assert default_integration_type(_step(integration_type="okta")) == "okta"


def test_build_request_payload_merges_step_config():
    instance = WorkflowInstance(employee_id="emp-1", start_date=date(2024, 1, 1))
    step = _step(instance_id=instance.id, integration_config={"model": "standard"})
    payload = build_request_payload(instance, step)
    assert payload == {
        "employee_id": "emp-1",
        "instance_id": instance.id,
        "step_id": step.id,
        "step_name": "Laptop",
        "model": "standard",
    }


def test_duplicate_success_with_empty_payload_is_absorbed():
    integration = _integration()
    record_result(integration, True, response_payload={})
    assert integration.response_payload == {}

    duplicate = record_result(integration, True, response_payload={})
    assert duplicate.changed is False
    assert integration.status == IntegrationStatus.SUCCEEDED
