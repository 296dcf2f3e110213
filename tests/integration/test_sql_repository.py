from datetime import date
from pathlib import Path

import pytest

from onboardflow.config import OnboardflowConfig
from onboardflow.contracts import (
    ChangeSet,
    InstanceQuery,
    InstanceStatus,
    IntegrationStatus,
    StepStatus,
    WorkflowType,
)
from onboardflow.db import to_async_url
from onboardflow.engine import OnboardingEngine
from onboardflow.errors import ConcurrentModification
from onboardflow.persistence.sql import SQLWorkflowRepository
from onboardflow.templates import load_template_file
from onboardflow.transports.inmemory import InMemoryTransport

FIXTURE = Path(__file__).parent.parent / "fixtures" / "engineering_template.yaml"


def _repo(tmp_path) -> SQLWorkflowRepository:
    return SQLWorkflowRepository(f"sqlite://{tmp_path / 'wf.db'}")


def test_to_async_url():
    assert to_async_url("sqlite:///tmp/wf.db") == "sqlite+aiosqlite:////tmp/wf.db"
    assert to_async_url("sqlite://wf.db") == "sqlite+aiosqlite:///wf.db"
    assert to_async_url("postgres://u:p@db/hr") == "postgresql+asyncpg://u:p@db/hr"
    assert to_async_url("postgresql://u:p@db/hr") == "postgresql+asyncpg://u:p@db/hr"
    assert to_async_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"
    with pytest.raises(ValueError):
        to_async_url("mysql://db/hr")


@pytest.mark.asyncio
async def test_template_round_trip(tmp_path):
    repo = _repo(tmp_path)
    template = load_template_file(FIXTURE)
    await repo.save_template(template)

    stored = await repo.get_template(template.id)
    assert stored is not None
    assert stored.name == "Engineering onboarding"
    assert [s.name for s in stored.steps] == [s.name for s in template.steps]
    assert stored.steps[0].integration_config == {"forms": ["w4", "i9"]}
    assert stored.created_at.tzinfo is not None

    assert [t.id for t in await repo.list_templates()] == [template.id]
    await repo.delete_template(template.id)
    assert await repo.get_template(template.id) is None
    await repo.close()


@pytest.mark.asyncio
async def test_engine_over_sqlite(tmp_path, clock):
    repo = _repo(tmp_path)
    transport = InMemoryTransport()
    engine = OnboardingEngine(repo, transport, config=OnboardflowConfig(), clock=clock)

    template = await engine.templates.create(load_template_file(FIXTURE))
    instance = await engine.instantiate(template.id, "emp-1", date(2024, 1, 1))
    steps = await repo.get_steps(instance.id)
    documents, background, laptop, meeting = steps
    assert background.depends_on == [documents.id]

    await engine.complete_step(instance.id, documents.id, "hr-1", actual_hours=1.0)
    laptop = await repo.get_step(laptop.id)
    assert laptop.status == StepStatus.IN_PROGRESS
    _, request = transport.published[0]

    for _ in range(3):
        await engine.record_integration_result(
            request.integration_id, success=False, error_message="vendor down"
        )
    integration = await repo.get_integration(request.integration_id)
    assert integration.status == IntegrationStatus.FAILED
    assert integration.retry_count == 3
    assert [a.kind for a in integration.attempts] == [
        "dispatched",
        "failed",
        "failed",
        "failed",
    ]

    exceptions = await repo.get_exceptions(instance.id)
    assert len(exceptions) == 1
    assert exceptions[0].step_id == laptop.id

    reloaded = await repo.get_instance(instance.id)
    assert reloaded.overall_progress == 33
    assert reloaded.start_date == date(2024, 1, 1)
    await repo.close()


@pytest.mark.asyncio
async def test_version_check_and_cascade_delete(tmp_path, clock):
    repo = _repo(tmp_path)
    engine = OnboardingEngine(repo, InMemoryTransport(), config=OnboardflowConfig(), clock=clock)
    template = load_template_file(FIXTURE)
    first = await engine.instantiate(template, "emp-1", date(2024, 1, 1))
    second = await engine.instantiate(template, "emp-2", date(2024, 1, 1))

    stale = await repo.get_instance(first.id)
    await engine.add_note(first.id, "hr-1", "welcome pack sent")
    with pytest.raises(ConcurrentModification):
        await repo.commit(ChangeSet(instance=stale), stale.version)
    with pytest.raises(ConcurrentModification):
        await repo.commit(ChangeSet(instance=stale), None)
    assert (await repo.get_instance(first.id)).version == 2

    await engine.cancel(second.id, "hr-1", "declined offer")
    active = await repo.list_instances(
        InstanceQuery(
            workflow_type=WorkflowType.ONBOARDING,
            statuses=[InstanceStatus.ACTIVE, InstanceStatus.OVERDUE],
        )
    )
    assert [i.id for i in active] == [first.id]
    assert len(await repo.list_instances(InstanceQuery(employee_id="emp-2"))) == 1
    assert len(await repo.list_instances(InstanceQuery(limit=1))) == 1

    await engine.create_milestone(first.id, "First week", target_date=date(2024, 1, 7))
    await engine.delete_instance(first.id)
    assert await repo.get_instance(first.id) is None
    assert await repo.get_steps(first.id) == []
    assert await repo.get_milestones(first.id) == []
    assert await repo.get_integrations(first.id) == []
    assert await repo.get_instance(second.id) is not None
    await repo.close()
