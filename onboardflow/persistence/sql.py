"""SQL implementation of the workflow repository (SQLite or PostgreSQL)."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlmodel import SQLModel

from ..contracts import (
    ChangeSet,
    InstanceQuery,
    Milestone,
    StepInstance,
    WorkflowException,
    WorkflowInstance,
    WorkflowIntegration,
    WorkflowTemplate,
    utcnow,
)
from ..db import (
    ExceptionRow,
    InstanceRow,
    IntegrationRow,
    MilestoneRow,
    StepRow,
    TemplateRow,
    WorkflowDB,
)
from ..errors import ConcurrentModification
from .repository import WorkflowRepository

ModelT = TypeVar("ModelT", bound=BaseModel)
RowT = TypeVar("RowT", bound=SQLModel)

# columns holding nested structures, serialised in JSON mode
_JSON_FIELDS = {
    "steps",
    "integration_config",
    "depends_on",
    "request_payload",
    "response_payload",
    "attempts",
}


def _to_row(row_cls: Type[RowT], model: BaseModel) -> RowT:
    data = model.model_dump()
    nested = model.model_dump(mode="json", include=_JSON_FIELDS & set(data))
    data.update(nested)
    values = {}
    for name in row_cls.model_fields:
        value = data.get(name)
        values[name] = value.value if isinstance(value, Enum) else value
    return row_cls(**values)


def _row_values(row: SQLModel) -> dict[str, Any]:
    values = {}
    for name in type(row).model_fields:
        value = getattr(row, name)
        # SQLite drops tzinfo; everything is stored as UTC
        if isinstance(value, datetime) and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        values[name] = value
    return values


def _from_row(model_cls: Type[ModelT], row: Optional[SQLModel]) -> Optional[ModelT]:
    if row is None:
        return None
    return model_cls.model_validate(_row_values(row))


class SQLWorkflowRepository(WorkflowRepository):
    """Persist workflow state through SQLModel on an async SQLAlchemy engine."""

    def __init__(self, database_url: str | WorkflowDB):
        self._db = (
            database_url if isinstance(database_url, WorkflowDB) else WorkflowDB(database_url)
        )
        self._initialized = False

    async def _ensure_schema(self) -> None:
        if not self._initialized:
            await self._db.init_db()
            self._initialized = True

    async def _get(self, row_cls: Type[RowT], model_cls: Type[ModelT], key: str) -> Optional[ModelT]:
        await self._ensure_schema()
        async with self._db.session() as session:
            row = await session.get(row_cls, key)
            return _from_row(model_cls, row)

    async def _children(
        self, row_cls: Type[RowT], model_cls: Type[ModelT], instance_id: str, order_by: Any
    ) -> list[ModelT]:
        await self._ensure_schema()
        async with self._db.session() as session:
            result = await session.execute(
                select(row_cls).where(row_cls.instance_id == instance_id).order_by(order_by)
            )
            return [_from_row(model_cls, row) for row in result.scalars().all()]

    async def close(self) -> None:
        await self._db.dispose()

    # ------------------------------------------------------------------
    # Templates
    async def save_template(self, template: WorkflowTemplate) -> None:
        await self._ensure_schema()
        async with self._db.session() as session:
            async with session.begin():
                await session.merge(_to_row(TemplateRow, template))

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        return await self._get(TemplateRow, WorkflowTemplate, template_id)

    async def list_templates(self) -> list[WorkflowTemplate]:
        await self._ensure_schema()
        async with self._db.session() as session:
            result = await session.execute(select(TemplateRow).order_by(TemplateRow.name))
            return [_from_row(WorkflowTemplate, row) for row in result.scalars().all()]

    async def delete_template(self, template_id: str) -> None:
        await self._ensure_schema()
        async with self._db.session() as session:
            async with session.begin():
                await session.execute(delete(TemplateRow).where(TemplateRow.id == template_id))

    # ------------------------------------------------------------------
    # Instances
    async def commit(
        self, changes: ChangeSet, expected_version: Optional[int]
    ) -> WorkflowInstance:
        await self._ensure_schema()
        instance = changes.instance.model_copy(deep=True)
        instance.version = (expected_version or 0) + 1
        instance.updated_at = utcnow()
        row = _to_row(InstanceRow, instance)

        async with self._db.session() as session:
            async with session.begin():
                if expected_version is None:
                    if await session.get(InstanceRow, instance.id) is not None:
                        raise ConcurrentModification(instance.id, expected_version)
                    session.add(row)
                    await session.flush()
                else:
                    values = {name: getattr(row, name) for name in InstanceRow.model_fields}
                    result = await session.execute(
                        update(InstanceRow)
                        .where(
                            InstanceRow.id == instance.id,
                            InstanceRow.version == expected_version,
                        )
                        .values(**values)
                    )
                    if result.rowcount != 1:
                        raise ConcurrentModification(instance.id, expected_version)

                for step in changes.steps:
                    await session.merge(_to_row(StepRow, step))
                for integration in changes.integrations:
                    await session.merge(_to_row(IntegrationRow, integration))
                for exception in changes.exceptions:
                    await session.merge(_to_row(ExceptionRow, exception))
                for milestone in changes.milestones:
                    await session.merge(_to_row(MilestoneRow, milestone))

        changes.instance.version = instance.version
        changes.instance.updated_at = instance.updated_at
        return instance

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        return await self._get(InstanceRow, WorkflowInstance, instance_id)

    async def list_instances(
        self, query: Optional[InstanceQuery] = None
    ) -> list[WorkflowInstance]:
        await self._ensure_schema()
        query = query or InstanceQuery()
        stmt = select(InstanceRow)
        if query.employee_id is not None:
            stmt = stmt.where(InstanceRow.employee_id == query.employee_id)
        if query.workflow_type is not None:
            stmt = stmt.where(InstanceRow.workflow_type == query.workflow_type.value)
        if query.template_id is not None:
            stmt = stmt.where(InstanceRow.template_id == query.template_id)
        if query.statuses is not None:
            stmt = stmt.where(InstanceRow.status.in_([s.value for s in query.statuses]))
        stmt = stmt.order_by(InstanceRow.created_at.desc())
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        async with self._db.session() as session:
            result = await session.execute(stmt)
            return [_from_row(WorkflowInstance, row) for row in result.scalars().all()]

    async def delete_instance(self, instance_id: str) -> None:
        await self._ensure_schema()
        async with self._db.session() as session:
            async with session.begin():
                for row_cls in (StepRow, IntegrationRow, ExceptionRow, MilestoneRow):
                    await session.execute(
                        delete(row_cls).where(row_cls.instance_id == instance_id)
                    )
                await session.execute(delete(InstanceRow).where(InstanceRow.id == instance_id))

    # ------------------------------------------------------------------
    # Children
    async def get_steps(self, instance_id: str) -> list[StepInstance]:
        return await self._children(StepRow, StepInstance, instance_id, StepRow.order_index)

    async def get_step(self, step_id: str) -> StepInstance | None:
        return await self._get(StepRow, StepInstance, step_id)

    async def get_integrations(self, instance_id: str) -> list[WorkflowIntegration]:
        return await self._children(
            IntegrationRow, WorkflowIntegration, instance_id, IntegrationRow.created_at
        )

    async def get_integration(self, integration_id: str) -> WorkflowIntegration | None:
        return await self._get(IntegrationRow, WorkflowIntegration, integration_id)

    async def get_exceptions(self, instance_id: str) -> list[WorkflowException]:
        return await self._children(
            ExceptionRow, WorkflowException, instance_id, ExceptionRow.created_at
        )

    async def get_exception(self, exception_id: str) -> WorkflowException | None:
        return await self._get(ExceptionRow, WorkflowException, exception_id)

    async def get_milestones(self, instance_id: str) -> list[Milestone]:
        return await self._children(
            MilestoneRow, Milestone, instance_id, MilestoneRow.created_at
        )

    async def get_milestone(self, milestone_id: str) -> Milestone | None:
        return await self._get(MilestoneRow, Milestone, milestone_id)
