from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

TZDateTime = DateTime(timezone=True)


class TemplateRow(SQLModel, table=True):
    """Workflow template with its step definitions stored inline."""

    __tablename__ = "workflow_templates"

    id: str = Field(primary_key=True)
    name: str = Field(index=True)
    description: str = ""
    workflow_type: str = Field(index=True)
    status: str = "active"
    sequential: bool = False
    steps: list = Field(default_factory=list, sa_column=Column(JSON))
    created_by: Optional[str] = None
    created_at: datetime = Field(sa_type=TZDateTime)
    updated_at: datetime = Field(sa_type=TZDateTime)


class InstanceRow(SQLModel, table=True):
    """One employee's running workflow."""

    __tablename__ = "workflow_instances"

    id: str = Field(primary_key=True)
    template_id: Optional[str] = Field(default=None, index=True)
    template_name: str = ""
    workflow_type: str = Field(index=True)
    employee_id: str = Field(index=True)
    start_date: date
    expected_completion_date: Optional[date] = None
    actual_completion_date: Optional[date] = None
    status: str = Field(index=True)
    overall_progress: int = 0
    assigned_buddy_id: Optional[str] = None
    assigned_manager_id: Optional[str] = None
    notes: str = ""
    created_by: Optional[str] = None
    created_at: datetime = Field(sa_type=TZDateTime)
    updated_at: datetime = Field(sa_type=TZDateTime)
    version: int = 0


class StepRow(SQLModel, table=True):
    """Snapshot of a step definition plus its runtime state."""

    __tablename__ = "workflow_steps"

    id: str = Field(primary_key=True)
    instance_id: str = Field(foreign_key="workflow_instances.id", index=True)
    order_index: int
    name: str
    description: str = ""
    step_type: str
    required: bool = True
    auto_trigger: bool = False
    assigned_role: str = "hr"
    integration_type: Optional[str] = None
    integration_config: dict = Field(default_factory=dict, sa_column=Column(JSON))
    estimated_hours: Optional[float] = None
    status: str = Field(index=True)
    due_date: date
    depends_on: list = Field(default_factory=list, sa_column=Column(JSON))
    started_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    started_by: Optional[str] = None
    completed_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    completed_by: Optional[str] = None
    actual_hours: Optional[float] = None
    skip_reason: Optional[str] = None
    waived: bool = False


class IntegrationRow(SQLModel, table=True):
    """External call tracked for retry and result."""

    __tablename__ = "workflow_integrations"

    id: str = Field(primary_key=True)
    instance_id: str = Field(foreign_key="workflow_instances.id", index=True)
    step_id: Optional[str] = Field(default=None, index=True)
    integration_type: str
    external_id: Optional[str] = None
    status: str = Field(index=True)
    request_payload: dict = Field(default_factory=dict, sa_column=Column(JSON))
    response_payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = None
    # denormalised from the attempt log for querying only
    retry_count: int = 0
    max_retries: int = 3
    attempts: list = Field(default_factory=list, sa_column=Column(JSON))
    last_attempt_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    created_at: datetime = Field(sa_type=TZDateTime)
    updated_at: datetime = Field(sa_type=TZDateTime)


class ExceptionRow(SQLModel, table=True):
    """Escalation record attached to an instance."""

    __tablename__ = "workflow_exceptions"

    id: str = Field(primary_key=True)
    instance_id: str = Field(foreign_key="workflow_instances.id", index=True)
    step_id: Optional[str] = None
    integration_id: Optional[str] = None
    exception_type: str
    severity: str
    title: str
    description: str = ""
    resolution_status: str = Field(default="open", index=True)
    assigned_to: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = Field(default=None, sa_type=TZDateTime)
    resolution_notes: Optional[str] = None
    created_at: datetime = Field(sa_type=TZDateTime)


class MilestoneRow(SQLModel, table=True):
    """Named checkpoint attached to an instance."""

    __tablename__ = "workflow_milestones"

    id: str = Field(primary_key=True)
    instance_id: str = Field(foreign_key="workflow_instances.id", index=True)
    name: str
    description: str = ""
    target_date: Optional[date] = None
    completed_date: Optional[date] = None
    status: str = "pending"
    celebration_sent: bool = False
    created_at: datetime = Field(sa_type=TZDateTime)
