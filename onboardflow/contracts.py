"""Core data contracts for the onboarding workflow engine."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from .constants import DEFAULT_ASSIGNED_ROLE, DEFAULT_MAX_RETRIES


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowType(str, Enum):
    ONBOARDING = "onboarding"
    OFFBOARDING = "offboarding"
    TRANSFER = "transfer"
    PROMOTION = "promotion"
    CUSTOM = "custom"


class TemplateStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"


class StepType(str, Enum):
    DOCUMENT = "document"
    APPROVAL = "approval"
    BACKGROUND_CHECK = "background_check"
    EQUIPMENT_SETUP = "equipment_setup"
    TRAINING = "training"
    SYSTEM_ACCESS = "system_access"
    MEETING = "meeting"
    NOTIFICATION = "notification"
    CUSTOM = "custom"


class InstanceStatus(str, Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


TERMINAL_INSTANCE_STATUSES = frozenset(
    {InstanceStatus.COMPLETED, InstanceStatus.CANCELLED}
)


class StepStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


DONE_STEP_STATUSES = frozenset({StepStatus.COMPLETED, StepStatus.SKIPPED})


class IntegrationStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ResolutionStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    MISSED = "missed"


# ---------------------------------------------------------------------------
# Templates


class StepDefinition(BaseModel):
    """Reusable blueprint for one step of a workflow template."""

    order_index: int = 0
    name: str
    description: str = ""
    step_type: StepType = StepType.CUSTOM
    required: bool = True
    auto_trigger: bool = False
    assigned_role: str = DEFAULT_ASSIGNED_ROLE
    due_days: int = 0
    depends_on: List[int] = Field(
        default_factory=list, description="Order indices of earlier steps"
    )
    integration_type: Optional[str] = None
    integration_config: Dict[str, Any] = Field(default_factory=dict)
    estimated_hours: Optional[float] = None


class WorkflowTemplate(BaseModel):
    """Author-edited definition of an ordered set of steps."""

    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    workflow_type: WorkflowType = WorkflowType.ONBOARDING
    status: TemplateStatus = TemplateStatus.ACTIVE
    sequential: bool = False
    steps: List[StepDefinition] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def ordered_steps(self) -> List[StepDefinition]:
        return sorted(self.steps, key=lambda s: s.order_index)


# ---------------------------------------------------------------------------
# Running instances


class WorkflowInstance(BaseModel):
    """A single employee's running execution of a template."""

    id: str = Field(default_factory=new_id)
    template_id: Optional[str] = None
    template_name: str = ""
    workflow_type: WorkflowType = WorkflowType.ONBOARDING
    employee_id: str
    start_date: date
    expected_completion_date: Optional[date] = None
    actual_completion_date: Optional[date] = None
    status: InstanceStatus = InstanceStatus.NOT_STARTED
    overall_progress: int = 0
    assigned_buddy_id: Optional[str] = None
    assigned_manager_id: Optional[str] = None
    notes: str = ""
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES

    def append_note(self, actor_id: str, text: str, at: Optional[datetime] = None) -> None:
        stamp = (at or utcnow()).strftime("%Y-%m-%d %H:%M")
        line = f"[{stamp}] {actor_id}: {text}"
        self.notes = f"{self.notes}\n{line}" if self.notes else line


class StepInstance(BaseModel):
    """Per-employee mutable copy of a step definition."""

    id: str = Field(default_factory=new_id)
    instance_id: str
    order_index: int
    name: str
    description: str = ""
    step_type: StepType = StepType.CUSTOM
    required: bool = True
    auto_trigger: bool = False
    assigned_role: str = DEFAULT_ASSIGNED_ROLE
    integration_type: Optional[str] = None
    integration_config: Dict[str, Any] = Field(default_factory=dict)
    estimated_hours: Optional[float] = None
    status: StepStatus = StepStatus.NOT_STARTED
    due_date: date
    depends_on: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    started_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    actual_hours: Optional[float] = None
    skip_reason: Optional[str] = None
    waived: bool = False

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STEP_STATUSES

    def is_overdue(self, today: date) -> bool:
        return not self.is_done and self.due_date < today


class IntegrationAttempt(BaseModel):
    """One entry of an integration's attempt log."""

    kind: str  # dispatched, succeeded, failed
    at: datetime = Field(default_factory=utcnow)
    error_message: Optional[str] = None


class WorkflowIntegration(BaseModel):
    """A call out to an external system tracked for retry and result."""

    id: str = Field(default_factory=new_id)
    instance_id: str
    step_id: Optional[str] = None
    integration_type: str
    external_id: Optional[str] = None
    status: IntegrationStatus = IntegrationStatus.PENDING
    request_payload: Dict[str, Any] = Field(default_factory=dict)
    response_payload: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    max_retries: int = DEFAULT_MAX_RETRIES
    attempts: List[IntegrationAttempt] = Field(default_factory=list)
    last_attempt_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field  # type: ignore[misc]
    @property
    def retry_count(self) -> int:
        return sum(1 for a in self.attempts if a.kind == "failed")

    @property
    def dispatch_count(self) -> int:
        return sum(1 for a in self.attempts if a.kind == "dispatched")

    @property
    def is_terminal(self) -> bool:
        return self.status in (IntegrationStatus.SUCCEEDED, IntegrationStatus.FAILED)


class WorkflowException(BaseModel):
    """Out-of-band problem record used for escalation and audit."""

    id: str = Field(default_factory=new_id)
    instance_id: str
    step_id: Optional[str] = None
    integration_id: Optional[str] = None
    exception_type: str
    severity: Severity = Severity.MEDIUM
    title: str
    description: str = ""
    resolution_status: ResolutionStatus = ResolutionStatus.OPEN
    assigned_to: Optional[str] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def is_open(self) -> bool:
        return self.resolution_status == ResolutionStatus.OPEN


class Milestone(BaseModel):
    """Named checkpoint independent of steps."""

    id: str = Field(default_factory=new_id)
    instance_id: str
    name: str
    description: str = ""
    target_date: Optional[date] = None
    completed_date: Optional[date] = None
    status: MilestoneStatus = MilestoneStatus.PENDING
    celebration_sent: bool = False
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Derived views and units of work


class ProgressSummary(BaseModel):
    """Aggregated counts and derived progress for one instance."""

    instance_id: str
    total_steps: int = 0
    required_total: int = 0
    required_done: int = 0
    optional_total: int = 0
    optional_done: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    skipped: int = 0
    overdue: int = 0
    overall_progress: int = 0
    current_stage: str = "pre-boarding"
    days_elapsed: int = 0
    expected_days: Optional[int] = None
    is_on_track: bool = True
    open_exceptions: int = 0


class InstanceQuery(BaseModel):
    """Typed filter for listing instances."""

    employee_id: Optional[str] = None
    workflow_type: Optional[WorkflowType] = None
    template_id: Optional[str] = None
    statuses: Optional[List[InstanceStatus]] = None
    limit: Optional[int] = None

    def matches(self, instance: WorkflowInstance) -> bool:
        if self.employee_id is not None and instance.employee_id != self.employee_id:
            return False
        if self.workflow_type is not None and instance.workflow_type != self.workflow_type:
            return False
        if self.template_id is not None and instance.template_id != self.template_id:
            return False
        if self.statuses is not None and instance.status not in self.statuses:
            return False
        return True


class ChangeSet(BaseModel):
    """Everything a single engine operation writes, committed atomically."""

    instance: WorkflowInstance
    steps: List[StepInstance] = Field(default_factory=list)
    integrations: List[WorkflowIntegration] = Field(default_factory=list)
    exceptions: List[WorkflowException] = Field(default_factory=list)
    milestones: List[Milestone] = Field(default_factory=list)


class InstanceReport(BaseModel):
    """Structured status emitted for a presentation layer."""

    instance: WorkflowInstance
    steps: List[StepInstance] = Field(default_factory=list)
    progress: ProgressSummary
    open_exceptions: List[WorkflowException] = Field(default_factory=list)
    integrations: List[WorkflowIntegration] = Field(default_factory=list)
    milestones: List[Milestone] = Field(default_factory=list)


class IntegrationRequest(BaseModel):
    """Envelope published to the external-integration collaborator."""

    message_id: str = Field(default_factory=new_id)
    integration_id: str
    instance_id: str
    step_id: Optional[str] = None
    integration_type: str
    attempt: int = 1
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        """Serialize request to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "IntegrationRequest":
        """Deserialize request from JSON."""
        return cls.model_validate_json(data)
