"""Domain Models - Pydantic schemas for all entities"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Optional
from pydantic import AfterValidator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .enums import (
    ApprovalStatus, ConfigurationStatus, EscalationStatus, LogicalOperator,
    NotificationPriority, NotificationType, RequestStatus, RuleAction, SubmissionOutcome,
    WorkflowInstanceStatus
)
from ..utils.time import ensure_utc


# MongoDB hands datetimes back naive; every model field is normalized to aware UTC
UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


# ============================================================================
# Actor
# ============================================================================

class ActorContext(BaseModel):
    """Caller identity taken from request headers"""
    model_config = ConfigDict(extra="forbid")

    tenant_id: str = Field(..., description="Tenant the caller acts in")
    user_id: str = Field(..., description="Calling user id")


# ============================================================================
# Rule DSL (persisted with camelCase keys)
# ============================================================================

class EvaluationRule(BaseModel):
    """A single business rule: `field operator value -> action`"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)

    field: str = Field(..., description="Key in the request data bag")
    operator: str = Field(..., description="One of the supported operators")
    value: Any = Field(None, description="Operand; list for in/notIn/between")
    action: str = Field(RuleAction.REQUIRE_APPROVAL.value, description="Action when the rule matches")
    priority: int = Field(0, description="Evaluated in ascending order")
    is_active: bool = True
    description: Optional[str] = None


class Condition(BaseModel):
    """Start/completion condition; grouped by group_id"""
    model_config = ConfigDict(extra="ignore", populate_by_name=True, alias_generator=to_camel)

    field: str
    operator: str
    value: Any = None
    logical_operator: LogicalOperator = LogicalOperator.AND
    group_id: int = 0
    priority: int = 0


class MatchedRule(BaseModel):
    """Rule that matched during an evaluation"""
    field: str
    operator: str
    value: Any = None
    action: str
    priority: int
    description: Optional[str] = None


class RuleEvaluationResult(BaseModel):
    """Outcome of evaluating a rule list against a data bag"""
    is_valid: bool = True
    matched_rules: List[MatchedRule] = Field(default_factory=list)
    result_action: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    evaluation_data: Dict[str, Any] = Field(default_factory=dict)
    evaluated_at: UtcDatetime


# ============================================================================
# Workflow Configuration
# ============================================================================

class EscalationLevel(BaseModel):
    level: int = Field(1, ge=1)
    timeout_hours: int = Field(24, ge=1)
    escalation_users: List[str] = Field(default_factory=list)


class EscalationSettings(BaseModel):
    """Per-configuration escalation policy"""
    model_config = ConfigDict(extra="ignore")

    enable_escalation: bool = True
    escalation_time_hours: Optional[int] = Field(None, ge=1, description="Overrides the global threshold")
    escalation_levels: List[EscalationLevel] = Field(default_factory=list)
    notify_on_escalation: bool = True
    escalation_message: Optional[str] = None


class NotificationSettings(BaseModel):
    """Which lifecycle events notify the requester"""
    model_config = ConfigDict(extra="ignore")

    notify_on_approval: bool = True
    notify_on_rejection: bool = True
    notify_on_completion: bool = True
    notify_on_overdue: bool = True


class WorkflowConfiguration(BaseModel):
    """Tenant-authored approval chain for one request type"""
    model_config = ConfigDict(extra="ignore")

    configuration_id: str
    tenant_id: str
    workflow_name: str
    description: Optional[str] = None
    request_type_id: str
    evaluation_rules: List[EvaluationRule] = Field(default_factory=list)
    start_conditions: List[Condition] = Field(default_factory=list)
    completion_conditions: List[Condition] = Field(default_factory=list)
    escalation_settings: EscalationSettings = Field(default_factory=EscalationSettings)
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)
    approval_stages: List[List[str]] = Field(
        default_factory=list,
        description="Approver ids per stage; stage N is index N-1"
    )
    default_action: Optional[str] = None
    stop_on_first_match: Optional[bool] = None
    priority: int = Field(2, ge=1, description="Higher wins during selection")
    is_active: bool = False
    status: ConfigurationStatus = ConfigurationStatus.DRAFT
    requires_manual_approval: bool = True
    supports_parallel_approval: bool = False
    max_execution_time_hours: Optional[int] = None
    max_retry_count: int = 3
    version: str = "1.0"
    is_deleted: bool = False
    created_at: UtcDatetime
    created_by: str
    updated_at: UtcDatetime
    updated_by: str
    revision: int = 1


# ============================================================================
# Requests & Approvals
# ============================================================================

class Request(BaseModel):
    """A submitted request moving through an approval chain"""
    model_config = ConfigDict(extra="ignore")

    request_id: str
    tenant_id: str
    request_type_id: str
    requester_id: str
    title: str
    data: Dict[str, Any] = Field(default_factory=dict)
    status: RequestStatus = RequestStatus.PENDING
    priority: int = Field(2, ge=1, le=4)
    due_date: Optional[UtcDatetime] = None
    rejection_reason: Optional[str] = None
    configuration_id: Optional[str] = None
    workflow_instance_id: Optional[str] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime
    updated_by: Optional[str] = None
    completed_at: Optional[UtcDatetime] = None
    version: int = 1


class Approval(BaseModel):
    """One approver's decision slot at one stage"""
    model_config = ConfigDict(extra="ignore")

    approval_id: str
    tenant_id: str
    request_id: str
    approver_id: str
    stage: int = Field(1, ge=1)
    status: ApprovalStatus = ApprovalStatus.PENDING
    comments: Optional[str] = None
    created_at: UtcDatetime
    approved_at: Optional[UtcDatetime] = None
    updated_at: UtcDatetime
    updated_by: Optional[str] = None
    version: int = 1


class ApprovalEscalation(BaseModel):
    """Escalation raised on an approval - at most one PENDING per approval"""
    model_config = ConfigDict(extra="ignore")

    escalation_id: str
    tenant_id: str
    approval_id: str
    request_id: str
    reason: str
    comments: Optional[str] = None
    triggered_at: UtcDatetime
    escalated_by_user_id: str
    escalated_to_user_id: Optional[str] = None
    status: EscalationStatus = EscalationStatus.PENDING
    resolved_at: Optional[UtcDatetime] = None
    resolved_by_user_id: Optional[str] = None
    reassigned_approval_id: Optional[str] = None


class ApprovalStats(BaseModel):
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    escalated: int = 0
    approval_rate: float = 0.0
    average_processing_hours: float = 0.0


class EscalationStats(BaseModel):
    total: int = 0
    pending: int = 0
    resolved: int = 0
    average_resolution_hours: float = 0.0


class ConfigurationStatistics(BaseModel):
    total: int = 0
    active: int = 0
    draft: int = 0
    archived: int = 0
    by_request_type: Dict[str, int] = Field(default_factory=dict)


class SubmissionResult(BaseModel):
    """What happened to a submitted request"""
    outcome: SubmissionOutcome
    request: Request
    configuration_id: Optional[str] = None
    instance_id: Optional[str] = None
    result_action: Optional[str] = None
    evaluation: Optional[RuleEvaluationResult] = None
    approvals: List[Approval] = Field(default_factory=list)
    replayed: bool = False


# ============================================================================
# Workflow Tracking Ledger
# ============================================================================

class LedgerEntry(BaseModel):
    """One appended history record"""
    model_config = ConfigDict(extra="ignore")

    status: WorkflowInstanceStatus
    event: str
    actor_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    recorded_at: UtcDatetime


class WorkflowInstance(BaseModel):
    """Ledger record of a request's run through a configuration"""
    model_config = ConfigDict(extra="ignore")

    instance_id: str
    tenant_id: str
    request_id: str
    workflow_name: str
    configuration_id: Optional[str] = None
    status: WorkflowInstanceStatus = WorkflowInstanceStatus.STARTED
    data: Dict[str, Any] = Field(default_factory=dict)
    history: List[LedgerEntry] = Field(default_factory=list)
    created_at: UtcDatetime
    updated_at: UtcDatetime
    completed_at: Optional[UtcDatetime] = None


# ============================================================================
# Notifications
# ============================================================================

class Notification(BaseModel):
    """In-app notification written to the outbox"""
    model_config = ConfigDict(extra="ignore")

    notification_id: str
    tenant_id: str
    user_id: str
    title: str
    message: str
    notification_type: NotificationType
    priority: NotificationPriority = NotificationPriority.NORMAL
    data: Dict[str, Any] = Field(default_factory=dict)
    is_read: bool = False
    read_at: Optional[UtcDatetime] = None
    created_at: UtcDatetime
