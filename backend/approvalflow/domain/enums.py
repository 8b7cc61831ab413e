"""Domain Enumerations - All status and type definitions"""
from enum import Enum


class ConfigurationStatus(str, Enum):
    """Lifecycle of a workflow configuration"""
    DRAFT = "Draft"
    ACTIVE = "Active"
    ARCHIVED = "Archived"


class RequestStatus(str, Enum):
    """Request status - derived from approval outcomes except CANCELLED"""
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"


TERMINAL_REQUEST_STATUSES = (
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
    RequestStatus.CANCELLED,
    RequestStatus.COMPLETED,
)

# Statuses the overdue sweep may move to OVERDUE
OPEN_REQUEST_STATUSES = (RequestStatus.PENDING, RequestStatus.IN_PROGRESS)


class ApprovalStatus(str, Enum):
    """Per-approver decision state"""
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    ESCALATED = "Escalated"


class EscalationStatus(str, Enum):
    PENDING = "Pending"
    RESOLVED = "Resolved"


class RequestPriority(int, Enum):
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4


class RuleAction(str, Enum):
    """Actions the request service knows how to act on"""
    AUTO_APPROVE = "AutoApprove"
    REQUIRE_APPROVAL = "RequireApproval"
    REJECT_REQUEST = "RejectRequest"
    ESCALATE = "Escalate"


class ConditionOperator(str, Enum):
    """Closed operator set of the rule DSL"""
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"
    GREATER_THAN = "greaterThan"
    LESS_THAN = "lessThan"
    GREATER_OR_EQUAL = "greaterOrEqual"
    LESS_OR_EQUAL = "lessOrEqual"
    CONTAINS = "contains"
    IN = "in"
    NOT_IN = "notIn"
    BETWEEN = "between"


class LogicalOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class WorkflowInstanceStatus(str, Enum):
    """Ledger status of a workflow instance"""
    STARTED = "started"
    RUNNING = "running"
    SUSPENDED = "suspended"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_INSTANCE_STATUSES = (
    WorkflowInstanceStatus.COMPLETED,
    WorkflowInstanceStatus.FAILED,
    WorkflowInstanceStatus.CANCELLED,
)


class NotificationType(str, Enum):
    """In-app notification categories written to the outbox"""
    APPROVAL_PENDING = "approval_pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    REMINDER = "reminder"
    OVERDUE = "overdue"
    REQUEST_COMPLETED = "request_completed"
    REQUEST_CANCELLED = "request_cancelled"
    ALERT = "alert"


class NotificationPriority(str, Enum):
    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"
    URGENT = "Urgent"


class SubmissionOutcome(str, Enum):
    """What the request service did with a newly submitted request"""
    NO_CONFIGURATION = "NO_CONFIGURATION"
    AUTO_APPROVED = "AUTO_APPROVED"
    REJECTED = "REJECTED"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    AWAITING_APPROVERS = "AWAITING_APPROVERS"


class LedgerEvent(str, Enum):
    """Events appended to a workflow instance's history"""
    SUBMITTED = "request_submitted"
    NO_CONFIGURATION = "no_configuration"
    RULES_EVALUATED = "rules_evaluated"
    AUTO_APPROVED = "auto_approved"
    RULE_REJECTED = "rule_rejected"
    APPROVAL_CREATED = "approval_created"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    ESCALATION_RESOLVED = "escalation_resolved"
    STAGE_ADVANCED = "stage_advanced"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"
