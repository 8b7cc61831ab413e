"""Repository modules - Data access layer"""
from .mongo_client import get_database, get_collection
from .configuration_repo import ConfigurationRepository
from .request_repo import RequestRepository
from .approval_repo import ApprovalRepository
from .escalation_repo import EscalationRepository
from .workflow_instance_repo import WorkflowInstanceRepository
from .notification_repo import NotificationRepository

__all__ = [
    "get_database",
    "get_collection",
    "ConfigurationRepository",
    "RequestRepository",
    "ApprovalRepository",
    "EscalationRepository",
    "WorkflowInstanceRepository",
    "NotificationRepository",
]
