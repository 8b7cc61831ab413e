"""Domain Errors - Centralized Exception Hierarchy"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base domain error - all errors extend this"""

    error_code: str = "DOMAIN_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to API response dict"""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "details": self.details
            }
        }


# Validation Errors
class ValidationError(DomainError):
    """Input validation failed"""
    error_code = "VALIDATION_ERROR"
    http_status = 400


class RuleValidationError(ValidationError):
    """Evaluation rules or conditions of a configuration are malformed"""
    error_code = "RULE_VALIDATION_ERROR"


class MissingHeaderError(ValidationError):
    """Required tenant or actor header missing"""
    error_code = "MISSING_HEADER"


# Not Found Errors
class NotFoundError(DomainError):
    """Resource not found"""
    error_code = "NOT_FOUND"
    http_status = 404


class ConfigurationNotFoundError(NotFoundError):
    error_code = "CONFIGURATION_NOT_FOUND"


class RequestNotFoundError(NotFoundError):
    error_code = "REQUEST_NOT_FOUND"


class ApprovalNotFoundError(NotFoundError):
    error_code = "APPROVAL_NOT_FOUND"


class PendingApprovalNotFoundError(ApprovalNotFoundError):
    """No pending approval for the (request, approver) pair"""
    error_code = "PENDING_APPROVAL_NOT_FOUND"


class EscalationNotFoundError(NotFoundError):
    error_code = "ESCALATION_NOT_FOUND"


class WorkflowInstanceNotFoundError(NotFoundError):
    error_code = "WORKFLOW_INSTANCE_NOT_FOUND"


class JobNotFoundError(NotFoundError):
    error_code = "JOB_NOT_FOUND"


# Conflict Errors
class ConflictError(DomainError):
    """Resource conflict (e.g., concurrent modification)"""
    error_code = "CONFLICT"
    http_status = 409


class ConcurrencyError(ConflictError):
    """Optimistic concurrency conflict"""
    error_code = "CONCURRENCY_CONFLICT"


class InvalidStateError(ConflictError):
    """Action not valid for current state"""
    error_code = "INVALID_STATE"


class AlreadyExistsError(ConflictError):
    """Resource already exists"""
    error_code = "ALREADY_EXISTS"


# Engine Errors
class EngineError(DomainError):
    """Approval engine error"""
    error_code = "ENGINE_ERROR"
    http_status = 500


class TransientError(EngineError):
    """Store unavailable - safe to retry"""
    error_code = "TRANSIENT_ERROR"
    http_status = 503
