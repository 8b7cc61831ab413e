"""Configuration Service - workflow configuration authoring and lookups"""
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from ..domain.models import (
    ActorContext, Condition, ConfigurationStatistics, EscalationSettings, EvaluationRule,
    NotificationSettings, RuleEvaluationResult, WorkflowConfiguration
)
from ..domain.enums import ConfigurationStatus
from ..domain.errors import InvalidStateError, RuleValidationError
from ..engine.configuration_selector import ConfigurationSelector
from ..engine.rule_evaluator import RuleEvaluator
from ..repositories.configuration_repo import ConfigurationRepository
from ..utils.idgen import generate_configuration_id
from ..utils.logger import get_logger
from ..utils.time import Clock, SystemClock

logger = get_logger(__name__)

# Fields an update may not touch directly
_PROTECTED_FIELDS = {
    "configuration_id", "tenant_id", "status", "is_active", "is_deleted",
    "created_at", "created_by", "revision"
}


class ConfigurationService:
    """Service for workflow configuration operations"""

    def __init__(
        self,
        database: Optional[Database] = None,
        clock: Optional[Clock] = None,
        evaluator: Optional[RuleEvaluator] = None
    ):
        self.clock = clock or SystemClock()
        self.repo = ConfigurationRepository(database)
        self.evaluator = evaluator or RuleEvaluator(self.clock)
        self.selector = ConfigurationSelector(self.repo, self.evaluator)

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_configuration(
        self,
        workflow_name: str,
        request_type_id: str,
        actor: ActorContext,
        description: Optional[str] = None,
        evaluation_rules: Optional[List[EvaluationRule]] = None,
        start_conditions: Optional[List[Condition]] = None,
        completion_conditions: Optional[List[Condition]] = None,
        escalation_settings: Optional[EscalationSettings] = None,
        notification_settings: Optional[NotificationSettings] = None,
        approval_stages: Optional[List[List[str]]] = None,
        **options: Any
    ) -> WorkflowConfiguration:
        """
        Create a configuration in DRAFT

        Extra keyword options (priority, default_action, requires_manual_approval,
        ...) are passed through to the model.

        Raises:
            RuleValidationError: If a rule or condition is malformed
        """
        rules = evaluation_rules or []
        starts = start_conditions or []
        completions = completion_conditions or []
        self._validate_dsl(rules, starts, completions)

        now = self.clock.now()
        configuration = WorkflowConfiguration(
            configuration_id=generate_configuration_id(),
            tenant_id=actor.tenant_id,
            workflow_name=workflow_name,
            description=description,
            request_type_id=request_type_id,
            evaluation_rules=rules,
            start_conditions=starts,
            completion_conditions=completions,
            escalation_settings=escalation_settings or EscalationSettings(),
            notification_settings=notification_settings or NotificationSettings(),
            approval_stages=approval_stages or [],
            status=ConfigurationStatus.DRAFT,
            is_active=False,
            created_at=now,
            created_by=actor.user_id,
            updated_at=now,
            updated_by=actor.user_id,
            **options
        )
        return self.repo.create_configuration(configuration)

    def get_configuration(self, configuration_id: str, tenant_id: str) -> WorkflowConfiguration:
        """Get configuration by ID"""
        return self.repo.get_configuration_or_raise(configuration_id, tenant_id)

    def list_for_tenant(
        self,
        tenant_id: str,
        status: Optional[ConfigurationStatus] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[WorkflowConfiguration]:
        return self.repo.list_configurations(
            tenant_id, status=status, is_active=is_active, search=search, skip=skip, limit=limit
        )

    def list_for_request_type(self, tenant_id: str, request_type_id: str) -> List[WorkflowConfiguration]:
        return self.repo.list_configurations(tenant_id, request_type_id=request_type_id)

    def update_configuration(
        self,
        configuration_id: str,
        updates: Dict[str, Any],
        actor: ActorContext,
        expected_revision: Optional[int] = None
    ) -> WorkflowConfiguration:
        """
        Update editable fields of a configuration

        Raises:
            InvalidStateError: If the configuration is archived
            RuleValidationError: If updated rules or conditions are malformed
            ConcurrencyError: If expected_revision is stale
        """
        configuration = self.repo.get_configuration_or_raise(configuration_id, actor.tenant_id)
        if configuration.status == ConfigurationStatus.ARCHIVED:
            raise InvalidStateError(
                f"Configuration {configuration_id} is archived and cannot be edited",
                details={"configuration_id": configuration_id}
            )

        changes = {
            k: v for k, v in updates.items()
            if k in WorkflowConfiguration.model_fields and k not in _PROTECTED_FIELDS
        }
        # Round-trip through the model so nested DSL values are validated and normalized
        merged = WorkflowConfiguration.model_validate({**configuration.model_dump(), **changes})
        self._validate_dsl(merged.evaluation_rules, merged.start_conditions, merged.completion_conditions)

        stored: Dict[str, Any] = {k: getattr(merged, k) for k in changes}
        stored["updated_at"] = self.clock.now()
        stored["updated_by"] = actor.user_id
        return self.repo.update_configuration(configuration_id, actor.tenant_id, stored, expected_revision)

    def delete_configuration(self, configuration_id: str, actor: ActorContext) -> bool:
        """Soft delete; the configuration disappears from every lookup"""
        self.repo.update_configuration(configuration_id, actor.tenant_id, {
            "is_deleted": True,
            "is_active": False,
            "updated_at": self.clock.now(),
            "updated_by": actor.user_id
        })
        logger.info(
            f"Deleted configuration: {configuration_id}",
            extra={"configuration_id": configuration_id, "tenant_id": actor.tenant_id}
        )
        return True

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def activate_configuration(self, configuration_id: str, actor: ActorContext) -> WorkflowConfiguration:
        """Publish a configuration so the selector can pick it"""
        configuration = self.repo.get_configuration_or_raise(configuration_id, actor.tenant_id)
        if configuration.status == ConfigurationStatus.ARCHIVED:
            raise InvalidStateError(
                f"Configuration {configuration_id} is archived and cannot be activated",
                details={"configuration_id": configuration_id}
            )
        self._validate_dsl(
            configuration.evaluation_rules, configuration.start_conditions, configuration.completion_conditions
        )
        return self._set_lifecycle(configuration_id, actor, ConfigurationStatus.ACTIVE, True)

    def deactivate_configuration(self, configuration_id: str, actor: ActorContext) -> WorkflowConfiguration:
        """Keep the status but stop selection"""
        return self.repo.update_configuration(configuration_id, actor.tenant_id, {
            "is_active": False,
            "updated_at": self.clock.now(),
            "updated_by": actor.user_id
        })

    def archive_configuration(self, configuration_id: str, actor: ActorContext) -> WorkflowConfiguration:
        return self._set_lifecycle(configuration_id, actor, ConfigurationStatus.ARCHIVED, False)

    def clone_configuration(self, configuration_id: str, actor: ActorContext) -> WorkflowConfiguration:
        """Copy a configuration into a new inactive DRAFT one version up"""
        original = self.repo.get_configuration_or_raise(configuration_id, actor.tenant_id)
        now = self.clock.now()
        clone = original.model_copy(update={
            "configuration_id": generate_configuration_id(),
            "workflow_name": f"{original.workflow_name} - Copy",
            "status": ConfigurationStatus.DRAFT,
            "is_active": False,
            "version": _next_version(original.version),
            "created_at": now,
            "created_by": actor.user_id,
            "updated_at": now,
            "updated_by": actor.user_id,
            "revision": 1
        })
        logger.info(
            f"Cloned configuration {configuration_id}",
            extra={"configuration_id": clone.configuration_id, "tenant_id": actor.tenant_id}
        )
        return self.repo.create_configuration(clone)

    def _set_lifecycle(
        self,
        configuration_id: str,
        actor: ActorContext,
        status: ConfigurationStatus,
        is_active: bool
    ) -> WorkflowConfiguration:
        updated = self.repo.update_configuration(configuration_id, actor.tenant_id, {
            "status": status,
            "is_active": is_active,
            "updated_at": self.clock.now(),
            "updated_by": actor.user_id
        })
        logger.info(
            f"Configuration {configuration_id} is now {status.value}",
            extra={"configuration_id": configuration_id, "status": status.value}
        )
        return updated

    def _validate_dsl(
        self,
        rules: List[EvaluationRule],
        start_conditions: List[Condition],
        completion_conditions: List[Condition]
    ) -> None:
        errors: List[str] = []
        for rule in rules:
            errors.extend(self.evaluator.validate_rule(rule))
        for condition in list(start_conditions) + list(completion_conditions):
            errors.extend(self.evaluator.validate_condition(condition))
        if errors:
            raise RuleValidationError(
                "Invalid evaluation rules or conditions",
                details={"errors": errors, "supported_operators": self.evaluator.supported_operators()}
            )

    # =========================================================================
    # Evaluation
    # =========================================================================

    def evaluate_workflow_rules(
        self,
        configuration_id: str,
        tenant_id: str,
        request_data: Optional[Dict[str, Any]]
    ) -> RuleEvaluationResult:
        """Run a configuration's rules against request data"""
        configuration = self.repo.get_configuration(configuration_id, tenant_id)
        if configuration is None:
            return RuleEvaluationResult(
                is_valid=False,
                errors=["Configuration not found"],
                evaluation_data=dict(request_data or {}),
                evaluated_at=self.clock.now()
            )
        return self.evaluator.evaluate_rules(
            configuration.evaluation_rules,
            request_data,
            stop_on_first_match=configuration.stop_on_first_match,
            default_action=configuration.default_action
        )

    def check_start_conditions(
        self,
        configuration_id: str,
        tenant_id: str,
        request_data: Optional[Dict[str, Any]]
    ) -> bool:
        configuration = self.repo.get_configuration(configuration_id, tenant_id)
        if configuration is None:
            return False
        return self.evaluator.evaluate_conditions(configuration.start_conditions, request_data)

    def check_completion_conditions(
        self,
        configuration_id: str,
        tenant_id: str,
        request_data: Optional[Dict[str, Any]]
    ) -> bool:
        configuration = self.repo.get_configuration(configuration_id, tenant_id)
        if configuration is None:
            return False
        return self.evaluator.evaluate_conditions(configuration.completion_conditions, request_data)

    def select_configuration(
        self,
        tenant_id: str,
        request_type_id: str,
        request_data: Optional[Dict[str, Any]]
    ) -> Optional[WorkflowConfiguration]:
        return self.selector.select_configuration(tenant_id, request_type_id, request_data)

    def list_compatible_configurations(
        self,
        tenant_id: str,
        request_data: Optional[Dict[str, Any]]
    ) -> List[WorkflowConfiguration]:
        return self.selector.list_compatible_configurations(tenant_id, request_data)

    def get_statistics(self, tenant_id: str) -> ConfigurationStatistics:
        return ConfigurationStatistics(
            total=self.repo.count_configurations(tenant_id),
            active=self.repo.count_configurations(tenant_id, is_active=True),
            draft=self.repo.count_configurations(tenant_id, status=ConfigurationStatus.DRAFT.value),
            archived=self.repo.count_configurations(tenant_id, status=ConfigurationStatus.ARCHIVED.value),
            by_request_type=self.repo.count_by_request_type(tenant_id)
        )


def _next_version(version: str) -> str:
    """'1.0' -> '2.0'; unparseable versions restart at '1.0'"""
    major = version.split(".", 1)[0]
    if not major.isdigit():
        return "1.0"
    return f"{int(major) + 1}.0"
