"""Configuration Selector - Pick the workflow configuration for a request"""
from typing import Any, Dict, List, Optional

from ..domain.models import WorkflowConfiguration
from ..repositories.configuration_repo import ConfigurationRepository
from .rule_evaluator import RuleEvaluator
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ConfigurationSelector:
    """
    Select the configuration that applies to a new request

    1. Candidates: same tenant and request type, active, status ACTIVE
    2. Keep those whose start conditions hold for the request data
    3. Choose highest priority; ties go to the most recently updated
    4. None when nothing qualifies
    """

    def __init__(
        self,
        repo: ConfigurationRepository,
        evaluator: Optional[RuleEvaluator] = None
    ):
        self.repo = repo
        self.evaluator = evaluator or RuleEvaluator()

    def select_configuration(
        self,
        tenant_id: str,
        request_type_id: str,
        request_data: Optional[Dict[str, Any]]
    ) -> Optional[WorkflowConfiguration]:
        """
        Resolve the configuration for a request

        Returns:
            The winning configuration, or None
        """
        candidates = self.repo.list_selectable(tenant_id, request_type_id)
        selected = self._pick(self._startable(candidates, request_data))

        if selected is None:
            logger.info(
                f"No configuration for request type {request_type_id}",
                extra={"tenant_id": tenant_id, "count": len(candidates)}
            )
            return None

        logger.info(
            f"Selected configuration: {selected.workflow_name}",
            extra={
                "tenant_id": tenant_id,
                "configuration_id": selected.configuration_id,
                "count": len(candidates)
            }
        )
        return selected

    def list_compatible_configurations(
        self,
        tenant_id: str,
        request_data: Optional[Dict[str, Any]]
    ) -> List[WorkflowConfiguration]:
        """Every selectable configuration of the tenant whose start conditions hold, best first"""
        startable = self._startable(self.repo.list_selectable(tenant_id), request_data)
        return sorted(startable, key=_selection_key, reverse=True)

    def _startable(
        self,
        candidates: List[WorkflowConfiguration],
        request_data: Optional[Dict[str, Any]]
    ) -> List[WorkflowConfiguration]:
        return [
            c for c in candidates
            if self.evaluator.evaluate_conditions(c.start_conditions, request_data)
        ]

    @staticmethod
    def _pick(candidates: List[WorkflowConfiguration]) -> Optional[WorkflowConfiguration]:
        if not candidates:
            return None
        return max(candidates, key=_selection_key)


def _selection_key(configuration: WorkflowConfiguration):
    return (configuration.priority, configuration.updated_at)
