"""Configuration API Routes - authoring, lifecycle and evaluation"""
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..deps import get_actor_dep, get_configuration_service
from ...domain.models import (
    ActorContext, Condition, ConfigurationStatistics, EscalationSettings, EvaluationRule,
    NotificationSettings, RuleEvaluationResult, WorkflowConfiguration
)
from ...domain.enums import ConfigurationStatus
from ...services.configuration_service import ConfigurationService
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class CreateConfigurationRequest(BaseModel):
    """Request to create a configuration (starts as Draft)"""
    workflow_name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    request_type_id: str = Field(..., min_length=1)
    evaluation_rules: List[EvaluationRule] = Field(default_factory=list)
    start_conditions: List[Condition] = Field(default_factory=list)
    completion_conditions: List[Condition] = Field(default_factory=list)
    escalation_settings: EscalationSettings = Field(default_factory=EscalationSettings)
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)
    approval_stages: List[List[str]] = Field(default_factory=list)
    default_action: Optional[str] = None
    stop_on_first_match: Optional[bool] = None
    priority: int = Field(2, ge=1)
    requires_manual_approval: bool = True
    supports_parallel_approval: bool = False
    max_execution_time_hours: Optional[int] = Field(None, ge=1)
    max_retry_count: int = Field(3, ge=0)


class UpdateConfigurationRequest(BaseModel):
    """Partial update; omitted fields stay unchanged"""
    workflow_name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    evaluation_rules: Optional[List[EvaluationRule]] = None
    start_conditions: Optional[List[Condition]] = None
    completion_conditions: Optional[List[Condition]] = None
    escalation_settings: Optional[EscalationSettings] = None
    notification_settings: Optional[NotificationSettings] = None
    approval_stages: Optional[List[List[str]]] = None
    default_action: Optional[str] = None
    stop_on_first_match: Optional[bool] = None
    priority: Optional[int] = Field(None, ge=1)
    requires_manual_approval: Optional[bool] = None
    supports_parallel_approval: Optional[bool] = None
    max_execution_time_hours: Optional[int] = Field(None, ge=1)
    expected_revision: Optional[int] = None


class RequestDataBody(BaseModel):
    """Request data bag to evaluate against"""
    data: Dict[str, Any] = Field(default_factory=dict)


class SelectConfigurationRequest(RequestDataBody):
    request_type_id: str = Field(..., min_length=1)


class SelectConfigurationResponse(BaseModel):
    configuration: Optional[WorkflowConfiguration] = None


class ConditionCheckResponse(BaseModel):
    configuration_id: str
    satisfied: bool


# ============================================================================
# Routes
# ============================================================================

@router.post("", response_model=WorkflowConfiguration, status_code=status.HTTP_201_CREATED)
async def create_configuration(
    body: CreateConfigurationRequest,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    """Create a Draft configuration; rules and conditions are validated"""
    fields = body.model_dump(exclude={"evaluation_rules", "start_conditions", "completion_conditions",
                                      "escalation_settings", "notification_settings"})
    return service.create_configuration(
        actor=actor,
        evaluation_rules=body.evaluation_rules,
        start_conditions=body.start_conditions,
        completion_conditions=body.completion_conditions,
        escalation_settings=body.escalation_settings,
        notification_settings=body.notification_settings,
        **fields
    )


@router.get("", response_model=List[WorkflowConfiguration])
async def list_configurations(
    request_type_id: Optional[str] = Query(None),
    status_filter: Optional[ConfigurationStatus] = Query(None, alias="status"),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    """List the tenant's configurations, most recently updated first"""
    if request_type_id:
        return service.list_for_request_type(actor.tenant_id, request_type_id)
    return service.list_for_tenant(
        actor.tenant_id,
        status=status_filter,
        is_active=is_active,
        search=search,
        skip=(page - 1) * page_size,
        limit=page_size
    )


@router.get("/statistics", response_model=ConfigurationStatistics)
async def get_statistics(
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    return service.get_statistics(actor.tenant_id)


@router.get("/operators", response_model=List[str])
async def list_operators(
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    """Operator names accepted in rules and conditions"""
    return service.evaluator.supported_operators()


@router.post("/select", response_model=SelectConfigurationResponse)
async def select_configuration(
    body: SelectConfigurationRequest,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    """Resolve the configuration a request of this type and data would get"""
    configuration = service.select_configuration(actor.tenant_id, body.request_type_id, body.data)
    return SelectConfigurationResponse(configuration=configuration)


@router.post("/compatible", response_model=List[WorkflowConfiguration])
async def list_compatible_configurations(
    body: RequestDataBody,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    return service.list_compatible_configurations(actor.tenant_id, body.data)


@router.get("/{configuration_id}", response_model=WorkflowConfiguration)
async def get_configuration(
    configuration_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    return service.get_configuration(configuration_id, actor.tenant_id)


@router.patch("/{configuration_id}", response_model=WorkflowConfiguration)
async def update_configuration(
    configuration_id: str,
    body: UpdateConfigurationRequest,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    """Update editable fields; archived configurations are read-only"""
    updates = body.model_dump(exclude_unset=True, exclude={"expected_revision"})
    return service.update_configuration(
        configuration_id, updates, actor, expected_revision=body.expected_revision
    )


@router.delete("/{configuration_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_configuration(
    configuration_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    service.delete_configuration(configuration_id, actor)


@router.post("/{configuration_id}/activate", response_model=WorkflowConfiguration)
async def activate_configuration(
    configuration_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    return service.activate_configuration(configuration_id, actor)


@router.post("/{configuration_id}/deactivate", response_model=WorkflowConfiguration)
async def deactivate_configuration(
    configuration_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    return service.deactivate_configuration(configuration_id, actor)


@router.post("/{configuration_id}/archive", response_model=WorkflowConfiguration)
async def archive_configuration(
    configuration_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    return service.archive_configuration(configuration_id, actor)


@router.post(
    "/{configuration_id}/clone",
    response_model=WorkflowConfiguration,
    status_code=status.HTTP_201_CREATED
)
async def clone_configuration(
    configuration_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    return service.clone_configuration(configuration_id, actor)


@router.post("/{configuration_id}/evaluate-rules", response_model=RuleEvaluationResult)
async def evaluate_rules(
    configuration_id: str,
    body: RequestDataBody,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    """Dry-run the configuration's rules; malformed rules show up in errors"""
    service.get_configuration(configuration_id, actor.tenant_id)
    return service.evaluate_workflow_rules(configuration_id, actor.tenant_id, body.data)


@router.post("/{configuration_id}/start-conditions", response_model=ConditionCheckResponse)
async def check_start_conditions(
    configuration_id: str,
    body: RequestDataBody,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    service.get_configuration(configuration_id, actor.tenant_id)
    satisfied = service.check_start_conditions(configuration_id, actor.tenant_id, body.data)
    return ConditionCheckResponse(configuration_id=configuration_id, satisfied=satisfied)


@router.post("/{configuration_id}/completion-conditions", response_model=ConditionCheckResponse)
async def check_completion_conditions(
    configuration_id: str,
    body: RequestDataBody,
    actor: ActorContext = Depends(get_actor_dep),
    service: ConfigurationService = Depends(get_configuration_service)
):
    service.get_configuration(configuration_id, actor.tenant_id)
    satisfied = service.check_completion_conditions(configuration_id, actor.tenant_id, body.data)
    return ConditionCheckResponse(configuration_id=configuration_id, satisfied=satisfied)
