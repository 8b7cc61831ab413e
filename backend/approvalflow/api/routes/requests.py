"""Request API Routes - submission, cancellation and history"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from ..deps import get_actor_dep, get_request_service, get_state_machine
from ...domain.models import ActorContext, Approval, LedgerEntry, Request, SubmissionResult
from ...domain.enums import RequestStatus
from ...domain.errors import ConflictError, InvalidStateError
from ...engine.approval_state_machine import ApprovalStateMachine
from ...services.request_service import RequestService
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class SubmitRequestBody(BaseModel):
    """Request to submit a new request for approval"""
    request_type_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=300)
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = Field(2, ge=1, le=4)
    due_date: Optional[datetime] = None
    request_id: Optional[str] = Field(None, description="Client id; resubmitting it returns the first outcome")


class CreateApprovalBody(BaseModel):
    approver_id: str = Field(..., min_length=1)
    stage: int = Field(1, ge=1)


class CancelResponse(BaseModel):
    request_id: str
    cancelled: bool


# ============================================================================
# Routes
# ============================================================================

@router.post("", response_model=SubmissionResult, status_code=status.HTTP_201_CREATED)
async def submit_request(
    body: SubmitRequestBody,
    actor: ActorContext = Depends(get_actor_dep),
    service: RequestService = Depends(get_request_service)
):
    """Submit a request; the response says whether it was decided or awaits approvers"""
    return service.submit_request(
        tenant_id=actor.tenant_id,
        requester_id=actor.user_id,
        request_type_id=body.request_type_id,
        title=body.title,
        data=body.data,
        priority=body.priority,
        due_date=body.due_date,
        request_id=body.request_id
    )


@router.get("", response_model=List[Request])
async def list_requests(
    mine: bool = Query(False, description="Only requests submitted by the caller"),
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    actor: ActorContext = Depends(get_actor_dep),
    service: RequestService = Depends(get_request_service)
):
    return service.list_requests(
        actor.tenant_id,
        requester_id=actor.user_id if mine else None,
        status=status_filter,
        skip=(page - 1) * page_size,
        limit=page_size
    )


@router.get("/{request_id}", response_model=Request)
async def get_request(
    request_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    service: RequestService = Depends(get_request_service)
):
    return service.get_request(actor.tenant_id, request_id)


@router.post("/{request_id}/cancel", response_model=CancelResponse)
async def cancel_request(
    request_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    service: RequestService = Depends(get_request_service)
):
    """Cancel an open request"""
    if not service.cancel_request(actor.tenant_id, request_id, actor.user_id):
        raise InvalidStateError(
            f"Request {request_id} can no longer be cancelled",
            details={"request_id": request_id}
        )
    return CancelResponse(request_id=request_id, cancelled=True)


@router.get("/{request_id}/history", response_model=List[LedgerEntry])
async def get_request_history(
    request_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    service: RequestService = Depends(get_request_service)
):
    return service.get_request_history(actor.tenant_id, request_id)


@router.get("/{request_id}/approvals", response_model=List[Approval])
async def list_request_approvals(
    request_id: str,
    actor: ActorContext = Depends(get_actor_dep),
    service: RequestService = Depends(get_request_service),
    machine: ApprovalStateMachine = Depends(get_state_machine)
):
    service.get_request(actor.tenant_id, request_id)
    return machine.get_request_approvals(request_id, actor.tenant_id)


@router.post(
    "/{request_id}/approvals",
    response_model=Approval,
    status_code=status.HTTP_201_CREATED
)
async def create_approval(
    request_id: str,
    body: CreateApprovalBody,
    actor: ActorContext = Depends(get_actor_dep),
    service: RequestService = Depends(get_request_service),
    machine: ApprovalStateMachine = Depends(get_state_machine)
):
    """Assign an approver to a stage of the request"""
    service.get_request(actor.tenant_id, request_id)
    approval = machine.create_approval(
        actor.tenant_id, request_id, body.approver_id, stage=body.stage, actor_id=actor.user_id
    )
    if approval is None:
        raise ConflictError(
            "Approval not created: the request is closed or the approver already has a pending approval",
            details={"request_id": request_id, "approver_id": body.approver_id}
        )
    return approval
