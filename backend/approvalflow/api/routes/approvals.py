"""Approval API Routes - approver inbox, decisions and escalations"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..deps import get_actor_dep, get_state_machine
from ...domain.models import ActorContext, Approval, ApprovalEscalation, ApprovalStats, EscalationStats
from ...domain.errors import EscalationNotFoundError, PendingApprovalNotFoundError
from ...engine.approval_state_machine import ApprovalStateMachine
from ...utils.logger import get_logger

logger = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================

class ApproveBody(BaseModel):
    comments: Optional[str] = Field(None, max_length=2000)


class RejectBody(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
    comments: Optional[str] = Field(None, max_length=2000)


class EscalateBody(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)
    comments: Optional[str] = Field(None, max_length=2000)
    escalated_to: Optional[str] = None


class ResolveEscalationBody(BaseModel):
    reassign: bool = False
    comments: Optional[str] = Field(None, max_length=2000)


class PendingApprovalsResponse(BaseModel):
    items: List[Approval]
    page: int
    page_size: int
    total: int


class DecisionResponse(BaseModel):
    request_id: str
    success: bool


def _pending_not_found(request_id: str, actor: ActorContext) -> PendingApprovalNotFoundError:
    return PendingApprovalNotFoundError(
        f"No pending approval for {actor.user_id} on request {request_id}",
        details={"request_id": request_id, "approver_id": actor.user_id}
    )


# ============================================================================
# Routes
# ============================================================================

@router.get("/pending", response_model=PendingApprovalsResponse)
async def get_pending_approvals(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    actor: ActorContext = Depends(get_actor_dep),
    machine: ApprovalStateMachine = Depends(get_state_machine)
):
    """The caller's pending approvals, oldest first"""
    items, total = machine.get_pending_approvals(actor.user_id, actor.tenant_id, page, page_size)
    return PendingApprovalsResponse(items=items, page=page, page_size=page_size, total=total)


@router.get("/stats", response_model=ApprovalStats)
async def get_approval_stats(
    approver_id: Optional[str] = Query(None),
    actor: ActorContext = Depends(get_actor_dep),
    machine: ApprovalStateMachine = Depends(get_state_machine)
):
    return machine.get_approval_stats(actor.tenant_id, approver_id)


@router.get("/escalations", response_model=List[ApprovalEscalation])
async def get_pending_escalations(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    actor: ActorContext = Depends(get_actor_dep),
    machine: ApprovalStateMachine = Depends(get_state_machine)
):
    return machine.get_pending_escalations(actor.tenant_id, skip=(page - 1) * page_size, limit=page_size)


@router.get("/escalations/stats", response_model=EscalationStats)
async def get_escalation_stats(
    actor: ActorContext = Depends(get_actor_dep),
    machine: ApprovalStateMachine = Depends(get_state_machine)
):
    return machine.get_escalation_stats(actor.tenant_id)


@router.post("/escalations/{escalation_id}/resolve", response_model=DecisionResponse)
async def resolve_escalation(
    escalation_id: str,
    body: ResolveEscalationBody,
    actor: ActorContext = Depends(get_actor_dep),
    machine: ApprovalStateMachine = Depends(get_state_machine)
):
    """Resolve a pending escalation, optionally handing the approval to its target"""
    if not machine.resolve_escalation(
        escalation_id, actor.tenant_id, actor.user_id, reassign=body.reassign, comments=body.comments
    ):
        raise EscalationNotFoundError(
            f"No pending escalation {escalation_id}",
            details={"escalation_id": escalation_id}
        )
    escalation = machine.escalation_repo.get_escalation(escalation_id, actor.tenant_id)
    return DecisionResponse(request_id=escalation.request_id, success=True)


@router.post("/{request_id}/approve", response_model=DecisionResponse)
async def approve(
    request_id: str,
    body: ApproveBody,
    actor: ActorContext = Depends(get_actor_dep),
    machine: ApprovalStateMachine = Depends(get_state_machine)
):
    if not machine.approve(actor.tenant_id, request_id, actor.user_id, body.comments):
        raise _pending_not_found(request_id, actor)
    logger.info("Approved via API", extra={"request_id": request_id, "approver_id": actor.user_id})
    return DecisionResponse(request_id=request_id, success=True)


@router.post("/{request_id}/reject", response_model=DecisionResponse)
async def reject(
    request_id: str,
    body: RejectBody,
    actor: ActorContext = Depends(get_actor_dep),
    machine: ApprovalStateMachine = Depends(get_state_machine)
):
    if not machine.reject(actor.tenant_id, request_id, actor.user_id, body.reason, body.comments):
        raise _pending_not_found(request_id, actor)
    return DecisionResponse(request_id=request_id, success=True)


@router.post("/{request_id}/escalate", response_model=DecisionResponse)
async def escalate(
    request_id: str,
    body: EscalateBody,
    actor: ActorContext = Depends(get_actor_dep),
    machine: ApprovalStateMachine = Depends(get_state_machine)
):
    if not machine.escalate(
        actor.tenant_id, request_id, actor.user_id, body.reason, body.comments, body.escalated_to
    ):
        raise _pending_not_found(request_id, actor)
    return DecisionResponse(request_id=request_id, success=True)
