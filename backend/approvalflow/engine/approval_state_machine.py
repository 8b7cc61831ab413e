"""Approval State Machine - per-request approval lifecycle across stages

Approval states: PENDING -> {APPROVED, REJECTED, ESCALATED}. Only a PENDING
approval moves. Decisions are looked up by (request, approver) and applied
with a compare-and-swap, so a repeated or racing decision returns False
instead of raising.
"""
from typing import Dict, List, Optional, Tuple

from pymongo.database import Database

from ..domain.models import (
    Approval, ApprovalEscalation, ApprovalStats, EscalationStats, Request
)
from ..domain.enums import (
    ApprovalStatus, EscalationStatus, LedgerEvent, RequestStatus, WorkflowInstanceStatus
)
from ..repositories.approval_repo import ApprovalRepository
from ..repositories.escalation_repo import EscalationRepository
from ..repositories.request_repo import RequestRepository
from ..services.notification_service import NotificationService
from ..utils.idgen import generate_approval_id, generate_escalation_id
from ..utils.logger import get_logger
from ..utils.time import Clock, SystemClock, hours_between
from .workflow_ledger import WorkflowLedger

logger = get_logger(__name__)

# Requests no decision may touch
_CLOSED_FOR_DECISIONS = (RequestStatus.CANCELLED,)
# Requests that refuse new approvals
_CLOSED_FOR_APPROVALS = (RequestStatus.CANCELLED, RequestStatus.REJECTED)
# Requests a stage drain may finalize
_FINALIZABLE = (RequestStatus.PENDING, RequestStatus.IN_PROGRESS, RequestStatus.OVERDUE)
# Requests that move to IN_PROGRESS when an approval is created
_REOPENABLE = (RequestStatus.PENDING, RequestStatus.APPROVED, RequestStatus.COMPLETED)


class StageAdvancer:
    """
    Supplies the approvers of the next stage

    Called when a stage drains without rejection. Returning an empty list
    lets the state machine finalize the request.
    """

    def next_stage_approvers(self, request: Request, completed_stage: int) -> List[str]:
        raise NotImplementedError


class ApprovalStateMachine:
    """Creates approvals, applies decisions and finalizes requests"""

    def __init__(
        self,
        database: Optional[Database] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[NotificationService] = None,
        ledger: Optional[WorkflowLedger] = None,
        stage_advancer: Optional[StageAdvancer] = None,
        approval_repo: Optional[ApprovalRepository] = None,
        request_repo: Optional[RequestRepository] = None,
        escalation_repo: Optional[EscalationRepository] = None
    ):
        self.clock = clock or SystemClock()
        self.approval_repo = approval_repo or ApprovalRepository(database)
        self.request_repo = request_repo or RequestRepository(database)
        self.escalation_repo = escalation_repo or EscalationRepository(database)
        self.notifier = notifier or NotificationService(database, self.clock)
        self.ledger = ledger or WorkflowLedger(database, self.clock)
        self.stage_advancer = stage_advancer

    # =========================================================================
    # Creation
    # =========================================================================

    def create_approval(
        self,
        tenant_id: str,
        request_id: str,
        approver_id: str,
        stage: int = 1,
        actor_id: Optional[str] = None
    ) -> Optional[Approval]:
        """
        Insert a PENDING approval for an approver at a stage

        Returns:
            The approval, or None when the request is unknown, cancelled or
            rejected, or the approver already has a pending approval on it.
        """
        request = self.request_repo.get_request(request_id, tenant_id)
        if request is None:
            logger.warning(f"Cannot create approval: request {request_id} not found", extra={"tenant_id": tenant_id})
            return None
        if request.status in _CLOSED_FOR_APPROVALS:
            logger.info(
                f"Cannot create approval: request is {request.status.value}",
                extra={"request_id": request_id, "tenant_id": tenant_id}
            )
            return None
        if self.approval_repo.find_pending(request_id, approver_id, tenant_id):
            logger.info(
                "Approver already has a pending approval",
                extra={"request_id": request_id, "approver_id": approver_id}
            )
            return None

        now = self.clock.now()
        approval = self.approval_repo.create_approval(Approval(
            approval_id=generate_approval_id(),
            tenant_id=tenant_id,
            request_id=request_id,
            approver_id=approver_id,
            stage=stage,
            status=ApprovalStatus.PENDING,
            created_at=now,
            updated_at=now,
            updated_by=actor_id
        ))
        if approval is None:
            return None

        if request.status in _REOPENABLE:
            self.request_repo.transition_status(
                request_id, tenant_id, _REOPENABLE,
                {"status": RequestStatus.IN_PROGRESS, "updated_at": now, "updated_by": actor_id, "completed_at": None}
            )

        self.ledger.record_for_request(
            tenant_id, request_id, WorkflowInstanceStatus.RUNNING, LedgerEvent.APPROVAL_CREATED,
            actor_id=actor_id,
            data={"approval_id": approval.approval_id, "approver_id": approver_id, "stage": stage}
        )
        self.notifier.notify_approval_pending(request, approval)
        return approval

    # =========================================================================
    # Decisions
    # =========================================================================

    def approve(
        self,
        tenant_id: str,
        request_id: str,
        approver_id: str,
        comments: Optional[str] = None
    ) -> bool:
        """Approve the approver's pending approval; runs the stage-completion check"""
        decided = self._decide(tenant_id, request_id, approver_id, ApprovalStatus.APPROVED, comments)
        if decided is None:
            return False

        self.ledger.record_for_request(
            tenant_id, request_id, WorkflowInstanceStatus.RUNNING, LedgerEvent.APPROVED,
            actor_id=approver_id,
            data={"approval_id": decided.approval_id, "stage": decided.stage}
        )
        request = self.request_repo.get_request(request_id, tenant_id)
        if request is not None:
            self.notifier.notify_approved(request, decided)

        self._check_stage_completion(tenant_id, request_id, approver_id)
        return True

    def reject(
        self,
        tenant_id: str,
        request_id: str,
        approver_id: str,
        reason: str,
        comments: Optional[str] = None
    ) -> bool:
        """Reject; the request becomes REJECTED immediately"""
        decided = self._decide(tenant_id, request_id, approver_id, ApprovalStatus.REJECTED, comments)
        if decided is None:
            return False

        now = self.clock.now()
        request = self.request_repo.transition_status(
            request_id, tenant_id, _FINALIZABLE,
            {
                "status": RequestStatus.REJECTED,
                "rejection_reason": reason,
                "updated_at": now,
                "updated_by": approver_id,
                "completed_at": now
            }
        )

        self.ledger.record_for_request(
            tenant_id, request_id, WorkflowInstanceStatus.COMPLETED, LedgerEvent.REJECTED,
            actor_id=approver_id,
            data={"approval_id": decided.approval_id, "stage": decided.stage, "reason": reason}
        )
        if request is not None:
            logger.info(
                "Request rejected",
                extra={"request_id": request_id, "approver_id": approver_id, "status": request.status.value}
            )
            self.notifier.notify_rejected(request, decided, reason)

        self._check_stage_completion(tenant_id, request_id, approver_id)
        return True

    def escalate(
        self,
        tenant_id: str,
        request_id: str,
        approver_id: str,
        reason: str,
        comments: Optional[str] = None,
        escalated_to: Optional[str] = None
    ) -> bool:
        """Escalate the approver's pending approval"""
        approval = self.approval_repo.find_pending(request_id, approver_id, tenant_id)
        if approval is None:
            return False
        request = self.request_repo.get_request(request_id, tenant_id)
        if request is None or request.status in _CLOSED_FOR_DECISIONS:
            return False

        escalation = self.escalate_pending_approval(
            approval, request, reason,
            escalated_by=approver_id,
            escalated_to=escalated_to,
            comments=comments
        )
        return escalation is not None

    def escalate_pending_approval(
        self,
        approval: Approval,
        request: Request,
        reason: str,
        escalated_by: str,
        escalated_to: Optional[str] = None,
        comments: Optional[str] = None
    ) -> Optional[ApprovalEscalation]:
        """
        Create the PENDING escalation, then flip the approval to ESCALATED

        If the approval was decided in between, the new escalation is
        removed again and None is returned.
        """
        now = self.clock.now()
        escalation = ApprovalEscalation(
            escalation_id=generate_escalation_id(),
            tenant_id=approval.tenant_id,
            approval_id=approval.approval_id,
            request_id=approval.request_id,
            reason=reason,
            comments=comments,
            triggered_at=now,
            escalated_by_user_id=escalated_by,
            escalated_to_user_id=escalated_to,
            status=EscalationStatus.PENDING
        )
        if not self.escalation_repo.create_pending_escalation(escalation):
            return None

        flipped = self.approval_repo.decide(
            approval.approval_id, approval.tenant_id, approval.version,
            {
                "status": ApprovalStatus.ESCALATED,
                "comments": comments or approval.comments,
                "updated_at": now,
                "updated_by": escalated_by
            }
        )
        if flipped is None:
            self.escalation_repo.delete_escalation(escalation.escalation_id, approval.tenant_id)
            return None

        logger.info(
            "Approval escalated",
            extra={
                "approval_id": approval.approval_id,
                "escalation_id": escalation.escalation_id,
                "request_id": approval.request_id,
                "tenant_id": approval.tenant_id
            }
        )
        self.ledger.record_for_request(
            approval.tenant_id, approval.request_id, WorkflowInstanceStatus.RUNNING, LedgerEvent.ESCALATED,
            actor_id=escalated_by,
            data={
                "approval_id": approval.approval_id,
                "escalation_id": escalation.escalation_id,
                "escalated_to": escalated_to
            }
        )
        if escalated_to:
            self.notifier.notify_escalated(request, escalation)
        return escalation

    def resolve_escalation(
        self,
        escalation_id: str,
        tenant_id: str,
        resolved_by: str,
        reassign: bool = False,
        comments: Optional[str] = None
    ) -> bool:
        """
        Resolve a PENDING escalation

        With reassign, the escalation target gets a new PENDING approval at
        the escalated approval's stage. Without it, the stage-completion
        check runs so a drained request can finalize.
        """
        now = self.clock.now()
        updates = {"resolved_at": now, "resolved_by_user_id": resolved_by}
        if comments:
            updates["comments"] = comments
        escalation = self.escalation_repo.resolve_escalation(escalation_id, tenant_id, updates)
        if escalation is None:
            return False

        self.ledger.record_for_request(
            tenant_id, escalation.request_id, WorkflowInstanceStatus.RUNNING, LedgerEvent.ESCALATION_RESOLVED,
            actor_id=resolved_by,
            data={"escalation_id": escalation_id, "reassign": reassign}
        )

        if reassign and escalation.escalated_to_user_id:
            approval = self.approval_repo.get_approval(escalation.approval_id, tenant_id)
            stage = approval.stage if approval else 1
            replacement = self.create_approval(
                tenant_id, escalation.request_id, escalation.escalated_to_user_id, stage, resolved_by
            )
            if replacement is not None:
                self.escalation_repo.mark_reassigned(escalation_id, tenant_id, replacement.approval_id)
        else:
            self._check_stage_completion(tenant_id, escalation.request_id, resolved_by)
        return True

    def _decide(
        self,
        tenant_id: str,
        request_id: str,
        approver_id: str,
        status: ApprovalStatus,
        comments: Optional[str]
    ) -> Optional[Approval]:
        approval = self.approval_repo.find_pending(request_id, approver_id, tenant_id)
        if approval is None:
            logger.info(
                "No pending approval to decide",
                extra={"request_id": request_id, "approver_id": approver_id, "tenant_id": tenant_id}
            )
            return None

        request = self.request_repo.get_request(request_id, tenant_id)
        if request is None or request.status in _CLOSED_FOR_DECISIONS:
            return None

        now = self.clock.now()
        updates = {
            "status": status,
            "comments": comments,
            "updated_at": now,
            "updated_by": approver_id
        }
        if status == ApprovalStatus.APPROVED:
            updates["approved_at"] = now

        decided = self.approval_repo.decide(approval.approval_id, tenant_id, approval.version, updates)
        if decided is not None:
            logger.info(
                f"Approval {status.value.lower()}",
                extra={
                    "approval_id": decided.approval_id,
                    "request_id": request_id,
                    "approver_id": approver_id,
                    "status": status.value
                }
            )
        return decided

    # =========================================================================
    # Stage completion
    # =========================================================================

    def _check_stage_completion(self, tenant_id: str, request_id: str, actor_id: Optional[str]) -> None:
        """
        Finalize the request once no PENDING approval remains

        All approved -> COMPLETED, any rejected -> REJECTED, escalation
        residue -> COMPLETED. A configured StageAdvancer may open the next
        stage instead when the drained stage had no rejection.
        """
        if self.approval_repo.count_pending_for_request(request_id, tenant_id) > 0:
            return

        request = self.request_repo.get_request(request_id, tenant_id)
        if request is None or request.status not in _FINALIZABLE:
            return

        approvals = self.approval_repo.get_request_approvals(request_id, tenant_id)
        statuses = [a.status for a in approvals]

        if ApprovalStatus.REJECTED in statuses:
            final_status = RequestStatus.REJECTED
        else:
            if self._advance_stage(request, approvals, actor_id):
                return
            final_status = RequestStatus.COMPLETED

        now = self.clock.now()
        updated = self.request_repo.transition_status(
            request_id, tenant_id, _FINALIZABLE,
            {"status": final_status, "updated_at": now, "updated_by": actor_id, "completed_at": now}
        )
        if updated is None:
            return

        self.ledger.record_for_request(
            tenant_id, request_id, WorkflowInstanceStatus.COMPLETED, LedgerEvent.FINALIZED,
            actor_id=actor_id,
            data={"status": final_status.value, "approvals": len(approvals)}
        )
        logger.info(
            f"Request finalized as {final_status.value}",
            extra={"request_id": request_id, "tenant_id": tenant_id, "status": final_status.value}
        )
        self.notifier.notify_request_completed(updated)

    def _advance_stage(self, request: Request, approvals: List[Approval], actor_id: Optional[str]) -> bool:
        if self.stage_advancer is None or not approvals:
            return False

        # Escalated approvals handed to someone else count as their replacement
        superseded = {
            e.approval_id
            for e in self.escalation_repo.list_for_request(request.request_id, request.tenant_id)
            if e.reassigned_approval_id
        }
        current_stage = max(a.stage for a in approvals)
        stage_approvals = [a for a in approvals if a.stage == current_stage and a.approval_id not in superseded]
        if not stage_approvals or not all(a.status == ApprovalStatus.APPROVED for a in stage_approvals):
            return False

        next_approvers = self.stage_advancer.next_stage_approvers(request, current_stage)
        created = [
            self.create_approval(request.tenant_id, request.request_id, approver_id, current_stage + 1, actor_id)
            for approver_id in next_approvers
        ]
        if not any(created):
            return False

        self.ledger.record_for_request(
            request.tenant_id, request.request_id, WorkflowInstanceStatus.RUNNING, LedgerEvent.STAGE_ADVANCED,
            actor_id=actor_id,
            data={"from_stage": current_stage, "to_stage": current_stage + 1}
        )
        return True

    # =========================================================================
    # Queries
    # =========================================================================

    def get_pending_approvals(
        self,
        approver_id: str,
        tenant_id: str,
        page: int = 1,
        page_size: int = 20
    ) -> Tuple[List[Approval], int]:
        """Page through an approver's pending approvals, oldest first"""
        page = max(page, 1)
        return self.approval_repo.get_pending_for_approver(
            approver_id, tenant_id, skip=(page - 1) * page_size, limit=page_size
        )

    def get_request_approvals(self, request_id: str, tenant_id: str) -> List[Approval]:
        return self.approval_repo.get_request_approvals(request_id, tenant_id)

    def get_approval(self, approval_id: str, tenant_id: str) -> Optional[Approval]:
        return self.approval_repo.get_approval(approval_id, tenant_id)

    def get_pending_escalations(self, tenant_id: str, skip: int = 0, limit: int = 50) -> List[ApprovalEscalation]:
        return self.escalation_repo.list_escalations(tenant_id, EscalationStatus.PENDING, skip, limit)

    def get_approval_stats(self, tenant_id: str, approver_id: Optional[str] = None) -> ApprovalStats:
        approvals = self.approval_repo.list_approvals(tenant_id, approver_id=approver_id)
        counts: Dict[ApprovalStatus, int] = {status: 0 for status in ApprovalStatus}
        for approval in approvals:
            counts[approval.status] += 1

        decided = [a for a in approvals if a.status in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED)]
        approved = counts[ApprovalStatus.APPROVED]
        return ApprovalStats(
            total=len(approvals),
            pending=counts[ApprovalStatus.PENDING],
            approved=approved,
            rejected=counts[ApprovalStatus.REJECTED],
            escalated=counts[ApprovalStatus.ESCALATED],
            approval_rate=round(approved * 100.0 / len(decided), 2) if decided else 0.0,
            average_processing_hours=_average([hours_between(a.created_at, a.updated_at) for a in decided])
        )

    def get_escalation_stats(self, tenant_id: str) -> EscalationStats:
        escalations = self.escalation_repo.list_escalations(tenant_id)
        resolved = [e for e in escalations if e.status == EscalationStatus.RESOLVED and e.resolved_at]
        return EscalationStats(
            total=len(escalations),
            pending=len(escalations) - len(resolved),
            resolved=len(resolved),
            average_resolution_hours=_average([hours_between(e.triggered_at, e.resolved_at) for e in resolved])
        )


def _average(values: List[float]) -> float:
    return round(sum(values) / len(values), 2) if values else 0.0
