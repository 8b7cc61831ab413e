"""Request Service - drives a request from submission to its first approval stage

Control flow on submit:
1. Persist the request as PENDING
2. Select the configuration for its type and data
3. Start a ledger instance
4. Evaluate the configuration's rules
5. Auto-approve, reject, or open stage 1 of the approval chain

Everything after stage 1 is driven by approver decisions through the
approval state machine.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from ..domain.models import (
    Approval, LedgerEntry, Request, RuleEvaluationResult, SubmissionResult, WorkflowConfiguration
)
from ..domain.enums import (
    ApprovalStatus, LedgerEvent, RequestStatus, RuleAction, SubmissionOutcome, WorkflowInstanceStatus
)
from ..engine.approval_state_machine import ApprovalStateMachine, StageAdvancer
from ..engine.configuration_selector import ConfigurationSelector
from ..engine.rule_evaluator import RuleEvaluator
from ..engine.workflow_ledger import WorkflowLedger
from ..repositories.configuration_repo import ConfigurationRepository
from ..repositories.request_repo import RequestRepository
from .notification_service import NotificationService
from ..utils.idgen import generate_request_id
from ..utils.logger import get_logger
from ..utils.time import Clock, SystemClock

logger = get_logger(__name__)

# Requests a requester may still cancel
_CANCELLABLE = (RequestStatus.PENDING, RequestStatus.IN_PROGRESS, RequestStatus.OVERDUE)


class ConfigurationStageAdvancer(StageAdvancer):
    """Opens the next entry of the configuration's approval_stages"""

    def __init__(self, repo: ConfigurationRepository):
        self.repo = repo

    def next_stage_approvers(self, request: Request, completed_stage: int) -> List[str]:
        if not request.configuration_id:
            return []
        configuration = self.repo.get_configuration(request.configuration_id, request.tenant_id)
        if configuration is None or completed_stage >= len(configuration.approval_stages):
            return []
        return list(configuration.approval_stages[completed_stage])


class RequestService:
    """Service for request submission and lifecycle"""

    def __init__(
        self,
        database: Optional[Database] = None,
        clock: Optional[Clock] = None,
        notifier: Optional[NotificationService] = None
    ):
        self.clock = clock or SystemClock()
        self.repo = RequestRepository(database)
        self.configuration_repo = ConfigurationRepository(database)
        self.evaluator = RuleEvaluator(self.clock)
        self.selector = ConfigurationSelector(self.configuration_repo, self.evaluator)
        self.notifier = notifier or NotificationService(database, self.clock)
        self.ledger = WorkflowLedger(database, self.clock)
        self.state_machine = ApprovalStateMachine(
            database,
            self.clock,
            notifier=self.notifier,
            ledger=self.ledger,
            stage_advancer=ConfigurationStageAdvancer(self.configuration_repo),
            request_repo=self.repo
        )

    # =========================================================================
    # Submission
    # =========================================================================

    def submit_request(
        self,
        tenant_id: str,
        requester_id: str,
        request_type_id: str,
        title: str,
        data: Optional[Dict[str, Any]] = None,
        priority: int = 2,
        due_date: Optional[datetime] = None,
        request_id: Optional[str] = None
    ) -> SubmissionResult:
        """
        Submit a request and run it up to its first approval stage

        A caller-supplied request_id makes the call idempotent: submitting
        the same id again returns the recorded outcome without acting twice.
        """
        if request_id:
            existing = self.repo.get_request(request_id, tenant_id)
            if existing is not None:
                return self._replay(existing)

        now = self.clock.now()
        request = self.repo.create_request(Request(
            request_id=request_id or generate_request_id(),
            tenant_id=tenant_id,
            request_type_id=request_type_id,
            requester_id=requester_id,
            title=title,
            data=data or {},
            status=RequestStatus.PENDING,
            priority=priority,
            due_date=due_date,
            created_at=now,
            updated_at=now,
            updated_by=requester_id
        ))

        configuration = self.selector.select_configuration(tenant_id, request_type_id, request.data)
        if configuration is None:
            instance = self.ledger.start_instance(
                tenant_id, request.request_id, workflow_name="unconfigured", actor_id=requester_id
            )
            self.ledger.record_transition(
                instance.instance_id, WorkflowInstanceStatus.SUSPENDED, LedgerEvent.NO_CONFIGURATION,
                actor_id=requester_id, data={"request_type_id": request_type_id}
            )
            request = self.repo.update_request(
                request.request_id, tenant_id, {"workflow_instance_id": instance.instance_id}
            )
            return SubmissionResult(
                outcome=SubmissionOutcome.NO_CONFIGURATION,
                request=request,
                instance_id=instance.instance_id
            )

        instance = self.ledger.start_instance(
            tenant_id,
            request.request_id,
            workflow_name=configuration.workflow_name,
            configuration_id=configuration.configuration_id,
            data={"request_type_id": request_type_id},
            actor_id=requester_id
        )
        request = self.repo.update_request(request.request_id, tenant_id, {
            "configuration_id": configuration.configuration_id,
            "workflow_instance_id": instance.instance_id
        })

        evaluation = self.evaluator.evaluate_rules(
            configuration.evaluation_rules,
            request.data,
            stop_on_first_match=configuration.stop_on_first_match,
            default_action=configuration.default_action
        )
        self.ledger.record_transition(
            instance.instance_id, WorkflowInstanceStatus.RUNNING, LedgerEvent.RULES_EVALUATED,
            actor_id=requester_id,
            data={
                "result_action": evaluation.result_action,
                "matched": len(evaluation.matched_rules),
                "errors": evaluation.errors
            }
        )

        result = self._act(request, configuration, evaluation, instance.instance_id)
        logger.info(
            f"Request submitted: {result.outcome.value}",
            extra={
                "request_id": request.request_id,
                "tenant_id": tenant_id,
                "configuration_id": configuration.configuration_id,
                "action": evaluation.result_action
            }
        )
        return result

    def _act(
        self,
        request: Request,
        configuration: WorkflowConfiguration,
        evaluation: RuleEvaluationResult,
        instance_id: str
    ) -> SubmissionResult:
        action = evaluation.result_action
        base = {
            "configuration_id": configuration.configuration_id,
            "instance_id": instance_id,
            "result_action": action,
            "evaluation": evaluation
        }

        if action == RuleAction.AUTO_APPROVE.value and not configuration.requires_manual_approval:
            now = self.clock.now()
            approved = self.repo.transition_status(
                request.request_id, request.tenant_id, (RequestStatus.PENDING,),
                {"status": RequestStatus.APPROVED, "updated_at": now, "completed_at": now}
            )
            self.ledger.record_transition(
                instance_id, WorkflowInstanceStatus.COMPLETED, LedgerEvent.AUTO_APPROVED
            )
            if approved is not None:
                self.notifier.notify_request_completed(approved)
            return SubmissionResult(outcome=SubmissionOutcome.AUTO_APPROVED, request=approved or request, **base)

        if action == RuleAction.REJECT_REQUEST.value:
            reason = _rejection_reason(evaluation)
            now = self.clock.now()
            rejected = self.repo.transition_status(
                request.request_id, request.tenant_id, (RequestStatus.PENDING,),
                {
                    "status": RequestStatus.REJECTED,
                    "rejection_reason": reason,
                    "updated_at": now,
                    "completed_at": now
                }
            )
            self.ledger.record_transition(
                instance_id, WorkflowInstanceStatus.COMPLETED, LedgerEvent.RULE_REJECTED, data={"reason": reason}
            )
            if rejected is not None:
                self.notifier.notify_request_completed(rejected)
            return SubmissionResult(outcome=SubmissionOutcome.REJECTED, request=rejected or request, **base)

        first_stage = configuration.approval_stages[0] if configuration.approval_stages else []
        approvals: List[Approval] = []
        for approver_id in first_stage:
            approval = self.state_machine.create_approval(
                request.tenant_id, request.request_id, approver_id, stage=1, actor_id=request.requester_id
            )
            if approval is not None:
                approvals.append(approval)

        current = self.repo.get_request(request.request_id, request.tenant_id) or request
        outcome = SubmissionOutcome.AWAITING_APPROVAL if approvals else SubmissionOutcome.AWAITING_APPROVERS
        return SubmissionResult(outcome=outcome, request=current, approvals=approvals, **base)

    def _replay(self, request: Request) -> SubmissionResult:
        """Rebuild the outcome of an earlier submission from its ledger"""
        instance = self.ledger.get_instance_for_request(request.tenant_id, request.request_id)

        if instance is None or self.ledger.has_event(instance.instance_id, LedgerEvent.NO_CONFIGURATION):
            outcome = SubmissionOutcome.NO_CONFIGURATION
        elif self.ledger.has_event(instance.instance_id, LedgerEvent.AUTO_APPROVED):
            outcome = SubmissionOutcome.AUTO_APPROVED
        elif self.ledger.has_event(instance.instance_id, LedgerEvent.RULE_REJECTED):
            outcome = SubmissionOutcome.REJECTED
        elif self.ledger.has_event(instance.instance_id, LedgerEvent.APPROVAL_CREATED):
            outcome = SubmissionOutcome.AWAITING_APPROVAL
        else:
            outcome = SubmissionOutcome.AWAITING_APPROVERS

        logger.info(
            "Duplicate submission replayed",
            extra={"request_id": request.request_id, "tenant_id": request.tenant_id}
        )
        return SubmissionResult(
            outcome=outcome,
            request=request,
            configuration_id=request.configuration_id,
            instance_id=instance.instance_id if instance else None,
            approvals=self.state_machine.get_request_approvals(request.request_id, request.tenant_id),
            replayed=True
        )

    # =========================================================================
    # Lifecycle & queries
    # =========================================================================

    def cancel_request(self, tenant_id: str, request_id: str, actor_id: str) -> bool:
        """
        Cancel an open request; pending approvers are told no decision is needed

        Raises:
            RequestNotFoundError: If the request does not exist
        """
        self.repo.get_request_or_raise(request_id, tenant_id)
        now = self.clock.now()
        cancelled = self.repo.transition_status(
            request_id, tenant_id, _CANCELLABLE,
            {"status": RequestStatus.CANCELLED, "updated_at": now, "updated_by": actor_id, "completed_at": now}
        )
        if cancelled is None:
            return False

        pending = [
            a.approver_id
            for a in self.state_machine.get_request_approvals(request_id, tenant_id)
            if a.status == ApprovalStatus.PENDING
        ]
        self.ledger.record_for_request(
            tenant_id, request_id, WorkflowInstanceStatus.CANCELLED, LedgerEvent.CANCELLED, actor_id=actor_id
        )
        self.notifier.notify_request_cancelled(cancelled, pending)
        logger.info("Request cancelled", extra={"request_id": request_id, "tenant_id": tenant_id})
        return True

    def get_request(self, tenant_id: str, request_id: str) -> Request:
        return self.repo.get_request_or_raise(request_id, tenant_id)

    def list_requests(
        self,
        tenant_id: str,
        requester_id: Optional[str] = None,
        status: Optional[RequestStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[Request]:
        return self.repo.list_requests(tenant_id, requester_id=requester_id, status=status, skip=skip, limit=limit)

    def get_request_history(self, tenant_id: str, request_id: str) -> List[LedgerEntry]:
        """Ledger entries of the request's latest run, oldest first"""
        self.repo.get_request_or_raise(request_id, tenant_id)
        instance = self.ledger.get_instance_for_request(tenant_id, request_id)
        return self.ledger.get_history(instance.instance_id) if instance else []


def _rejection_reason(evaluation: RuleEvaluationResult) -> str:
    # The deciding rule is the last one collected
    if not evaluation.matched_rules:
        return "Rejected by default rule action"
    rule = evaluation.matched_rules[-1]
    return rule.description or f"Rejected by rule: {rule.field} {rule.operator} {rule.value}"
