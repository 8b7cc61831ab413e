"""Approval Sweeps - time-driven escalation, reminders, overdue marking and housekeeping

Each sweep works on one tenant, reads bounded pages and commits row by
row. A failing row is logged and skipped; a sweep never raises for row
errors, so the next row and the next run still happen.
"""
from datetime import datetime, timedelta
from typing import Dict, Iterator, List, Optional

from pymongo.database import Database

from ..config.settings import Settings, settings as default_settings
from ..domain.models import Approval, Request, WorkflowConfiguration
from ..domain.enums import (
    LedgerEvent, NotificationType, OPEN_REQUEST_STATUSES, RequestStatus,
    TERMINAL_REQUEST_STATUSES, WorkflowInstanceStatus
)
from ..engine.approval_state_machine import ApprovalStateMachine
from ..engine.escalation_policy import EscalationTargetPolicy, SameApproverPolicy
from ..engine.workflow_ledger import WorkflowLedger
from ..repositories.approval_repo import ApprovalRepository
from ..repositories.configuration_repo import ConfigurationRepository
from ..repositories.escalation_repo import EscalationRepository
from ..repositories.notification_repo import NotificationRepository
from ..repositories.request_repo import RequestRepository
from ..services.notification_service import NotificationService
from ..utils.logger import get_logger
from ..utils.time import Clock, SystemClock

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


class ApprovalSweeper:
    """Per-tenant sweeps run by the job scheduler"""

    def __init__(
        self,
        database: Optional[Database] = None,
        clock: Optional[Clock] = None,
        escalation_policy: Optional[EscalationTargetPolicy] = None,
        notifier: Optional[NotificationService] = None,
        state_machine: Optional[ApprovalStateMachine] = None,
        ledger: Optional[WorkflowLedger] = None,
        config: Optional[Settings] = None
    ):
        self.clock = clock or SystemClock()
        self.settings = config or default_settings
        self.escalation_policy = escalation_policy or SameApproverPolicy()
        self.notifier = notifier or NotificationService(database, self.clock)
        self.ledger = ledger or WorkflowLedger(database, self.clock)
        self.state_machine = state_machine or ApprovalStateMachine(
            database, self.clock, notifier=self.notifier, ledger=self.ledger
        )
        self.approval_repo = ApprovalRepository(database)
        self.request_repo = RequestRepository(database)
        self.escalation_repo = EscalationRepository(database)
        self.configuration_repo = ConfigurationRepository(database)
        self.notification_repo = NotificationRepository(database)

    def list_tenant_ids(self) -> List[str]:
        return self.request_repo.list_tenant_ids()

    # =========================================================================
    # Auto escalation
    # =========================================================================

    def run_auto_escalation(self, tenant_id: str) -> bool:
        """
        Escalate approvals pending longer than their threshold

        Only approvals whose request has a due date are considered. An
        approval with a PENDING escalation is skipped, and nothing happens
        unless the policy names a target other than the current approver.
        Skipped rows do not hold back newer ones: the backlog is walked page
        by page until it ends or sweep_batch_size escalations were created.

        Returns:
            True if at least one escalation was created
        """
        now = self.clock.now()
        configurations: Dict[str, Optional[WorkflowConfiguration]] = {}
        shortest = self._shortest_escalation_threshold(tenant_id)

        escalated = 0
        for page in self._stale_pages(tenant_id, now - timedelta(hours=shortest)):
            requests = self.request_repo.get_requests_by_ids(list({a.request_id for a in page}), tenant_id)
            for approval in page:
                try:
                    if self._escalate_stale(approval, requests.get(approval.request_id), now, configurations):
                        escalated += 1
                except Exception as e:
                    logger.error(
                        f"Auto escalation failed for approval {approval.approval_id}: {e}",
                        extra={"tenant_id": tenant_id, "approval_id": approval.approval_id, "error_type": type(e).__name__}
                    )
            if escalated >= self.settings.sweep_batch_size:
                break

        if escalated:
            logger.info(f"Auto escalation created {escalated} escalations", extra={"tenant_id": tenant_id, "count": escalated})
        return escalated > 0

    def _escalate_stale(
        self,
        approval: Approval,
        request: Optional[Request],
        now: datetime,
        configurations: Dict[str, Optional[WorkflowConfiguration]]
    ) -> bool:
        if request is None or request.due_date is None or request.status in TERMINAL_REQUEST_STATUSES:
            return False

        configuration = self._configuration_for(request, configurations)
        if configuration is not None and not configuration.escalation_settings.enable_escalation:
            return False

        threshold = self._escalation_threshold(configuration)
        if approval.created_at >= now - timedelta(hours=threshold):
            return False
        if self.escalation_repo.has_pending(approval.approval_id, approval.tenant_id):
            return False

        target = self.escalation_policy.resolve_target(approval, request, configuration)
        if not target or target == approval.approver_id:
            return False

        reason = f"Approval pending for more than {threshold} hours"
        if configuration is not None and configuration.escalation_settings.escalation_message:
            reason = configuration.escalation_settings.escalation_message

        escalation = self.state_machine.escalate_pending_approval(
            approval, request, reason, escalated_by=SYSTEM_ACTOR, escalated_to=target
        )
        return escalation is not None

    def _stale_pages(self, tenant_id: str, created_before: datetime) -> Iterator[List[Approval]]:
        """Pages of stale pending approvals, oldest first, through the whole backlog"""
        batch_size = self.settings.sweep_batch_size
        after: Optional[Approval] = None
        while True:
            page = self.approval_repo.find_stale_pending(tenant_id, created_before, limit=batch_size, after=after)
            if not page:
                return
            yield page
            if len(page) < batch_size:
                return
            after = page[-1]

    def _shortest_escalation_threshold(self, tenant_id: str) -> int:
        hours = [self.settings.escalation_threshold_hours]
        for configuration in self.configuration_repo.list_selectable(tenant_id):
            override = configuration.escalation_settings.escalation_time_hours
            if override:
                hours.append(override)
        return min(hours)

    def _escalation_threshold(self, configuration: Optional[WorkflowConfiguration]) -> int:
        if configuration is not None and configuration.escalation_settings.escalation_time_hours:
            return configuration.escalation_settings.escalation_time_hours
        return self.settings.escalation_threshold_hours

    def _configuration_for(
        self,
        request: Request,
        cache: Dict[str, Optional[WorkflowConfiguration]]
    ) -> Optional[WorkflowConfiguration]:
        if not request.configuration_id:
            return None
        if request.configuration_id not in cache:
            cache[request.configuration_id] = self.configuration_repo.get_configuration(
                request.configuration_id, request.tenant_id
            )
        return cache[request.configuration_id]

    # =========================================================================
    # Reminders
    # =========================================================================

    def send_reminders(self, tenant_id: str) -> bool:
        """
        Remind approvers of approvals pending longer than the reminder threshold

        One reminder per approver per run, suppressed when the approver got
        a reminder within the suppression window.

        Returns:
            True if at least one reminder was sent
        """
        now = self.clock.now()
        by_approver: Dict[str, List[Approval]] = {}
        for page in self._stale_pages(tenant_id, now - timedelta(hours=self.settings.reminder_threshold_hours)):
            requests = self.request_repo.get_requests_by_ids(list({a.request_id for a in page}), tenant_id)
            for approval in page:
                request = requests.get(approval.request_id)
                if request is None or request.status in TERMINAL_REQUEST_STATUSES:
                    continue
                by_approver.setdefault(approval.approver_id, []).append(approval)

        suppress_after = now - timedelta(hours=self.settings.reminder_suppression_hours)
        sent = 0
        for approver_id, approvals in by_approver.items():
            try:
                last_sent = self.notification_repo.last_sent_at(tenant_id, approver_id, NotificationType.REMINDER)
                if last_sent is not None and last_sent > suppress_after:
                    continue
                if self.notifier.notify_reminder(tenant_id, approver_id, approvals):
                    sent += 1
            except Exception as e:
                logger.error(
                    f"Reminder failed for approver {approver_id}: {e}",
                    extra={"tenant_id": tenant_id, "approver_id": approver_id, "error_type": type(e).__name__}
                )

        if sent:
            logger.info(f"Sent {sent} approval reminders", extra={"tenant_id": tenant_id, "count": sent})
        return sent > 0

    # =========================================================================
    # Overdue
    # =========================================================================

    def update_overdue_requests_status(self, tenant_id: Optional[str] = None) -> bool:
        """
        Mark open requests past their due date OVERDUE

        One notification goes to each affected requester.

        Returns:
            True if any request changed
        """
        now = self.clock.now()
        past_due = self.request_repo.find_past_due(
            now, OPEN_REQUEST_STATUSES, tenant_id=tenant_id, limit=self.settings.sweep_batch_size
        )

        affected: Dict[tuple, List[Request]] = {}
        for request in past_due:
            try:
                updated = self.request_repo.transition_status(
                    request.request_id, request.tenant_id, OPEN_REQUEST_STATUSES,
                    {"status": RequestStatus.OVERDUE, "updated_at": now, "updated_by": SYSTEM_ACTOR}
                )
                if updated is None:
                    continue
                self.ledger.record_for_request(
                    request.tenant_id, request.request_id, WorkflowInstanceStatus.RUNNING, LedgerEvent.OVERDUE,
                    actor_id=SYSTEM_ACTOR
                )
                affected.setdefault((updated.tenant_id, updated.requester_id), []).append(updated)
            except Exception as e:
                logger.error(
                    f"Overdue update failed for request {request.request_id}: {e}",
                    extra={"tenant_id": request.tenant_id, "request_id": request.request_id, "error_type": type(e).__name__}
                )

        for (owner_tenant, requester_id), requests in affected.items():
            self.notifier.notify_overdue(owner_tenant, requester_id, requests)

        changed = sum(len(r) for r in affected.values())
        if changed:
            logger.info(f"Marked {changed} requests overdue", extra={"tenant_id": tenant_id, "count": changed})
        return changed > 0

    # =========================================================================
    # Monitoring & cleanup
    # =========================================================================

    def run_system_monitoring(self, tenant_id: str) -> bool:
        """
        Check queue health and alert the configured recipients

        Returns:
            True if an alert was raised
        """
        now = self.clock.now()
        pending = self.request_repo.count_requests(tenant_id, OPEN_REQUEST_STATUSES)
        overdue = self.request_repo.count_requests(tenant_id, [RequestStatus.OVERDUE])
        stale_escalations = self.escalation_repo.count_pending_before(
            tenant_id, now - timedelta(days=self.settings.monitoring_stale_escalation_days)
        )

        problems = []
        if pending > self.settings.monitoring_pending_threshold:
            problems.append(f"{pending} open requests (threshold {self.settings.monitoring_pending_threshold})")
        if overdue:
            problems.append(f"{overdue} overdue requests")
        if stale_escalations:
            problems.append(
                f"{stale_escalations} escalations pending over {self.settings.monitoring_stale_escalation_days} days"
            )

        if not problems:
            return False

        message = "; ".join(problems)
        logger.warning(f"Monitoring alert: {message}", extra={"tenant_id": tenant_id})
        self.notifier.notify_alert(
            tenant_id,
            self.settings.monitoring_alert_recipients_list,
            title="Approval system alert",
            message=message,
            data={"open_requests": pending, "overdue_requests": overdue, "stale_escalations": stale_escalations}
        )
        return True

    def run_data_cleanup(self, tenant_id: str) -> bool:
        """
        Remove old read notifications, finished ledger instances and resolved escalations

        Returns:
            True if anything was deleted
        """
        now = self.clock.now()
        notifications = self.notification_repo.delete_read_before(
            tenant_id, now - timedelta(days=self.settings.notification_retention_days)
        )
        instances = self.ledger.cleanup_finished(
            tenant_id, now - timedelta(days=self.settings.workflow_retention_days)
        )
        escalations = self.escalation_repo.delete_resolved_before(
            tenant_id, now - timedelta(days=self.settings.escalation_retention_days)
        )

        total = notifications + instances + escalations
        if total:
            logger.info(
                f"Cleanup removed {notifications} notifications, {instances} instances, {escalations} escalations",
                extra={"tenant_id": tenant_id, "count": total}
            )
        return total > 0
