"""Notification Service - fire-and-forget notification sink

Writes in-app notifications to the outbox collection. Delivery to email,
SMS or push is left to whatever drains the outbox. A failing sink never
fails the calling operation.
"""
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from ..domain.models import Approval, ApprovalEscalation, Notification, Request
from ..domain.enums import NotificationPriority, NotificationType
from ..repositories.notification_repo import NotificationRepository
from ..utils.idgen import generate_notification_id
from ..utils.logger import get_logger
from ..utils.time import Clock, SystemClock

logger = get_logger(__name__)


class NotificationSink:
    """Anything the engine can hand notifications to"""

    def notify(
        self,
        tenant_id: str,
        user_ids: List[str],
        title: str,
        message: str,
        notification_type: NotificationType,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        data: Optional[Dict[str, Any]] = None
    ) -> int:
        """Deliver to each user; returns how many were accepted"""
        raise NotImplementedError


class NotificationService(NotificationSink):
    """Outbox-backed notification sink with one helper per engine event"""

    def __init__(
        self,
        database: Optional[Database] = None,
        clock: Optional[Clock] = None,
        repo: Optional[NotificationRepository] = None
    ):
        self.repo = repo or NotificationRepository(database)
        self.clock = clock or SystemClock()

    def notify(
        self,
        tenant_id: str,
        user_ids: List[str],
        title: str,
        message: str,
        notification_type: NotificationType,
        priority: NotificationPriority = NotificationPriority.NORMAL,
        data: Optional[Dict[str, Any]] = None
    ) -> int:
        recipients = list(dict.fromkeys(u for u in user_ids if u))
        if not recipients:
            return 0

        now = self.clock.now()
        notifications = [
            Notification(
                notification_id=generate_notification_id(),
                tenant_id=tenant_id,
                user_id=user_id,
                title=title,
                message=message,
                notification_type=notification_type,
                priority=priority,
                data=data or {},
                created_at=now
            )
            for user_id in recipients
        ]

        try:
            self.repo.create_notifications_bulk(notifications)
        except Exception as e:
            # Don't fail the engine operation if the outbox write fails
            logger.warning(
                f"Failed to write {notification_type.value} notification: {e}",
                extra={"tenant_id": tenant_id, "error_type": type(e).__name__}
            )
            return 0
        return len(notifications)

    # =========================================================================
    # Engine events
    # =========================================================================

    def notify_approval_pending(self, request: Request, approval: Approval) -> int:
        return self.notify(
            tenant_id=request.tenant_id,
            user_ids=[approval.approver_id],
            title="Approval required",
            message=f"Request '{request.title}' is waiting for your approval (stage {approval.stage}).",
            notification_type=NotificationType.APPROVAL_PENDING,
            priority=_priority_for(request),
            data={"request_id": request.request_id, "approval_id": approval.approval_id}
        )

    def notify_approved(self, request: Request, approval: Approval) -> int:
        return self.notify(
            tenant_id=request.tenant_id,
            user_ids=[request.requester_id],
            title="Request approved",
            message=f"Your request '{request.title}' was approved at stage {approval.stage}.",
            notification_type=NotificationType.APPROVED,
            data={"request_id": request.request_id, "approval_id": approval.approval_id}
        )

    def notify_rejected(self, request: Request, approval: Approval, reason: str) -> int:
        return self.notify(
            tenant_id=request.tenant_id,
            user_ids=[request.requester_id],
            title="Request rejected",
            message=f"Your request '{request.title}' was rejected: {reason}",
            notification_type=NotificationType.REJECTED,
            priority=NotificationPriority.HIGH,
            data={"request_id": request.request_id, "approval_id": approval.approval_id, "reason": reason}
        )

    def notify_escalated(self, request: Request, escalation: ApprovalEscalation) -> int:
        return self.notify(
            tenant_id=request.tenant_id,
            user_ids=[escalation.escalated_to_user_id],
            title="Approval escalated to you",
            message=f"Approval for request '{request.title}' was escalated: {escalation.reason}",
            notification_type=NotificationType.ESCALATED,
            priority=NotificationPriority.HIGH,
            data={
                "request_id": request.request_id,
                "approval_id": escalation.approval_id,
                "escalation_id": escalation.escalation_id
            }
        )

    def notify_reminder(self, tenant_id: str, approver_id: str, approvals: List[Approval]) -> int:
        count = len(approvals)
        return self.notify(
            tenant_id=tenant_id,
            user_ids=[approver_id],
            title="Pending approvals reminder",
            message=f"You have {count} approval{'s' if count != 1 else ''} waiting for a decision.",
            notification_type=NotificationType.REMINDER,
            data={"approval_ids": [a.approval_id for a in approvals]}
        )

    def notify_overdue(self, tenant_id: str, requester_id: str, requests: List[Request]) -> int:
        if len(requests) == 1:
            message = f"Your request '{requests[0].title}' passed its due date without a final decision."
        else:
            message = f"{len(requests)} of your requests passed their due date without a final decision."
        return self.notify(
            tenant_id=tenant_id,
            user_ids=[requester_id],
            title="Request overdue",
            message=message,
            notification_type=NotificationType.OVERDUE,
            priority=NotificationPriority.HIGH,
            data={"request_ids": [r.request_id for r in requests]}
        )

    def notify_request_completed(self, request: Request) -> int:
        return self.notify(
            tenant_id=request.tenant_id,
            user_ids=[request.requester_id],
            title="Request completed",
            message=f"Your request '{request.title}' finished with status {request.status.value}.",
            notification_type=NotificationType.REQUEST_COMPLETED,
            data={"request_id": request.request_id, "status": request.status.value}
        )

    def notify_request_cancelled(self, request: Request, approver_ids: List[str]) -> int:
        return self.notify(
            tenant_id=request.tenant_id,
            user_ids=approver_ids,
            title="Request cancelled",
            message=f"Request '{request.title}' was cancelled; no decision is needed.",
            notification_type=NotificationType.REQUEST_CANCELLED,
            data={"request_id": request.request_id}
        )

    def notify_alert(self, tenant_id: str, recipients: List[str], title: str, message: str, data: Dict[str, Any]) -> int:
        return self.notify(
            tenant_id=tenant_id,
            user_ids=recipients,
            title=title,
            message=message,
            notification_type=NotificationType.ALERT,
            priority=NotificationPriority.URGENT,
            data=data
        )


def _priority_for(request: Request) -> NotificationPriority:
    if request.priority >= 4:
        return NotificationPriority.URGENT
    if request.priority == 3:
        return NotificationPriority.HIGH
    return NotificationPriority.NORMAL
