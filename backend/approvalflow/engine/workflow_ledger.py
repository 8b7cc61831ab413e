"""Workflow Ledger - append-only tracking of workflow instances"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pymongo.database import Database

from ..domain.models import LedgerEntry, WorkflowInstance
from ..domain.enums import FINISHED_INSTANCE_STATUSES, LedgerEvent, WorkflowInstanceStatus
from ..domain.errors import WorkflowInstanceNotFoundError
from ..repositories.workflow_instance_repo import WorkflowInstanceRepository
from ..utils.idgen import generate_instance_id
from ..utils.logger import get_logger
from ..utils.time import Clock, SystemClock

logger = get_logger(__name__)

EventName = Union[LedgerEvent, str]


class WorkflowLedger:
    """
    Tracks one instance per request run

    History entries are pushed, never rewritten. The current status on the
    instance is the status of the latest entry.
    """

    def __init__(
        self,
        database: Optional[Database] = None,
        clock: Optional[Clock] = None,
        repo: Optional[WorkflowInstanceRepository] = None
    ):
        self.repo = repo or WorkflowInstanceRepository(database)
        self.clock = clock or SystemClock()

    def start_instance(
        self,
        tenant_id: str,
        request_id: str,
        workflow_name: str,
        configuration_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None
    ) -> WorkflowInstance:
        """Create an instance with a STARTED entry"""
        now = self.clock.now()
        instance = WorkflowInstance(
            instance_id=generate_instance_id(),
            tenant_id=tenant_id,
            request_id=request_id,
            workflow_name=workflow_name,
            configuration_id=configuration_id,
            status=WorkflowInstanceStatus.STARTED,
            data=data or {},
            history=[LedgerEntry(
                status=WorkflowInstanceStatus.STARTED,
                event=LedgerEvent.SUBMITTED.value,
                actor_id=actor_id,
                recorded_at=now
            )],
            created_at=now,
            updated_at=now
        )
        return self.repo.create_instance(instance)

    def record_transition(
        self,
        instance_id: str,
        status: WorkflowInstanceStatus,
        event: EventName,
        actor_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Append an entry and move the instance to status"""
        now = self.clock.now()
        entry = LedgerEntry(
            status=status,
            event=_event_name(event),
            actor_id=actor_id,
            data=data or {},
            recorded_at=now
        )
        updates: Dict[str, Any] = {"status": status, "updated_at": now}
        if status in FINISHED_INSTANCE_STATUSES:
            updates["completed_at"] = now

        recorded = self.repo.append_entry(instance_id, entry, updates)
        if recorded:
            logger.info(
                f"Ledger: {entry.event}",
                extra={"instance_id": instance_id, "status": status.value}
            )
        return recorded

    def record_for_request(
        self,
        tenant_id: str,
        request_id: str,
        status: WorkflowInstanceStatus,
        event: EventName,
        actor_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Record against the request's latest instance

        Requests whose approvals were created directly (without submission
        through the request service) get an instance on first use.
        """
        instance = self.repo.get_instance_for_request(tenant_id, request_id)
        if instance is None:
            instance = self.start_instance(tenant_id, request_id, workflow_name="direct", actor_id=actor_id)
        return self.record_transition(instance.instance_id, status, event, actor_id, data)

    def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        return self.repo.get_instance(instance_id)

    def get_instance_or_raise(self, instance_id: str) -> WorkflowInstance:
        instance = self.repo.get_instance(instance_id)
        if instance is None:
            raise WorkflowInstanceNotFoundError(
                f"Workflow instance {instance_id} not found",
                details={"instance_id": instance_id}
            )
        return instance

    def get_instance_for_request(self, tenant_id: str, request_id: str) -> Optional[WorkflowInstance]:
        return self.repo.get_instance_for_request(tenant_id, request_id)

    def get_history(self, instance_id: str) -> List[LedgerEntry]:
        return self.get_instance_or_raise(instance_id).history

    def has_event(self, instance_id: str, event: EventName) -> bool:
        return self.repo.has_event(instance_id, _event_name(event))

    def cleanup_finished(self, tenant_id: str, older_than: datetime) -> int:
        """Delete completed, failed and cancelled instances last touched before older_than"""
        deleted = self.repo.delete_finished_before(tenant_id, FINISHED_INSTANCE_STATUSES, older_than)
        if deleted:
            logger.info(f"Removed {deleted} finished workflow instances", extra={"tenant_id": tenant_id, "count": deleted})
        return deleted


def _event_name(event: EventName) -> str:
    return event.value if isinstance(event, LedgerEvent) else event
