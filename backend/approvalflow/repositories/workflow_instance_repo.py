"""Workflow Instance Repository - Data access for the tracking ledger (append-only history)"""
from datetime import datetime
from typing import Any, Dict, Optional, Sequence
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo import DESCENDING

from .mongo_client import get_collection, to_document, to_storage_fields, from_document
from ..domain.models import LedgerEntry, WorkflowInstance
from ..domain.enums import WorkflowInstanceStatus
from ..utils.logger import get_logger
from ..utils.time import to_storage

logger = get_logger(__name__)


class WorkflowInstanceRepository:
    """Repository for workflow instance operations"""

    def __init__(self, database: Optional[Database] = None):
        self._instances: Collection = get_collection("workflow_instances", database)

    def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        self._instances.insert_one(to_document(instance, "instance_id"))
        logger.info(
            f"Started workflow instance: {instance.workflow_name}",
            extra={
                "instance_id": instance.instance_id,
                "request_id": instance.request_id,
                "tenant_id": instance.tenant_id
            }
        )
        return instance

    def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        doc = self._instances.find_one({"instance_id": instance_id})
        if doc:
            return WorkflowInstance.model_validate(from_document(doc))
        return None

    def get_instance_for_request(self, tenant_id: str, request_id: str) -> Optional[WorkflowInstance]:
        """Most recent instance of a request"""
        cursor = self._instances.find(
            {"tenant_id": tenant_id, "request_id": request_id}
        ).sort("created_at", DESCENDING).limit(1)
        for doc in cursor:
            return WorkflowInstance.model_validate(from_document(doc))
        return None

    def append_entry(
        self,
        instance_id: str,
        entry: LedgerEntry,
        updates: Dict[str, Any]
    ) -> bool:
        """Push a history entry and set the instance's current fields"""
        result = self._instances.update_one(
            {"instance_id": instance_id},
            {
                "$push": {"history": to_storage_fields(entry.model_dump())},
                "$set": to_storage_fields(updates)
            }
        )
        return result.matched_count > 0

    def has_event(self, instance_id: str, event: str) -> bool:
        return self._instances.find_one({"instance_id": instance_id, "history.event": event}) is not None

    def delete_finished_before(
        self,
        tenant_id: str,
        statuses: Sequence[WorkflowInstanceStatus],
        updated_before: datetime
    ) -> int:
        result = self._instances.delete_many({
            "tenant_id": tenant_id,
            "status": {"$in": [s.value for s in statuses]},
            "updated_at": {"$lt": to_storage(updated_before)}
        })
        return result.deleted_count
