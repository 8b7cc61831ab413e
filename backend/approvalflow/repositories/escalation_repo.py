"""Escalation Repository - Data access for approval escalations"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .mongo_client import get_collection, to_document, to_storage_fields, from_document
from ..domain.models import ApprovalEscalation
from ..domain.enums import EscalationStatus
from ..utils.logger import get_logger
from ..utils.time import to_storage

logger = get_logger(__name__)


class EscalationRepository:
    """Repository for approval escalation operations"""

    def __init__(self, database: Optional[Database] = None):
        self._escalations: Collection = get_collection("approval_escalations", database)

    def create_pending_escalation(self, escalation: ApprovalEscalation) -> bool:
        """
        Insert a PENDING escalation unless one already exists for the approval

        Upserts on (approval_id, status=Pending) so two concurrent callers
        cannot both insert; the partial unique index backs this on a real
        server.

        Returns:
            True if this call created the escalation
        """
        doc = to_document(escalation, "escalation_id")
        for key in ("_id", "approval_id", "status"):
            doc.pop(key, None)

        try:
            result = self._escalations.update_one(
                {
                    "approval_id": escalation.approval_id,
                    "status": EscalationStatus.PENDING.value
                },
                {"$setOnInsert": doc},
                upsert=True
            )
        except DuplicateKeyError:
            return False

        created = result.upserted_id is not None
        if created:
            logger.info(
                "Created escalation",
                extra={
                    "escalation_id": escalation.escalation_id,
                    "approval_id": escalation.approval_id,
                    "tenant_id": escalation.tenant_id
                }
            )
        return created

    def get_escalation(self, escalation_id: str, tenant_id: str) -> Optional[ApprovalEscalation]:
        doc = self._escalations.find_one({"escalation_id": escalation_id, "tenant_id": tenant_id})
        if doc:
            return ApprovalEscalation.model_validate(from_document(doc))
        return None

    def has_pending(self, approval_id: str, tenant_id: str) -> bool:
        return self._escalations.find_one({
            "approval_id": approval_id,
            "tenant_id": tenant_id,
            "status": EscalationStatus.PENDING.value
        }) is not None

    def delete_escalation(self, escalation_id: str, tenant_id: str) -> bool:
        result = self._escalations.delete_one({"escalation_id": escalation_id, "tenant_id": tenant_id})
        return result.deleted_count > 0

    def resolve_escalation(
        self,
        escalation_id: str,
        tenant_id: str,
        updates: Dict[str, Any]
    ) -> Optional[ApprovalEscalation]:
        """Move a PENDING escalation to RESOLVED; None if it was not pending"""
        updates = dict(updates, status=EscalationStatus.RESOLVED)
        result = self._escalations.find_one_and_update(
            {
                "escalation_id": escalation_id,
                "tenant_id": tenant_id,
                "status": EscalationStatus.PENDING.value
            },
            {"$set": to_storage_fields(updates)},
            return_document=ReturnDocument.AFTER
        )
        if result is None:
            return None
        logger.info("Resolved escalation", extra={"escalation_id": escalation_id, "tenant_id": tenant_id})
        return ApprovalEscalation.model_validate(from_document(result))

    def mark_reassigned(self, escalation_id: str, tenant_id: str, approval_id: str) -> bool:
        """Link a resolved escalation to the approval that replaced the escalated one"""
        result = self._escalations.update_one(
            {"escalation_id": escalation_id, "tenant_id": tenant_id},
            {"$set": {"reassigned_approval_id": approval_id}}
        )
        return result.modified_count > 0

    def list_for_request(self, request_id: str, tenant_id: str) -> List[ApprovalEscalation]:
        cursor = self._escalations.find(
            {"tenant_id": tenant_id, "request_id": request_id}
        ).sort("triggered_at", ASCENDING)
        return [ApprovalEscalation.model_validate(from_document(doc)) for doc in cursor]

    def list_escalations(
        self,
        tenant_id: str,
        status: Optional[EscalationStatus] = None,
        skip: int = 0,
        limit: int = 0
    ) -> List[ApprovalEscalation]:
        """Escalations of a tenant, oldest first; limit=0 returns all"""
        query: Dict[str, Any] = {"tenant_id": tenant_id}
        if status:
            query["status"] = status.value
        cursor = self._escalations.find(query).sort("triggered_at", ASCENDING).skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [ApprovalEscalation.model_validate(from_document(doc)) for doc in cursor]

    def count_pending_before(self, tenant_id: str, triggered_before: datetime) -> int:
        return self._escalations.count_documents({
            "tenant_id": tenant_id,
            "status": EscalationStatus.PENDING.value,
            "triggered_at": {"$lt": to_storage(triggered_before)}
        })

    def delete_resolved_before(self, tenant_id: str, resolved_before: datetime) -> int:
        result = self._escalations.delete_many({
            "tenant_id": tenant_id,
            "status": EscalationStatus.RESOLVED.value,
            "resolved_at": {"$lt": to_storage(resolved_before)}
        })
        return result.deleted_count
