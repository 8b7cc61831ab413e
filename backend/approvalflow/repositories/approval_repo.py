"""Approval Repository - Data access for approvals

Every decision goes through a single find_one_and_update filtered on
status=Pending and the row version, so concurrent deciders (a human and
the escalation sweep, or two humans) are linearised by the store.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from .mongo_client import get_collection, to_document, to_storage_fields, from_document
from ..domain.models import Approval
from ..domain.enums import ApprovalStatus
from ..utils.logger import get_logger
from ..utils.time import to_storage

logger = get_logger(__name__)


class ApprovalRepository:
    """Repository for approval operations"""

    def __init__(self, database: Optional[Database] = None):
        self._approvals: Collection = get_collection("approvals", database)

    def create_approval(self, approval: Approval) -> Optional[Approval]:
        """
        Create a new approval row

        Returns:
            The approval, or None when the approver already holds a PENDING
            approval on the request (one_pending_approval_per_approver).
        """
        try:
            self._approvals.insert_one(to_document(approval, "approval_id"))
        except DuplicateKeyError:
            logger.info(
                "Pending approval already exists",
                extra={"request_id": approval.request_id, "approver_id": approval.approver_id}
            )
            return None
        logger.info(
            f"Created approval for stage {approval.stage}",
            extra={
                "approval_id": approval.approval_id,
                "request_id": approval.request_id,
                "approver_id": approval.approver_id
            }
        )
        return approval

    def get_approval(self, approval_id: str, tenant_id: str) -> Optional[Approval]:
        doc = self._approvals.find_one({"approval_id": approval_id, "tenant_id": tenant_id})
        if doc:
            return Approval.model_validate(from_document(doc))
        return None

    def find_pending(self, request_id: str, approver_id: str, tenant_id: str) -> Optional[Approval]:
        """The unique PENDING approval for (request, approver), if any"""
        doc = self._approvals.find_one({
            "tenant_id": tenant_id,
            "request_id": request_id,
            "approver_id": approver_id,
            "status": ApprovalStatus.PENDING.value
        })
        if doc:
            return Approval.model_validate(from_document(doc))
        return None

    def decide(
        self,
        approval_id: str,
        tenant_id: str,
        expected_version: int,
        updates: Dict[str, Any]
    ) -> Optional[Approval]:
        """
        Compare-and-swap an approval out of PENDING

        Returns:
            The updated approval, or None when the row is no longer PENDING
            at expected_version (another writer decided first).
        """
        result = self._approvals.find_one_and_update(
            {
                "approval_id": approval_id,
                "tenant_id": tenant_id,
                "status": ApprovalStatus.PENDING.value,
                "version": expected_version
            },
            {"$set": to_storage_fields(updates), "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER
        )
        if result is None:
            logger.info(
                f"Approval {approval_id} already decided",
                extra={"approval_id": approval_id, "tenant_id": tenant_id}
            )
            return None
        return Approval.model_validate(from_document(result))

    def count_pending_for_request(self, request_id: str, tenant_id: str) -> int:
        return self._approvals.count_documents({
            "tenant_id": tenant_id,
            "request_id": request_id,
            "status": ApprovalStatus.PENDING.value
        })

    def get_request_approvals(self, request_id: str, tenant_id: str) -> List[Approval]:
        """All approvals of a request ordered by stage then creation"""
        cursor = self._approvals.find(
            {"tenant_id": tenant_id, "request_id": request_id}
        ).sort([("stage", ASCENDING), ("created_at", ASCENDING)])
        return [Approval.model_validate(from_document(doc)) for doc in cursor]

    def get_pending_for_approver(
        self,
        approver_id: str,
        tenant_id: str,
        skip: int = 0,
        limit: int = 20
    ) -> Tuple[List[Approval], int]:
        """Pending approvals of an approver, oldest first, with total count"""
        query = {
            "tenant_id": tenant_id,
            "approver_id": approver_id,
            "status": ApprovalStatus.PENDING.value
        }
        total = self._approvals.count_documents(query)
        cursor = self._approvals.find(query).sort("created_at", ASCENDING).skip(skip).limit(limit)
        return [Approval.model_validate(from_document(doc)) for doc in cursor], total

    def find_stale_pending(
        self,
        tenant_id: str,
        created_before: datetime,
        limit: int = 200,
        after: Optional[Approval] = None
    ) -> List[Approval]:
        """
        Pending approvals created before the cutoff, oldest first

        Pass the last row of the previous page as after to continue past it;
        ties on created_at are broken by approval_id.
        """
        query: Dict[str, Any] = {
            "tenant_id": tenant_id,
            "status": ApprovalStatus.PENDING.value,
            "created_at": {"$lt": to_storage(created_before)}
        }
        if after is not None:
            last_created = to_storage(after.created_at)
            query["$or"] = [
                {"created_at": {"$gt": last_created}},
                {"created_at": last_created, "approval_id": {"$gt": after.approval_id}}
            ]
        cursor = self._approvals.find(query).sort(
            [("created_at", ASCENDING), ("approval_id", ASCENDING)]
        ).limit(limit)
        return [Approval.model_validate(from_document(doc)) for doc in cursor]

    def list_approvals(
        self,
        tenant_id: str,
        approver_id: Optional[str] = None,
        status: Optional[ApprovalStatus] = None,
        skip: int = 0,
        limit: int = 0
    ) -> List[Approval]:
        """Approvals of a tenant, newest first; limit=0 returns all"""
        query: Dict[str, Any] = {"tenant_id": tenant_id}
        if approver_id:
            query["approver_id"] = approver_id
        if status:
            query["status"] = status.value
        cursor = self._approvals.find(query).sort("created_at", DESCENDING).skip(skip)
        if limit:
            cursor = cursor.limit(limit)
        return [Approval.model_validate(from_document(doc)) for doc in cursor]
