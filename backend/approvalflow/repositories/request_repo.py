"""Request Repository - Data access for requests"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from .mongo_client import get_collection, to_document, to_storage_fields, from_document
from ..domain.models import Request
from ..domain.enums import RequestStatus
from ..domain.errors import ConcurrencyError, RequestNotFoundError
from ..utils.logger import get_logger
from ..utils.time import to_storage

logger = get_logger(__name__)


class RequestRepository:
    """Repository for request operations"""

    def __init__(self, database: Optional[Database] = None):
        self._requests: Collection = get_collection("requests", database)

    def create_request(self, request: Request) -> Request:
        """Create a new request"""
        self._requests.insert_one(to_document(request, "request_id"))
        logger.info(
            f"Created request: {request.title}",
            extra={"request_id": request.request_id, "tenant_id": request.tenant_id}
        )
        return request

    def get_request(self, request_id: str, tenant_id: str) -> Optional[Request]:
        doc = self._requests.find_one({"request_id": request_id, "tenant_id": tenant_id})
        if doc:
            return Request.model_validate(from_document(doc))
        return None

    def get_request_or_raise(self, request_id: str, tenant_id: str) -> Request:
        request = self.get_request(request_id, tenant_id)
        if not request:
            raise RequestNotFoundError(
                f"Request {request_id} not found",
                details={"request_id": request_id}
            )
        return request

    def update_request(
        self,
        request_id: str,
        tenant_id: str,
        updates: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Request:
        """
        Update request with optimistic concurrency

        Raises:
            ConcurrencyError: If version mismatch
            RequestNotFoundError: If request not found
        """
        filter_query: Dict[str, Any] = {"request_id": request_id, "tenant_id": tenant_id}
        if expected_version is not None:
            filter_query["version"] = expected_version

        result = self._requests.find_one_and_update(
            filter_query,
            {"$set": to_storage_fields(updates), "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER
        )

        if result is None:
            if expected_version is not None:
                exists = self._requests.find_one({"request_id": request_id, "tenant_id": tenant_id})
                if exists:
                    raise ConcurrencyError(
                        f"Request {request_id} was modified. Please refresh and try again.",
                        details={"expected_version": expected_version}
                    )
            raise RequestNotFoundError(f"Request {request_id} not found")

        logger.info(f"Updated request: {request_id}", extra={"request_id": request_id})
        return Request.model_validate(from_document(result))

    def transition_status(
        self,
        request_id: str,
        tenant_id: str,
        from_statuses: Sequence[RequestStatus],
        updates: Dict[str, Any]
    ) -> Optional[Request]:
        """
        Atomically apply updates only while the request is in one of from_statuses

        Returns the updated request, or None when the status guard failed.
        """
        result = self._requests.find_one_and_update(
            {
                "request_id": request_id,
                "tenant_id": tenant_id,
                "status": {"$in": [s.value for s in from_statuses]}
            },
            {"$set": to_storage_fields(updates), "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER
        )
        if result is None:
            return None
        return Request.model_validate(from_document(result))

    def list_requests(
        self,
        tenant_id: str,
        requester_id: Optional[str] = None,
        status: Optional[RequestStatus] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[Request]:
        query: Dict[str, Any] = {"tenant_id": tenant_id}
        if requester_id:
            query["requester_id"] = requester_id
        if status:
            query["status"] = status.value

        cursor = self._requests.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit)
        return [Request.model_validate(from_document(doc)) for doc in cursor]

    def find_past_due(
        self,
        now: datetime,
        statuses: Sequence[RequestStatus],
        tenant_id: Optional[str] = None,
        limit: int = 200
    ) -> List[Request]:
        """Requests with due_date before now in the given statuses, oldest due first"""
        query: Dict[str, Any] = {
            "due_date": {"$ne": None, "$lt": to_storage(now)},
            "status": {"$in": [s.value for s in statuses]}
        }
        if tenant_id:
            query["tenant_id"] = tenant_id

        cursor = self._requests.find(query).sort("due_date", ASCENDING).limit(limit)
        return [Request.model_validate(from_document(doc)) for doc in cursor]

    def get_requests_by_ids(self, request_ids: Sequence[str], tenant_id: str) -> Dict[str, Request]:
        if not request_ids:
            return {}
        cursor = self._requests.find({"tenant_id": tenant_id, "request_id": {"$in": list(request_ids)}})
        requests = [Request.model_validate(from_document(doc)) for doc in cursor]
        return {r.request_id: r for r in requests}

    def count_requests(self, tenant_id: str, statuses: Optional[Sequence[RequestStatus]] = None) -> int:
        query: Dict[str, Any] = {"tenant_id": tenant_id}
        if statuses:
            query["status"] = {"$in": [s.value for s in statuses]}
        return self._requests.count_documents(query)

    def list_tenant_ids(self) -> List[str]:
        """Tenants that have at least one request"""
        return sorted(t for t in self._requests.distinct("tenant_id") if t)
