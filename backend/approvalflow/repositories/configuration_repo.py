"""Configuration Repository - Data access for workflow configurations"""
import re
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo import DESCENDING, ReturnDocument

from .mongo_client import get_collection, to_document, to_storage_fields, from_document
from ..domain.models import WorkflowConfiguration
from ..domain.enums import ConfigurationStatus
from ..domain.errors import ConfigurationNotFoundError, ConcurrencyError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ConfigurationRepository:
    """Repository for workflow configuration operations"""

    def __init__(self, database: Optional[Database] = None):
        self._configurations: Collection = get_collection("workflow_configurations", database)

    def create_configuration(self, configuration: WorkflowConfiguration) -> WorkflowConfiguration:
        """Create a new configuration"""
        self._configurations.insert_one(to_document(configuration, "configuration_id"))
        logger.info(
            f"Created configuration: {configuration.workflow_name}",
            extra={
                "configuration_id": configuration.configuration_id,
                "tenant_id": configuration.tenant_id
            }
        )
        return configuration

    def get_configuration(self, configuration_id: str, tenant_id: str) -> Optional[WorkflowConfiguration]:
        """Get configuration by ID (soft-deleted ones are hidden)"""
        doc = self._configurations.find_one({
            "configuration_id": configuration_id,
            "tenant_id": tenant_id,
            "is_deleted": False
        })
        if doc:
            return WorkflowConfiguration.model_validate(from_document(doc))
        return None

    def get_configuration_or_raise(self, configuration_id: str, tenant_id: str) -> WorkflowConfiguration:
        configuration = self.get_configuration(configuration_id, tenant_id)
        if not configuration:
            raise ConfigurationNotFoundError(
                f"Configuration {configuration_id} not found",
                details={"configuration_id": configuration_id}
            )
        return configuration

    def update_configuration(
        self,
        configuration_id: str,
        tenant_id: str,
        updates: Dict[str, Any],
        expected_revision: Optional[int] = None
    ) -> WorkflowConfiguration:
        """
        Update configuration with optimistic concurrency

        Raises:
            ConcurrencyError: If revision mismatch
            ConfigurationNotFoundError: If configuration not found
        """
        filter_query: Dict[str, Any] = {
            "configuration_id": configuration_id,
            "tenant_id": tenant_id,
            "is_deleted": False
        }
        if expected_revision is not None:
            filter_query["revision"] = expected_revision

        result = self._configurations.find_one_and_update(
            filter_query,
            {"$set": to_storage_fields(updates), "$inc": {"revision": 1}},
            return_document=ReturnDocument.AFTER
        )

        if result is None:
            if expected_revision is not None:
                exists = self._configurations.find_one({"configuration_id": configuration_id, "tenant_id": tenant_id})
                if exists:
                    raise ConcurrencyError(
                        f"Configuration {configuration_id} was modified. Please refresh and try again.",
                        details={"expected_revision": expected_revision}
                    )
            raise ConfigurationNotFoundError(f"Configuration {configuration_id} not found")

        logger.info(f"Updated configuration: {configuration_id}", extra={"configuration_id": configuration_id})
        return WorkflowConfiguration.model_validate(from_document(result))

    def list_configurations(
        self,
        tenant_id: str,
        request_type_id: Optional[str] = None,
        status: Optional[ConfigurationStatus] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[WorkflowConfiguration]:
        """List configurations of a tenant with filters"""
        query: Dict[str, Any] = {"tenant_id": tenant_id, "is_deleted": False}
        if request_type_id:
            query["request_type_id"] = request_type_id
        if status:
            query["status"] = status.value
        if is_active is not None:
            query["is_active"] = is_active
        if search:
            pattern = re.escape(search)
            query["$or"] = [
                {"workflow_name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
            ]

        cursor = self._configurations.find(query).sort("updated_at", DESCENDING).skip(skip).limit(limit)
        return [WorkflowConfiguration.model_validate(from_document(doc)) for doc in cursor]

    def list_selectable(
        self,
        tenant_id: str,
        request_type_id: Optional[str] = None
    ) -> List[WorkflowConfiguration]:
        """Active, published, non-deleted configurations - the selector's candidate set"""
        query: Dict[str, Any] = {
            "tenant_id": tenant_id,
            "is_active": True,
            "status": ConfigurationStatus.ACTIVE.value,
            "is_deleted": False
        }
        if request_type_id is not None:
            query["request_type_id"] = request_type_id

        return [WorkflowConfiguration.model_validate(from_document(doc)) for doc in self._configurations.find(query)]

    def count_configurations(self, tenant_id: str, **filters: Any) -> int:
        query: Dict[str, Any] = {"tenant_id": tenant_id, "is_deleted": False}
        query.update(filters)
        return self._configurations.count_documents(query)

    def count_by_request_type(self, tenant_id: str) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        cursor = self._configurations.find(
            {"tenant_id": tenant_id, "is_deleted": False},
            {"request_type_id": 1}
        )
        for doc in cursor:
            key = doc.get("request_type_id")
            counts[key] = counts.get(key, 0) + 1
        return counts
