"""MongoDB Client - Connection and Collection Management"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel
from pymongo import MongoClient as PyMongoClient
from pymongo.database import Database
from pymongo.collection import Collection
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import ConnectionFailure, PyMongoError

from ..config.settings import settings
from ..utils.logger import get_logger
from ..utils.time import to_storage

logger = get_logger(__name__)

# Global client instance
_client: Optional[PyMongoClient] = None
_database: Optional[Database] = None


def get_client() -> PyMongoClient:
    """Get or create MongoDB client"""
    global _client
    if _client is None:
        logger.info(f"Connecting to MongoDB: {settings.mongo_uri}")
        _client = PyMongoClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=5000,
            socketTimeoutMS=30000,
        )
        try:
            _client.admin.command("ping")
            logger.info("MongoDB connection successful")
        except ConnectionFailure as e:
            logger.error(f"MongoDB connection failed: {e}")
            raise
    return _client


def get_database() -> Database:
    """Get the application database"""
    global _database
    if _database is None:
        client = get_client()
        _database = client[settings.mongo_db]
        logger.info(f"Using database: {settings.mongo_db}")
    return _database


def use_database(database: Optional[Database]) -> None:
    """Point the module at an existing database handle (tests, embedding hosts)"""
    global _database
    _database = database


def get_collection(name: str, database: Optional[Database] = None) -> Collection:
    """Get a collection from the given database or the application database"""
    db = database if database is not None else get_database()
    return db[name]


def close_connection() -> None:
    """Close MongoDB connection"""
    global _client, _database
    if _client is not None:
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


# ============================================================================
# Document conversion
# ============================================================================

def to_document(model: BaseModel, id_field: str) -> Dict[str, Any]:
    """
    Dump a model for storage

    Enums become their values and datetimes become naive UTC so they stay
    sortable and comparable inside MongoDB. Rule DSL models dump with their
    camelCase aliases.
    """
    doc = _to_storage_value(model.model_dump(by_alias=True))
    doc["_id"] = doc[id_field]
    return doc


def to_storage_fields(updates: Dict[str, Any]) -> Dict[str, Any]:
    """Same conversion as to_document for a `$set` payload"""
    return _to_storage_value(updates)


def _to_storage_value(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return _to_storage_value(value.model_dump(by_alias=True))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_storage(value)
    if isinstance(value, dict):
        return {k: _to_storage_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_storage_value(v) for v in value]
    return value


def from_document(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Strip the Mongo _id so the document validates into a model"""
    if doc is None:
        return None
    doc.pop("_id", None)
    return doc


# ============================================================================
# Indexes & Health
# ============================================================================

def create_indexes(database: Optional[Database] = None) -> None:
    """Create all required indexes"""
    db = database if database is not None else get_database()
    logger.info("Creating MongoDB indexes...")

    configurations = db["workflow_configurations"]
    configurations.create_index("configuration_id", unique=True)
    configurations.create_index([
        ("tenant_id", ASCENDING),
        ("request_type_id", ASCENDING),
        ("is_active", ASCENDING),
        ("status", ASCENDING),
    ])

    requests = db["requests"]
    requests.create_index("request_id", unique=True)
    requests.create_index([("tenant_id", ASCENDING), ("status", ASCENDING), ("due_date", ASCENDING)])
    requests.create_index([("tenant_id", ASCENDING), ("requester_id", ASCENDING)])

    approvals = db["approvals"]
    approvals.create_index("approval_id", unique=True)
    approvals.create_index([("tenant_id", ASCENDING), ("request_id", ASCENDING), ("stage", ASCENDING)])
    approvals.create_index([
        ("tenant_id", ASCENDING),
        ("approver_id", ASCENDING),
        ("status", ASCENDING),
        ("created_at", ASCENDING),
    ])
    approvals.create_index([("status", ASCENDING), ("created_at", ASCENDING)])
    approvals.create_index(
        [("tenant_id", ASCENDING), ("request_id", ASCENDING), ("approver_id", ASCENDING)],
        name="one_pending_approval_per_approver",
        unique=True,
        partialFilterExpression={"status": "Pending"}
    )

    escalations = db["approval_escalations"]
    escalations.create_index("escalation_id", unique=True)
    escalations.create_index(
        "approval_id",
        name="one_pending_escalation_per_approval",
        unique=True,
        partialFilterExpression={"status": "Pending"}
    )
    escalations.create_index([("tenant_id", ASCENDING), ("status", ASCENDING), ("triggered_at", ASCENDING)])

    instances = db["workflow_instances"]
    instances.create_index("instance_id", unique=True)
    instances.create_index([("tenant_id", ASCENDING), ("request_id", ASCENDING)])
    instances.create_index([("status", ASCENDING), ("updated_at", ASCENDING)])

    notifications = db["notifications"]
    notifications.create_index("notification_id", unique=True)
    notifications.create_index([
        ("tenant_id", ASCENDING),
        ("user_id", ASCENDING),
        ("notification_type", ASCENDING),
        ("created_at", DESCENDING),
    ])

    logger.info("MongoDB indexes created successfully")


def health_check() -> Dict[str, Any]:
    """Check MongoDB health"""
    try:
        client = get_client()
        client.admin.command("ping")
        return {
            "status": "healthy",
            "database": settings.mongo_db,
            "connection": "ok"
        }
    except PyMongoError as e:
        logger.error(f"MongoDB health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": settings.mongo_db,
            "error": str(e)
        }
