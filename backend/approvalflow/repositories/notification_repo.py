"""Notification Repository - Data access for the in-app notification outbox"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo import DESCENDING

from .mongo_client import get_collection, to_document, from_document
from ..domain.models import Notification
from ..domain.enums import NotificationType
from ..utils.logger import get_logger
from ..utils.time import to_storage

logger = get_logger(__name__)


class NotificationRepository:
    """Repository for notification outbox operations"""

    def __init__(self, database: Optional[Database] = None):
        self._notifications: Collection = get_collection("notifications", database)

    def create_notifications_bulk(self, notifications: List[Notification]) -> List[Notification]:
        """Create multiple notifications"""
        if not notifications:
            return []

        docs = [to_document(n, "notification_id") for n in notifications]
        self._notifications.insert_many(docs)
        logger.info(f"Created {len(notifications)} notifications", extra={"count": len(notifications)})
        return notifications

    def get_notifications_for_user(
        self,
        tenant_id: str,
        user_id: str,
        unread_only: bool = False,
        notification_type: Optional[NotificationType] = None,
        skip: int = 0,
        limit: int = 20
    ) -> List[Notification]:
        """Notifications of a user, newest first"""
        query: Dict[str, Any] = {"tenant_id": tenant_id, "user_id": user_id}
        if unread_only:
            query["is_read"] = False
        if notification_type:
            query["notification_type"] = notification_type.value

        cursor = self._notifications.find(query).sort("created_at", DESCENDING).skip(skip).limit(limit)
        return [Notification.model_validate(from_document(doc)) for doc in cursor]

    def last_sent_at(
        self,
        tenant_id: str,
        user_id: str,
        notification_type: NotificationType
    ) -> Optional[datetime]:
        """Creation time of the user's most recent notification of a type"""
        notifications = self.get_notifications_for_user(
            tenant_id, user_id, notification_type=notification_type, limit=1
        )
        return notifications[0].created_at if notifications else None

    def delete_read_before(self, tenant_id: str, created_before: datetime) -> int:
        result = self._notifications.delete_many({
            "tenant_id": tenant_id,
            "is_read": True,
            "created_at": {"$lt": to_storage(created_before)}
        })
        return result.deleted_count
