from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from app.core.errors import remote_operation
from app.models.notification import NotificationDocument
from app.repositories.message_repository import normalize, to_object_id, utc_now
from app.schemas.feed import ChangeEvent
from app.utils.realtime_bus import InMemoryBus, publish_committed


TABLE = "notifications"


class NotificationRepository:

    def __init__(self, db: AsyncIOMotorDatabase, bus: Optional[InMemoryBus] = None) -> None:
        self._db = db
        self._bus = bus

    @property
    def collection(self):
        return self._db[TABLE]

    async def ensure_indexes(self) -> None:
        with remote_operation("create notification indexes"):
            await self.collection.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    async def create(self, user_id: str, text: str, product_id: Optional[str] = None) -> NotificationDocument:
        doc: Dict[str, Any] = {
            "user_id": user_id,
            "text": text,
            "product_id": product_id,
            "created_at": utc_now(),
        }
        with remote_operation("create notification"):
            result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        await publish_committed(self._bus, ChangeEvent(table=TABLE, type="INSERT", new=dict(doc)))
        return doc

    async def list_for_user(self, user_id: str, limit: int = 1000) -> List[NotificationDocument]:
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        with remote_operation("fetch notifications"):
            items = await self.collection.find({"user_id": user_id}).sort(sort).to_list(length=limit)
        return [normalize(it) for it in items]

    async def get_by_id(self, notification_id: str) -> Optional[NotificationDocument]:
        oid = to_object_id(notification_id)
        if oid is None:
            return None
        with remote_operation("fetch notification"):
            doc = await self.collection.find_one({"_id": oid})
        return normalize(doc) if doc else None

    async def delete(self, notification_id: str) -> bool:
        oid = to_object_id(notification_id)
        if oid is None:
            return False
        with remote_operation("delete notification"):
            doc = await self.collection.find_one({"_id": oid})
            if not doc:
                return False
            result = await self.collection.delete_one({"_id": oid})
        if not result.deleted_count:
            return False
        await publish_committed(self._bus, ChangeEvent(table=TABLE, type="DELETE", old=normalize(doc)))
        return True
