from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from app.core.errors import remote_operation
from app.models.message import MessageDocument
from app.schemas.feed import ChangeEvent
from app.utils.realtime_bus import InMemoryBus, publish_committed


TABLE = "chats"


def utc_now() -> datetime:
    # BSON dates carry millisecond precision
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def to_object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def normalize(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc["_id"] = str(doc.get("_id"))
    return doc


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase, bus: Optional[InMemoryBus] = None) -> None:
        self._db = db
        self._bus = bus

    @property
    def collection(self):
        return self._db[TABLE]

    async def ensure_indexes(self) -> None:
        with remote_operation("create message indexes"):
            await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
            await self.collection.create_index([("receiver_id", ASCENDING), ("is_read", ASCENDING)])
            await self.collection.create_index([("sender_id", ASCENDING), ("created_at", DESCENDING)])

    async def _publish(self, type_: str, new: Optional[Dict[str, Any]] = None, old: Optional[Dict[str, Any]] = None) -> None:
        await publish_committed(self._bus, ChangeEvent(table=TABLE, type=type_, new=new, old=old))

    async def save_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        body: str,
    ) -> MessageDocument:
        doc: Dict[str, Any] = {
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "body": body,
            "created_at": utc_now(),
            "is_read": False,
        }
        with remote_operation("send message"):
            result = await self.collection.insert_one(doc)
        doc["_id"] = str(result.inserted_id)
        await self._publish("INSERT", new=dict(doc))
        return doc

    async def get_thread(self, conversation_id: str, limit: int = 10000) -> List[MessageDocument]:
        sort = [("created_at", ASCENDING), ("_id", ASCENDING)]
        with remote_operation("fetch messages"):
            items = await self.collection.find({"conversation_id": conversation_id}).sort(sort).to_list(length=limit)
        return [normalize(it) for it in items]

    async def get_first_message(self, conversation_id: str) -> Optional[MessageDocument]:
        sort = [("created_at", ASCENDING), ("_id", ASCENDING)]
        with remote_operation("fetch conversation"):
            items = await self.collection.find({"conversation_id": conversation_id}).sort(sort).limit(1).to_list(length=1)
        return normalize(items[0]) if items else None

    async def list_for_participant(self, user_id: str, limit: int = 10000) -> List[MessageDocument]:
        query = {"$or": [{"sender_id": user_id}, {"receiver_id": user_id}]}
        sort = [("created_at", DESCENDING), ("_id", DESCENDING)]
        with remote_operation("fetch conversations"):
            items = await self.collection.find(query).sort(sort).to_list(length=limit)
        return [normalize(it) for it in items]

    async def find_conversation_between(self, user_a: str, user_b: str) -> Optional[str]:
        query = {
            "$or": [
                {"sender_id": user_a, "receiver_id": user_b},
                {"sender_id": user_b, "receiver_id": user_a},
            ]
        }
        with remote_operation("look up conversation"):
            doc = await self.collection.find_one(query, {"conversation_id": 1})
        return doc["conversation_id"] if doc else None

    async def count_unread(self, user_id: str) -> int:
        with remote_operation("count unread messages"):
            return await self.collection.count_documents({"receiver_id": user_id, "is_read": False})

    async def mark_read(self, receiver_id: str, message_ids: Iterable[str]) -> int:
        """Flip ``is_read`` to True on the given messages addressed to ``receiver_id``.

        Only rows that are still unread are touched, so the flag never moves back
        and repeated calls are harmless.
        """
        oids = [oid for oid in (to_object_id(m) for m in message_ids) if oid is not None]
        if not oids:
            return 0
        query: Dict[str, Any] = {"_id": {"$in": oids}, "receiver_id": receiver_id, "is_read": False}
        with remote_operation("mark messages read"):
            pending = await self.collection.find(query).to_list(length=len(oids))
            if not pending:
                return 0
            result = await self.collection.update_many(
                {"_id": {"$in": [doc["_id"] for doc in pending]}, "is_read": False},
                {"$set": {"is_read": True}},
            )
        for doc in pending:
            old = normalize(dict(doc))
            await self._publish("UPDATE", new={**old, "is_read": True}, old=old)
        return result.modified_count or 0

    async def mark_conversation_read(self, conversation_id: str, receiver_id: str) -> int:
        with remote_operation("fetch unread messages"):
            pending = await self.collection.find(
                {"conversation_id": conversation_id, "receiver_id": receiver_id, "is_read": False},
                {"_id": 1},
            ).to_list(length=10000)
        return await self.mark_read(receiver_id, [str(doc["_id"]) for doc in pending])
