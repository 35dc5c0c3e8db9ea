from typing import Dict, Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.errors import remote_operation
from app.models.profile import ProfileDocument


class ProfileRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("profiles")

    async def get_profile(self, user_id: str) -> Optional[ProfileDocument]:
        with remote_operation("fetch profile"):
            return await self._collection.find_one({"_id": user_id})

    async def get_profiles(self, user_ids: Iterable[str]) -> Dict[str, ProfileDocument]:
        """Batched lookup keyed by profile id; unknown ids are simply absent."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        with remote_operation("fetch profiles"):
            docs = await self._collection.find({"_id": {"$in": ids}}).to_list(length=len(ids))
        return {doc["_id"]: doc for doc in docs}
