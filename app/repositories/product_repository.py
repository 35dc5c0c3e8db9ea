from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.core.errors import remote_operation
from app.models.product import ProductDocument


class ProductRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("products")

    async def get_product(self, product_id: str) -> Optional[ProductDocument]:
        with remote_operation("fetch product"):
            return await self._collection.find_one({"_id": product_id})
