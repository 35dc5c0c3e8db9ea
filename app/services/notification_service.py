import logging
from typing import List, Optional

from app.core.errors import NotFoundError, RemoteOperationFailed, UnauthorizedError
from app.repositories.notification_repository import NotificationRepository
from app.repositories.product_repository import ProductRepository
from app.repositories.profile_repository import ProfileRepository
from app.schemas.notification import Notification


logger = logging.getLogger(__name__)


class NotificationService:

    def __init__(
        self,
        notification_repo: NotificationRepository,
        product_repo: ProductRepository,
        profile_repo: ProfileRepository,
    ) -> None:
        self._notification_repo = notification_repo
        self._product_repo = product_repo
        self._profile_repo = profile_repo

    async def list_notifications(self, user_id: str) -> List[Notification]:
        rows = await self._notification_repo.list_for_user(user_id)
        return [Notification.model_validate(row) for row in rows]

    async def delete_notification(self, notification_id: str, user_id: str) -> None:
        doc = await self._notification_repo.get_by_id(notification_id)
        if not doc:
            raise NotFoundError("Notification not found")
        if doc["user_id"] != user_id:
            raise UnauthorizedError("Notification belongs to another user")
        if not await self._notification_repo.delete(notification_id):
            raise NotFoundError("Notification not found")

    async def notify_product_view(self, viewer_id: str, product_id: str) -> Optional[Notification]:
        """Tell a product owner that somebody else opened their product.

        Returns the created notification, or None when the viewer owns the
        product or the notification could not be stored.
        """
        product = await self._product_repo.get_product(product_id)
        if not product:
            raise NotFoundError("Product not found")
        owner_id = product.get("user_id")
        if not owner_id or owner_id == viewer_id:
            return None
        try:
            viewer = await self._profile_repo.get_profile(viewer_id)
            name = (viewer or {}).get("name") or "Someone"
            doc = await self._notification_repo.create(
                user_id=owner_id,
                text=f"{name} viewed your product.",
                product_id=product_id,
            )
        except RemoteOperationFailed:
            logger.error(
                "Failed to send product view notification",
                extra={"extra_data": {"product_id": product_id, "viewer_id": viewer_id}},
            )
            return None
        return Notification.model_validate(doc)
