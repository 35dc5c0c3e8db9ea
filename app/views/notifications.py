import logging
from typing import List, Optional

from app.repositories.notification_repository import TABLE
from app.schemas.feed import ChangeEvent
from app.schemas.notification import Notification
from app.services.notification_service import NotificationService
from app.services.session_service import UserSession
from app.utils.realtime_bus import InMemoryBus
from app.views.base import ChangeCallback, LiveView


logger = logging.getLogger(__name__)


class NotificationState:
    """Notifications of one user, newest first."""

    def __init__(self, notifications: Optional[List[Notification]] = None) -> None:
        self.notifications: List[Notification] = list(notifications or [])

    def __len__(self) -> int:
        return len(self.notifications)

    def prepend(self, notification: Notification) -> bool:
        # live inserts are the newest rows there are
        if any(n.id == notification.id for n in self.notifications):
            return False
        self.notifications.insert(0, notification)
        return True

    def remove(self, notification_id: str) -> bool:
        before = len(self.notifications)
        self.notifications = [n for n in self.notifications if n.id != notification_id]
        return len(self.notifications) != before


class NotificationFeed(LiveView):

    def __init__(
        self,
        session: UserSession,
        service: NotificationService,
        bus: InMemoryBus,
        on_change: Optional[ChangeCallback] = None,
    ) -> None:
        super().__init__(session, bus, on_change=on_change)
        self._service = service
        self.state = NotificationState()

    @property
    def notifications(self) -> List[Notification]:
        return self.state.notifications

    async def subscribe(self) -> None:
        await self._listen(TABLE, event="*", column="user_id", value=self.self_id)

    async def refresh(self) -> List[Notification]:
        self.state = NotificationState(await self._service.list_notifications(self.self_id))
        return self.notifications

    async def load(self) -> None:
        await self.refresh()

    async def apply(self, item: ChangeEvent) -> None:
        if item.type == "INSERT":
            self.state.prepend(Notification.model_validate(item.new))
        elif item.type == "DELETE":
            self.state.remove(str(item.old.get("_id")))
        else:
            logger.debug("Ignoring %s event on notifications", item.type)

    def snapshot(self) -> dict:
        return {
            "type": "notifications",
            "loading": self.loading,
            "notifications": [n.model_dump(mode="json") for n in self.notifications],
        }
