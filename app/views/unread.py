from typing import Optional

from app.core.config import get_settings
from app.repositories.message_repository import TABLE
from app.schemas.message import UnreadState
from app.services.chat_service import ChatService
from app.services.session_service import UserSession
from app.utils.realtime_bus import InMemoryBus
from app.views.base import ChangeCallback, LiveView


class UnreadTracker(LiveView):
    """Unread badge of the signed-in user.

    Any change to a message addressed to the user (insert, read receipt or
    delete, from any device) triggers a full recount instead of a delta.
    """

    def __init__(
        self,
        session: UserSession,
        service: ChatService,
        bus: InMemoryBus,
        on_change: Optional[ChangeCallback] = None,
    ) -> None:
        super().__init__(session, bus, on_change=on_change)
        self._service = service
        self.count = 0

    @property
    def state(self) -> UnreadState:
        return UnreadState.from_count(self.count, cap=get_settings().unread_display_cap)

    async def subscribe(self) -> None:
        await self._listen(TABLE, event="*", column="receiver_id", value=self.self_id)

    async def refresh(self) -> int:
        self.count = await self._service.get_unread_count(self.self_id)
        return self.count

    async def load(self) -> None:
        await self.refresh()

    async def apply(self, item) -> None:
        await self.refresh()

    def snapshot(self) -> dict:
        return {"type": "unread", **self.state.model_dump()}
