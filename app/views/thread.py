import bisect
import logging
from typing import List, Optional

from app.repositories.message_repository import TABLE
from app.schemas.feed import ChangeEvent
from app.schemas.message import Message, PeerProfile
from app.services.chat_service import ChatService
from app.services.session_service import UserSession
from app.utils.realtime_bus import InMemoryBus
from app.views.base import ChangeCallback, LiveView


logger = logging.getLogger(__name__)


def _order_key(message: Message):
    return (message.created_at, message.id)


class ThreadState:
    """Messages of one open conversation, oldest first."""

    def __init__(self, messages: Optional[List[Message]] = None) -> None:
        self.messages: List[Message] = []
        self._ids = set()
        for message in messages or []:
            self.append_incoming(message)

    def __len__(self) -> int:
        return len(self.messages)

    def append_incoming(self, message: Message) -> bool:
        """Add a message delivered by the feed. Returns False for a duplicate.

        The feed delivers in commit order, so this is normally a plain append; a
        late event is slotted in by timestamp instead of breaking the order.
        """
        if message.id in self._ids:
            return False
        self._ids.add(message.id)
        if not self.messages or _order_key(self.messages[-1]) <= _order_key(message):
            self.messages.append(message)
        else:
            keys = [_order_key(m) for m in self.messages]
            self.messages.insert(bisect.bisect_right(keys, _order_key(message)), message)
        return True

    def mark_read(self, message_id: str) -> bool:
        for index, message in enumerate(self.messages):
            if message.id == message_id:
                if message.is_read:
                    return False
                self.messages[index] = message.model_copy(update={"is_read": True})
                return True
        return False

    def unread_for(self, user_id: str) -> List[str]:
        return [m.id for m in self.messages if m.receiver_id == user_id and not m.is_read]


class ThreadView(LiveView):

    def __init__(
        self,
        session: UserSession,
        conversation_id: str,
        service: ChatService,
        bus: InMemoryBus,
        on_change: Optional[ChangeCallback] = None,
    ) -> None:
        super().__init__(session, bus, on_change=on_change)
        self.conversation_id = conversation_id
        self._service = service
        self.state = ThreadState()
        self.peer: Optional[PeerProfile] = None

    @property
    def messages(self) -> List[Message]:
        return self.state.messages

    async def subscribe(self) -> None:
        await self._listen(TABLE, event="INSERT", column="conversation_id", value=self.conversation_id)
        await self._listen(TABLE, event="UPDATE", column="conversation_id", value=self.conversation_id)

    async def load(self) -> None:
        snapshot = await self._service.open_thread(self.conversation_id, self.self_id)
        self.state = ThreadState(snapshot.messages)
        self.peer = snapshot.peer
        unread = self.state.unread_for(self.self_id)
        if unread:
            self.spawn(self._service.mark_read(self.self_id, unread), "Read receipt")

    async def apply(self, item: ChangeEvent) -> None:
        message = Message.model_validate(item.new)
        if item.type == "UPDATE":
            if message.is_read:
                self.state.mark_read(message.id)
            return
        if not self.state.append_incoming(message):
            return
        if message.receiver_id == self.self_id and not message.is_read:
            self.spawn(self._service.mark_read(self.self_id, [message.id]), "Read receipt")

    async def send(self, body: str) -> Optional[Message]:
        """Store a message to the peer; it shows up here once the feed echoes it."""
        if self.peer is None:
            logger.error("Cannot determine message recipient for %s", self.conversation_id)
            return None
        return await self._service.send_message(self.self_id, self.peer.id, self.conversation_id, body)

    def snapshot(self) -> dict:
        return {
            "type": "thread",
            "conversation_id": self.conversation_id,
            "loading": self.loading,
            "peer": self.peer.model_dump() if self.peer else None,
            "messages": [m.model_dump(mode="json") for m in self.messages],
        }
