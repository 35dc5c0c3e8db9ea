import logging
from typing import Dict, List, Optional

from app.repositories.message_repository import TABLE
from app.schemas.message import ConversationSummary, Message
from app.services.chat_service import ChatService
from app.services.session_service import UserSession
from app.utils.realtime_bus import InMemoryBus
from app.views.base import ChangeCallback, LiveView


logger = logging.getLogger(__name__)


class InboxState:
    """One summary per conversation, most recent activity first."""

    def __init__(self, summaries: Optional[List[ConversationSummary]] = None) -> None:
        self.summaries: List[ConversationSummary] = []
        for summary in summaries or []:
            self.add_summary(summary)

    def __len__(self) -> int:
        return len(self.summaries)

    def get(self, conversation_id: str) -> Optional[ConversationSummary]:
        for summary in self.summaries:
            if summary.conversation_id == conversation_id:
                return summary
        return None

    def _resort(self) -> None:
        self.summaries.sort(key=lambda s: s.last_message_at, reverse=True)

    def apply_message(self, message: Message, self_id: str) -> bool:
        """Patch the summary of a known conversation.

        Returns False when the conversation has no summary yet; the caller has
        to resolve the peer and hand the result to ``add_summary``.
        """
        for index, summary in enumerate(self.summaries):
            if summary.conversation_id != message.conversation_id:
                continue
            if message.created_at >= summary.last_message_at:
                self.summaries[index] = summary.model_copy(
                    update={
                        "last_message_body": message.body,
                        "last_message_at": message.created_at,
                        "last_message_from_self": message.sender_id == self_id,
                    }
                )
                self._resort()
            return True
        return False

    def add_summary(self, summary: ConversationSummary) -> bool:
        """Insert a new conversation; an existing one is patched instead."""
        for index, existing in enumerate(self.summaries):
            if existing.conversation_id != summary.conversation_id:
                continue
            if summary.last_message_at >= existing.last_message_at:
                self.summaries[index] = existing.model_copy(
                    update={
                        "last_message_body": summary.last_message_body,
                        "last_message_at": summary.last_message_at,
                        "last_message_from_self": summary.last_message_from_self,
                    }
                )
                self._resort()
            return False
        self.summaries.insert(0, summary)
        self._resort()
        return True


class _SummaryResolved:

    def __init__(self, conversation_id: str, summary: Optional[ConversationSummary]) -> None:
        self.conversation_id = conversation_id
        self.summary = summary

    def __repr__(self) -> str:
        return f"_SummaryResolved({self.conversation_id!r})"


class InboxView(LiveView):

    def __init__(
        self,
        session: UserSession,
        service: ChatService,
        bus: InMemoryBus,
        on_change: Optional[ChangeCallback] = None,
    ) -> None:
        super().__init__(session, bus, on_change=on_change)
        self._service = service
        self.state = InboxState()
        # newest message seen per conversation whose peer is still being resolved
        self._resolving: Dict[str, Message] = {}

    @property
    def summaries(self) -> List[ConversationSummary]:
        return self.state.summaries

    async def subscribe(self) -> None:
        await self._listen(TABLE, event="INSERT", column="sender_id", value=self.self_id)
        await self._listen(TABLE, event="INSERT", column="receiver_id", value=self.self_id)

    async def load(self) -> None:
        self.state = InboxState(await self._service.list_conversations(self.self_id))

    async def apply(self, item) -> None:
        if isinstance(item, _SummaryResolved):
            latest = self._resolving.pop(item.conversation_id, None)
            summary = item.summary
            if summary is None:
                return
            if latest is not None and latest.created_at >= summary.last_message_at:
                summary = summary.model_copy(
                    update={
                        "last_message_body": latest.body,
                        "last_message_at": latest.created_at,
                        "last_message_from_self": latest.sender_id == self.self_id,
                    }
                )
            self.state.add_summary(summary)
            return

        message = Message.model_validate(item.new)
        if self.state.apply_message(message, self.self_id):
            return
        pending = self._resolving.get(message.conversation_id)
        if pending is not None:
            if message.created_at >= pending.created_at:
                self._resolving[message.conversation_id] = message
            return
        self._resolving[message.conversation_id] = message
        self.spawn(self._resolve(message), "Inbox peer lookup")

    async def _resolve(self, message: Message) -> None:
        try:
            summary = await self._service.resolve_summary(message, self.self_id)
        except Exception:
            # let the next message of this conversation try again
            await self.post(_SummaryResolved(message.conversation_id, None))
            raise
        # dropped by post() once the view is closed
        await self.post(_SummaryResolved(message.conversation_id, summary))

    def snapshot(self) -> dict:
        return {
            "type": "inbox",
            "loading": self.loading,
            "conversations": [s.model_dump(mode="json") for s in self.summaries],
        }
