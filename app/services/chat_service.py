import logging
import uuid
from typing import Dict, Iterable, List, Optional

from app.core.config import get_settings
from app.core.errors import NotFoundError, RemoteOperationFailed, UnauthorizedError
from app.repositories.message_repository import MessageRepository
from app.repositories.profile_repository import ProfileRepository
from app.schemas.message import (
    ConversationSummary,
    Message,
    PeerProfile,
    StartConversationResult,
    ThreadSnapshot,
    UnreadState,
)


logger = logging.getLogger(__name__)

GREETING = "👋"


def peer_from_profile(peer_id: str, profile: Optional[dict]) -> PeerProfile:
    if not profile:
        return PeerProfile(id=peer_id)
    return PeerProfile(
        id=peer_id,
        name=profile.get("name") or "Unknown",
        profile_picture=profile.get("profile_picture") or "",
    )


def latest_per_conversation(messages: Iterable[Message]) -> Dict[str, Message]:
    """Fold newest-first messages into the last message of each conversation.

    Relies on the input order: the first occurrence of a conversation id is its
    most recent message. Dict insertion order keeps the newest-first ordering.
    """
    latest: Dict[str, Message] = {}
    for message in messages:
        if message.conversation_id not in latest:
            latest[message.conversation_id] = message
    return latest


def build_summary(message: Message, self_id: str, peer: PeerProfile) -> ConversationSummary:
    return ConversationSummary(
        conversation_id=message.conversation_id,
        peer_id=peer.id,
        peer_display_name=peer.name,
        peer_avatar=peer.profile_picture,
        last_message_body=message.body,
        last_message_at=message.created_at,
        last_message_from_self=message.sender_id == self_id,
    )


class ChatService:

    def __init__(self, message_repo: MessageRepository, profile_repo: ProfileRepository) -> None:
        self._message_repo = message_repo
        self._profile_repo = profile_repo

    async def open_thread(self, conversation_id: str, self_id: str) -> ThreadSnapshot:
        """Load a whole thread, oldest first, and resolve who the viewer talks to."""
        rows = await self._message_repo.get_thread(conversation_id)
        if not rows:
            raise NotFoundError("Conversation not found")
        messages = [Message.model_validate(row) for row in rows]
        first = messages[0]
        if not first.involves(self_id):
            logger.warning(
                "Rejected thread access by non-participant",
                extra={"extra_data": {"conversation_id": conversation_id, "user_id": self_id}},
            )
            raise UnauthorizedError("Not a participant of this conversation")
        peer = await self.get_peer(first.other_party(self_id))
        return ThreadSnapshot(conversation_id=conversation_id, messages=messages, peer=peer)

    async def read_thread(self, conversation_id: str, self_id: str) -> ThreadSnapshot:
        """Open a thread and mark everything addressed to the viewer as read."""
        snapshot = await self.open_thread(conversation_id, self_id)
        unread = [m.id for m in snapshot.messages if m.receiver_id == self_id and not m.is_read]
        if not unread:
            return snapshot
        try:
            await self.mark_read(self_id, unread)
        except RemoteOperationFailed:
            logger.error("Failed to update message status in %s", conversation_id)
            return snapshot
        read = set(unread)
        messages = [m.model_copy(update={"is_read": True}) if m.id in read else m for m in snapshot.messages]
        return snapshot.model_copy(update={"messages": messages})

    async def reply(self, conversation_id: str, self_id: str, body: str) -> Optional[Message]:
        """Send into an existing thread; the recipient is the other participant."""
        if not body or not body.strip():
            return None
        first = await self._message_repo.get_first_message(conversation_id)
        if not first:
            raise NotFoundError("Conversation not found")
        message = Message.model_validate(first)
        if not message.involves(self_id):
            raise UnauthorizedError("Not a participant of this conversation")
        return await self.send_message(self_id, message.other_party(self_id), conversation_id, body)

    async def get_peer(self, peer_id: str) -> PeerProfile:
        try:
            profile = await self._profile_repo.get_profile(peer_id)
        except RemoteOperationFailed:
            logger.error("Failed to resolve peer profile %s", peer_id)
            profile = None
        return peer_from_profile(peer_id, profile)

    async def send_message(self, sender_id: str, receiver_id: str, conversation_id: str, body: str) -> Optional[Message]:
        """Store a new unread message; blank bodies are ignored.

        Nothing is appended locally: open views pick the row up from the change
        feed like any other message.
        """
        if not body or not body.strip():
            return None
        if sender_id == receiver_id:
            raise ValueError("Cannot send a message to yourself")
        first = await self._message_repo.get_first_message(conversation_id)
        if first and {first["sender_id"], first["receiver_id"]} != {sender_id, receiver_id}:
            raise UnauthorizedError("Not a participant of this conversation")
        saved = await self._message_repo.save_message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            body=body,
        )
        return Message.model_validate(saved)

    async def start_conversation(self, self_id: str, peer_id: str) -> StartConversationResult:
        if self_id == peer_id:
            raise ValueError("Cannot start a conversation with yourself")
        existing = await self._message_repo.find_conversation_between(self_id, peer_id)
        if existing:
            return StartConversationResult(conversation_id=existing, created=False)
        if not await self._profile_repo.get_profile(peer_id):
            raise NotFoundError("User not found")
        conversation_id = uuid.uuid4().hex
        await self._message_repo.save_message(
            conversation_id=conversation_id,
            sender_id=self_id,
            receiver_id=peer_id,
            body=GREETING,
        )
        logger.info(
            "Conversation started",
            extra={"extra_data": {"conversation_id": conversation_id, "user_id": self_id}},
        )
        return StartConversationResult(conversation_id=conversation_id, created=True)

    async def mark_read(self, receiver_id: str, message_ids: Iterable[str]) -> int:
        return await self._message_repo.mark_read(receiver_id, message_ids)

    async def mark_conversation_read(self, conversation_id: str, receiver_id: str) -> int:
        return await self._message_repo.mark_conversation_read(conversation_id, receiver_id)

    async def get_unread_count(self, user_id: str) -> int:
        return await self._message_repo.count_unread(user_id)

    async def get_unread_state(self, user_id: str) -> UnreadState:
        count = await self.get_unread_count(user_id)
        return UnreadState.from_count(count, cap=get_settings().unread_display_cap)

    async def has_unread(self, user_id: str) -> bool:
        if not user_id:
            return False
        try:
            return await self.get_unread_count(user_id) > 0
        except RemoteOperationFailed:
            logger.error("Failed to check unread messages for %s", user_id)
            return False

    async def resolve_summary(self, message: Message, self_id: str) -> ConversationSummary:
        peer = await self.get_peer(message.other_party(self_id))
        return build_summary(message, self_id, peer)

    async def list_conversations(self, user_id: str) -> List[ConversationSummary]:
        rows = await self._message_repo.list_for_participant(user_id)
        latest = latest_per_conversation(Message.model_validate(row) for row in rows)
        peer_ids = [m.other_party(user_id) for m in latest.values()]
        profiles = await self._profile_repo.get_profiles(peer_ids)
        return [
            build_summary(m, user_id, peer_from_profile(m.other_party(user_id), profiles.get(m.other_party(user_id))))
            for m in latest.values()
        ]
