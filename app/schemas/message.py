from datetime import datetime, timezone
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class Message(BaseModel):

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    conversation_id: str
    sender_id: str
    receiver_id: str
    body: str
    created_at: datetime
    is_read: bool = False

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return _as_utc(value)

    def other_party(self, user_id: str) -> str:
        return self.receiver_id if self.sender_id == user_id else self.sender_id

    def involves(self, user_id: str) -> bool:
        return user_id in (self.sender_id, self.receiver_id)


class MessageSend(BaseModel):

    body: str = ""


class PeerProfile(BaseModel):

    id: str
    name: str = "Unknown"
    profile_picture: str = ""


class ThreadSnapshot(BaseModel):

    conversation_id: str
    messages: List[Message]
    peer: PeerProfile


class ConversationSummary(BaseModel):

    conversation_id: str
    peer_id: str
    peer_display_name: str = "Unknown"
    peer_avatar: str = ""
    last_message_body: str
    last_message_at: datetime
    last_message_from_self: bool = False

    @field_validator("last_message_at")
    @classmethod
    def normalize_last_message_at(cls, value: datetime) -> datetime:
        return _as_utc(value)


class UnreadState(BaseModel):

    count: int = 0
    has_unread: bool = False
    display_count: str = "0"

    @classmethod
    def from_count(cls, count: int, cap: int = 9) -> "UnreadState":
        return cls(
            count=count,
            has_unread=count > 0,
            display_count=f"{cap}+" if count > cap else str(count),
        )


class StartConversationResult(BaseModel):

    conversation_id: str
    created: bool


class SendResult(BaseModel):

    sent: bool
    message: Optional[Message] = None
