from datetime import datetime
from typing import TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    # groups both directions of one two-party thread
    conversation_id: str
    sender_id: str
    receiver_id: str
    body: str
    created_at: datetime
    # flipped to True by the receiver only, never back
    is_read: bool
