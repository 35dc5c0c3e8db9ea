from datetime import datetime
from typing import Optional, TypedDict


class NotificationDocument(TypedDict, total=False):
    _id: str
    user_id: str
    text: str
    product_id: Optional[str]
    created_at: datetime
