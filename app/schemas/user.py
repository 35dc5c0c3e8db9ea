from typing import Optional

from pydantic import BaseModel


class SessionPublic(BaseModel):

    user_id: str
    display_name: str
    role: Optional[str] = None
