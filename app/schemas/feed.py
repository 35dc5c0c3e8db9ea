from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel


EventType = Literal["INSERT", "UPDATE", "DELETE"]


class ChangeEvent(BaseModel):
    """Row-level change published after a committed mutation."""

    table: str
    type: EventType
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None

    @property
    def row(self) -> Dict[str, Any]:
        if self.type == "DELETE":
            return self.old or {}
        return self.new or {}
