from datetime import datetime
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from app.schemas.message import _as_utc


class Notification(BaseModel):

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    user_id: str
    text: str
    product_id: Optional[str] = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: datetime) -> datetime:
        return _as_utc(value)


class ProductViewResult(BaseModel):

    notified: bool
    notification: Optional[Notification] = None
