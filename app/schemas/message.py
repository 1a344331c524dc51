from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas.base import StrictModel
from app.schemas.user import UserRef

UNAVAILABLE_TEXT = "message unavailable"


class MessageCreate(StrictModel):
    content: str = Field(min_length=1, max_length=5000)
    reply_to: int | None = None


class ReadStatusEntry(BaseModel):
    user_id: int
    read: bool
    read_at: datetime | None = None


class ReplyPreview(BaseModel):
    id: int
    unavailable: bool = False
    sender: UserRef | None = None
    content: str = UNAVAILABLE_TEXT
    file_name: str | None = None


class MessagePublic(BaseModel):
    id: int
    group_id: int
    sender: UserRef
    content: str

    file_url: str | None = None
    file_name: str | None = None
    file_size: int | None = None
    file_type: str | None = None

    reply_to: ReplyPreview | None = None
    read_status: list[ReadStatusEntry]
    created_at: datetime


class MarkAllReadResult(BaseModel):
    group_id: int
    updated: int
