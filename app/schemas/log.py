from datetime import datetime
from typing import Any

from pydantic import BaseModel


class ActionLogPublic(BaseModel):
    id: int
    action: str
    user_id: int | None
    group_id: int | None
    details: dict[str, Any]
    created_at: datetime

    class Config:
        from_attributes = True


class ActionLogPage(BaseModel):
    logs: list[ActionLogPublic]
    total: int
    page: int
    limit: int
    pages: int
