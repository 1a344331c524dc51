from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas.base import StrictModel
from app.schemas.user import UserRef


class GroupCreate(StrictModel):
    name: str = Field(min_length=1, max_length=120)


class MemberTarget(StrictModel):
    user_id: int


class GroupPublic(BaseModel):
    id: int
    name: str
    owner: UserRef
    admins: list[UserRef]
    members: list[UserRef]
    created_at: datetime


class GroupRequestPublic(BaseModel):
    id: int
    group_id: int
    user: UserRef
    status: str
    created_at: datetime


class LeaveResult(BaseModel):
    group_id: int
    group_deleted: bool
    new_owner: UserRef | None = None
    group: GroupPublic | None = None
