from datetime import datetime

from pydantic import BaseModel, Field

from app.schemas.base import StrictModel
from app.schemas.group import GroupRequestPublic
from app.schemas.user import UserRef


class AnnouncementCreate(StrictModel):
    content: str = Field(min_length=1, max_length=5000)


class InvitationCreate(StrictModel):
    group_id: int
    recipient_id: int


class InvitationResponse(StrictModel):
    accept: bool


class AnnouncementPublic(BaseModel):
    id: int
    type: str
    content: str
    sender: UserRef
    # the viewer's own status
    status: str
    created_at: datetime

    group_id: int | None = None
    group_name: str | None = None
    invitation_status: str | None = None


class InvitationResult(BaseModel):
    invitation: AnnouncementPublic
    request: GroupRequestPublic | None = None
