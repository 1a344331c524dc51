from datetime import datetime

from pydantic import BaseModel

from app.schemas.user import UserRef


class BlacklistEntryPublic(BaseModel):
    id: int
    group_id: int
    user: UserRef
    created_at: datetime
