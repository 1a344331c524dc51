from pydantic import BaseModel


class UserRef(BaseModel):
    id: int
    username: str | None = None


class UserAccess(BaseModel):
    id: int
    username: str
    role: str
    permissions: list[str]

    class Config:
        from_attributes = True
