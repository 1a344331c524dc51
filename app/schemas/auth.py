from pydantic import BaseModel, Field

from app.schemas.base import StrictModel


class RegisterRequest(StrictModel):
    username: str = Field(min_length=3, max_length=60)
    password: str = Field(min_length=6, max_length=128)


class LoginRequest(StrictModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class AccessUpdate(StrictModel):
    role: str | None = None
    permissions: list[str] | None = None
