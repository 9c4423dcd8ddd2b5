from typing import Optional

from pydantic import BaseModel, Field

from app.core.enums import UserRole


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


class OperatorCreate(BaseModel):
    username: str = Field(min_length=3, max_length=64)
    password: str = Field(min_length=8)
    email: Optional[str] = None
    role: Optional[UserRole] = None


class OperatorOut(BaseModel):
    id: int
    username: str
    email: Optional[str] = None
    role: UserRole
