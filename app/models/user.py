from sqlalchemy import Column, Enum, String

from app.core.enums import UserRole
from app.models.base import BaseModel


class User(BaseModel):
    __tablename__ = "users"
    username = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(160), nullable=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(UserRole), nullable=False, default=UserRole.OPERATOR)
