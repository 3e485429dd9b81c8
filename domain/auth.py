"""Domain Entities - Auth"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from typing import Optional

from domain.enums import UserRole
from domain.value_objects import Actor


class User(BaseModel):
    """User Entity"""
    user_id: UUID = Field(default_factory=uuid4)
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: UserRole = UserRole.CUSTOMER
    disabled: bool = False

    class Config:
        from_attributes = True

    def as_actor(self) -> Actor:
        return Actor(user_id=self.user_id, role=self.role)


class UserInDB(User):
    """User with hashed password for DB storage"""
    hashed_password: str
