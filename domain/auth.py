"""Domain Entities - Auth"""
from pydantic import BaseModel
from typing import Optional

from domain.enums import ActorRole
from domain.value_objects import Actor


class User(BaseModel):
    """User Entity"""
    user_id: str
    username: str
    role: ActorRole = ActorRole.CLIENT
    supplier_id: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[str] = None
    disabled: bool = False

    class Config:
        from_attributes = True

    def as_actor(self) -> Actor:
        return Actor(user_id=self.user_id, role=self.role, supplier_id=self.supplier_id)


class UserInDB(User):
    """User with hashed password for DB storage"""
    hashed_password: str
