from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel

from sqlmodel import SQLModel, Field
from traffic_fines.models.user import Role


class ProfileFields(SQLModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    license_number: Optional[str] = None
    badge_number: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None


# Input schema for creating users (admin)
class UserCreate(ProfileFields):
    username: str = Field(..., min_length=3, max_length=30)
    email: str
    password: str = Field(..., min_length=6)
    role: Role = Role.DRIVER


# Output schema for reading users
class UserRead(ProfileFields):
    id: int
    username: str
    email: str
    role: Role
    is_active: bool
    full_name: str
    last_login: Optional[datetime]
    created_at: datetime


class ProfileUpdate(ProfileFields):
    email: Optional[str] = None


class RoleUpdate(BaseModel):
    role: Role


class ActiveUpdate(BaseModel):
    is_active: bool


class UserList(BaseModel):
    users: List[UserRead]
    total: int
    page: int
    pages: int


class RoleBucket(BaseModel):
    role: Role
    count: int
    active: int


class UserStats(BaseModel):
    total_users: int
    active_users: int
    role_stats: List[RoleBucket]
