from datetime import datetime
from typing import Optional
from enum import Enum
from sqlalchemy import Column, DateTime, func

from sqlmodel import SQLModel, Field

from traffic_fines.core.timeutils import utcnow


class Role(str, Enum):
    DRIVER = "driver"
    POLICE_OFFICER = "police_officer"
    ADMIN = "admin"


STAFF_ROLES = frozenset({Role.POLICE_OFFICER, Role.ADMIN})


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, min_length=3, max_length=30, sa_column_kwargs={"unique": True})
    email: str = Field(index=True, sa_column_kwargs={"unique": True})
    hashed_password: str
    role: Role = Field(default=Role.DRIVER, index=True)
    is_active: bool = Field(default=True)

    # profile
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone_number: Optional[str] = None
    license_number: Optional[str] = Field(default=None, index=True)  # drivers
    badge_number: Optional[str] = Field(default=None, index=True)  # police officers
    street: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None

    last_login: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            server_default=func.now(),
            nullable=False,
        )
    )

    @property
    def full_name(self) -> str:
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        return self.username

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
