import re
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, field_validator

from traffic_fines.core.config import settings
from traffic_fines.models.violation import Currency, SeverityLevel, ViolationCategory

CODE_REGEX = re.compile(r"^[A-Z0-9-]+$")


class ViolationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    code: str
    description: Optional[str] = Field(default=None, max_length=500)
    fine_amount: Decimal = Field(..., ge=0)
    currency: Currency = Field(default_factory=lambda: Currency(settings.DEFAULT_CURRENCY))
    severity_level: SeverityLevel
    category: ViolationCategory
    points: int = Field(default=0, ge=0, le=10)

    @field_validator("code")
    @classmethod
    def check_code(cls, v: str) -> str:
        v = v.strip().upper()
        if not CODE_REGEX.match(v):
            raise ValueError("Code must contain only uppercase letters, numbers, and hyphens")
        return v


class ViolationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    fine_amount: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[Currency] = None
    severity_level: Optional[SeverityLevel] = None
    category: Optional[ViolationCategory] = None
    points: Optional[int] = Field(default=None, ge=0, le=10)
    is_active: Optional[bool] = None


class ViolationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    code: str
    description: Optional[str]
    fine_amount: Decimal
    currency: Currency
    formatted_fine_amount: str
    severity_level: SeverityLevel
    category: ViolationCategory
    points: int
    is_active: bool
    created_by: Optional[int]
    created_at: datetime
    updated_at: datetime


class CategoryBucket(BaseModel):
    category: ViolationCategory
    count: int
    total_fine_amount: Decimal
    avg_fine_amount: Decimal


class SeverityBucket(BaseModel):
    severity_level: SeverityLevel
    count: int


class ViolationStats(BaseModel):
    total_violations: int
    active_violations: int
    category_stats: List[CategoryBucket]
    severity_stats: List[SeverityBucket]
