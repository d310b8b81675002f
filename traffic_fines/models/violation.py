from typing import Optional
from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, DateTime, Enum as SAEnum

from traffic_fines.core.timeutils import utcnow


class Currency(str, Enum):
    LKR = "LKR"
    USD = "USD"
    EUR = "EUR"


class SeverityLevel(str, Enum):
    MINOR = "Minor"
    LOW = "Low"
    SEVERE = "Severe"
    DEATH_SEVERE = "DeathSevere"


class ViolationCategory(str, Enum):
    SPEEDING = "Speeding"
    PARKING = "Parking"
    TRAFFIC_SIGNAL = "Traffic Signal"
    LANE_VIOLATION = "Lane Violation"
    VEHICLE_CONDITION = "Vehicle Condition"
    DOCUMENTATION = "Documentation"
    RECKLESS_DRIVING = "Reckless Driving"
    DUI = "DUI"
    OTHER = "Other"


class TrafficViolation(SQLModel, table=True):
    __tablename__ = "traffic_violations"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=100)
    code: str = Field(index=True, sa_column_kwargs={"unique": True})
    description: Optional[str] = Field(default=None, max_length=500)
    fine_amount: Decimal = Field(max_digits=12, decimal_places=2)
    currency: Currency = Field(default=Currency.LKR, sa_column=Column(SAEnum(Currency), nullable=False))
    severity_level: SeverityLevel = Field(
        default=SeverityLevel.MINOR,
        sa_column=Column(SAEnum(SeverityLevel), nullable=False, index=True),
    )
    category: ViolationCategory = Field(sa_column=Column(SAEnum(ViolationCategory), nullable=False, index=True))
    points: int = Field(default=0, ge=0, le=10)
    is_active: bool = Field(default=True, index=True)
    created_by: Optional[int] = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))

    @property
    def formatted_fine_amount(self) -> str:
        return format_amount(self.fine_amount, self.currency)


def format_amount(amount: Optional[Decimal], currency) -> str:
    value = Decimal(amount or 0)
    code = currency.value if isinstance(currency, Currency) else (currency or Currency.LKR.value)
    return f"{code} {value:,.2f}"
