import uuid
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
from enum import Enum
from sqlmodel import SQLModel, Field
from sqlalchemy import JSON, Column, DateTime, Enum as SAEnum

from traffic_fines.core.timeutils import as_utc, utcnow
from traffic_fines.models.violation import Currency


class FineStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"


# statuses from which a fine can still be paid or disputed
PAYABLE_STATUSES = (FineStatus.PENDING, FineStatus.OVERDUE)


class VehicleType(str, Enum):
    CAR = "Car"
    MOTORCYCLE = "Motorcycle"
    BUS = "Bus"
    TRUCK = "Truck"
    VAN = "Van"
    THREE_WHEELER = "Three-Wheeler"
    OTHER = "Other"


class PaymentMethod(str, Enum):
    STRIPE = "stripe"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    OTHER = "other"


class DisputeStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Fine(SQLModel, table=True):
    __tablename__ = "fines"

    id: Optional[int] = Field(default=None, primary_key=True)
    fine_id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        index=True,
        sa_column_kwargs={"unique": True, "nullable": False},
    )
    driver_id: int = Field(foreign_key="users.id", index=True)
    officer_id: int = Field(foreign_key="users.id", index=True)
    violation_id: int = Field(foreign_key="traffic_violations.id")

    amount: Decimal = Field(max_digits=12, decimal_places=2)
    currency: Currency = Field(default=Currency.LKR, sa_column=Column(SAEnum(Currency), nullable=False))
    violation_message: str = Field(max_length=1000)

    # location
    latitude: float
    longitude: float
    address: Optional[str] = Field(default=None, max_length=200)
    city: Optional[str] = Field(default=None, max_length=50)
    province: Optional[str] = Field(default=None, max_length=50)

    # vehicle
    license_plate: str = Field(index=True)
    vehicle_type: VehicleType = Field(sa_column=Column(SAEnum(VehicleType), nullable=False))
    vehicle_make: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_color: Optional[str] = None

    tags: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    evidence: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON))

    status: FineStatus = Field(
        default=FineStatus.PENDING,
        sa_column=Column(SAEnum(FineStatus), nullable=False, index=True),
    )
    due_date: datetime = Field(index=True, sa_type=DateTime(timezone=True))

    # payment metadata, written once by the paid transition
    payment_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = Field(default=None, sa_column=Column(SAEnum(PaymentMethod)))
    paid_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    transaction_id: Optional[str] = None
    receipt_number: Optional[str] = None
    receipt_url: Optional[str] = None

    # dispute metadata
    is_disputed: bool = Field(default=False)
    dispute_reason: Optional[str] = None
    dispute_date: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    dispute_status: Optional[DisputeStatus] = Field(default=None, sa_column=Column(SAEnum(DisputeStatus)))
    dispute_resolution: Optional[str] = None
    resolved_by: Optional[int] = Field(default=None, foreign_key="users.id")
    resolved_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))

    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class FineNote(SQLModel, table=True):
    """Append-only audit/annotation entry attached to a fine."""

    __tablename__ = "fine_notes"

    id: Optional[int] = Field(default=None, primary_key=True)
    fine_id: int = Field(foreign_key="fines.id", index=True)
    content: str = Field(max_length=500)
    # None for entries written by the payment gateway webhook
    added_by: Optional[int] = Field(default=None, foreign_key="users.id")
    added_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


def effective_status(fine: Fine, now: Optional[datetime] = None) -> FineStatus:
    """A pending fine past its due date reads as overdue; due_date itself is never touched."""
    now = as_utc(now) if now else utcnow()
    if fine.status == FineStatus.PENDING and as_utc(fine.due_date) < now:
        return FineStatus.OVERDUE
    return fine.status


def receipt_number_for(fine_id: str) -> str:
    return f"RCP-{fine_id[-8:].upper()}"
