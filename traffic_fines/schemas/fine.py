from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, field_validator

from traffic_fines.models.fine import DisputeStatus, FineStatus, PaymentMethod, VehicleType
from traffic_fines.models.violation import Currency, SeverityLevel, ViolationCategory


class GeoPoint(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class FineLocation(BaseModel):
    google_location: GeoPoint
    address: Optional[str] = Field(default=None, max_length=200)
    city: Optional[str] = Field(default=None, max_length=50)
    province: Optional[str] = Field(default=None, max_length=50)


class VehicleInfo(BaseModel):
    license_plate: str = Field(..., min_length=1)
    vehicle_type: VehicleType
    make: Optional[str] = None
    model: Optional[str] = None
    color: Optional[str] = None

    @field_validator("license_plate")
    @classmethod
    def normalise_plate(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("License plate is required")
        return v


class EvidenceItem(BaseModel):
    type: str = Field(..., pattern="^(photo|video|document)$")
    url: str
    description: Optional[str] = None
    uploaded_at: Optional[datetime] = None


class FineCreate(BaseModel):
    driver_id: int
    violation_id: int
    violation_message: str = Field(..., min_length=1, max_length=1000)
    location: FineLocation
    vehicle_info: VehicleInfo
    custom_fine_amount: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)
    tags: Optional[List[str]] = None
    evidence: Optional[List[EvidenceItem]] = None

    @field_validator("violation_message")
    @classmethod
    def strip_message(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Violation message is required")
        return v

    @field_validator("tags")
    @classmethod
    def check_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        tags = [t.strip() for t in v]
        if any(len(t) > 30 for t in tags):
            raise ValueError("Each tag cannot exceed 30 characters")
        return tags


class FineStatusUpdate(BaseModel):
    status: FineStatus
    reason: Optional[str] = Field(default=None, max_length=500)
    # only used when staff mark a fine as paid out-of-band
    payment_method: Optional[PaymentMethod] = None
    transaction_id: Optional[str] = None


class NoteCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=500)

    @field_validator("content")
    @classmethod
    def strip_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Note content is required")
        return v


class NoteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    content: str
    added_by: Optional[int]
    added_at: datetime


class PaymentInfoRead(BaseModel):
    payment_id: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    paid_at: Optional[datetime] = None
    transaction_id: Optional[str] = None
    receipt_number: Optional[str] = None
    receipt_url: Optional[str] = None


class DisputeInfoRead(BaseModel):
    is_disputed: bool = False
    dispute_reason: Optional[str] = None
    dispute_date: Optional[datetime] = None
    dispute_status: Optional[DisputeStatus] = None
    dispute_resolution: Optional[str] = None
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = None


class ViolationSummary(BaseModel):
    id: int
    name: str
    code: str
    category: ViolationCategory
    severity_level: SeverityLevel


class FineRead(BaseModel):
    id: int
    fine_id: str
    driver_id: int
    officer_id: int
    violation_id: int
    violation: Optional[ViolationSummary] = None
    amount: Decimal
    currency: Currency
    formatted_amount: str
    violation_message: str
    location: FineLocation
    vehicle_info: VehicleInfo
    tags: List[str] = []
    evidence: List[Dict[str, Any]] = []
    status: FineStatus
    due_date: datetime
    is_overdue: bool
    days_until_due: Optional[int]
    payment_info: PaymentInfoRead
    dispute_info: DisputeInfoRead
    notes: List[NoteRead] = []
    created_at: datetime
    updated_at: datetime


class Pagination(BaseModel):
    current: int
    pages: int
    total: int
    limit: int


class FineList(BaseModel):
    fines: List[FineRead]
    pagination: Pagination


class StatusBucket(BaseModel):
    status: FineStatus
    count: int
    total_amount: Decimal


class FineStats(BaseModel):
    total_fines: int
    total_amount: Decimal
    overdue_fines: int
    status_stats: List[StatusBucket]
