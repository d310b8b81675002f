from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field

from traffic_fines.models.fine import FineStatus, PaymentMethod, VehicleType
from traffic_fines.models.violation import Currency, ViolationCategory
from traffic_fines.services.payment_gateway import PAYMENT_INTENT_ID_PATTERN


class PaymentIntentCreate(BaseModel):
    fine_id: int


class FineSnapshot(BaseModel):
    id: int
    violation_name: str
    license_plate: str
    due_date: datetime


class PaymentIntentResponse(BaseModel):
    client_secret: Optional[str]
    payment_intent_id: str
    amount: Decimal
    currency: Currency
    fine: FineSnapshot


class PaymentConfirm(BaseModel):
    fine_id: int
    payment_intent_id: str = Field(..., pattern=PAYMENT_INTENT_ID_PATTERN, max_length=255)


class PaymentConfirmResponse(BaseModel):
    id: int
    status: FineStatus
    paid_at: Optional[datetime]
    transaction_id: Optional[str]
    already_paid: bool = False


class WebhookAck(BaseModel):
    received: bool = True


class ReceiptParty(BaseModel):
    name: str
    license_number: Optional[str] = None
    badge_number: Optional[str] = None


class ReceiptViolation(BaseModel):
    name: str
    code: str
    category: ViolationCategory


class ReceiptVehicle(BaseModel):
    license_plate: str
    type: VehicleType


class Receipt(BaseModel):
    fine_id: str
    receipt_number: str
    payment_date: datetime
    amount: Decimal
    currency: Currency
    payment_method: Optional[PaymentMethod]
    transaction_id: Optional[str]
    receipt_url: Optional[str]
    driver: ReceiptParty
    violation: ReceiptViolation
    vehicle: ReceiptVehicle
    location: Dict[str, Any]
    issued_by: ReceiptParty
    issued_date: datetime


class MethodBucket(BaseModel):
    method: Optional[PaymentMethod]
    count: int
    amount: Decimal


class PaymentStats(BaseModel):
    period: str
    total_payments: int
    total_amount: Decimal
    average_amount: Decimal
    payment_methods: List[MethodBucket]
