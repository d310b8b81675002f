"""Shared fixtures: in-memory database, sample accounts, catalog entries and a fake gateway."""

import os

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import traffic_fines.models  # noqa: F401
from traffic_fines.core.timeutils import utcnow
from traffic_fines.models.fine import Fine
from traffic_fines.models.user import Role
from traffic_fines.models.violation import Currency, SeverityLevel, TrafficViolation, ViolationCategory
from traffic_fines.schemas.fine import FineCreate
from traffic_fines.services import auth_service, fine_service
from traffic_fines.services.payment_gateway import (
    SUCCEEDED,
    GatewayEvent,
    PaymentIntent,
    parse_event,
    verify_notification,
)

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


async def _user(session, username, role, **profile):
    return await auth_service.create_user(
        session, username, f"{username}@example.com", "secret123", role, **profile
    )


@pytest.fixture
async def admin(session):
    return await _user(session, "admin", Role.ADMIN, first_name="System", last_name="Admin")


@pytest.fixture
async def officer(session):
    return await _user(session, "officer1", Role.POLICE_OFFICER, first_name="Kamal", last_name="Perera",
                       badge_number="PO001")


@pytest.fixture
async def other_officer(session):
    return await _user(session, "officer2", Role.POLICE_OFFICER, badge_number="PO002")


@pytest.fixture
async def driver(session):
    return await _user(session, "driver1", Role.DRIVER, first_name="Saman", last_name="Fernando",
                       license_number="B1234567")


@pytest.fixture
async def other_driver(session):
    return await _user(session, "driver2", Role.DRIVER, license_number="B2345678")


@pytest.fixture
async def violation(session, admin):
    violation = TrafficViolation(
        name="Speeding 1-20 km/h over limit",
        code="SP001",
        fine_amount=Decimal("1500.00"),
        currency=Currency.LKR,
        severity_level=SeverityLevel.LOW,
        category=ViolationCategory.SPEEDING,
        points=2,
        created_by=admin.id,
    )
    session.add(violation)
    await session.commit()
    await session.refresh(violation)
    return violation


def fine_payload(driver_id: int, violation_id: int, **overrides) -> FineCreate:
    data = {
        "driver_id": driver_id,
        "violation_id": violation_id,
        "violation_message": "Caught at 75 km/h in a 60 zone",
        "location": {
            "google_location": {"lat": 6.9271, "lng": 79.8612},
            "address": "Galle Road",
            "city": "Colombo",
            "province": "Western",
        },
        "vehicle_info": {"license_plate": "wp cab-1234", "vehicle_type": "Car", "make": "Toyota"},
        "tags": ["speed-camera"],
    }
    data.update(overrides)
    return FineCreate(**data)


@pytest.fixture
def issue_fine(session, officer, driver, violation):
    """Factory: issue a fine (optionally back-dated so it is already past due)."""

    async def _issue(issued_at: Optional[datetime] = None, **overrides) -> Fine:
        payload = fine_payload(overrides.pop("driver_id", driver.id), overrides.pop("violation_id", violation.id),
                               **overrides)
        return await fine_service.create_fine(session, officer, payload, now=issued_at)

    return _issue


@pytest.fixture
async def fine(issue_fine):
    return await issue_fine()


@pytest.fixture
async def overdue_fine(issue_fine):
    return await issue_fine(issued_at=utcnow() - timedelta(days=45))


class FakeGateway:
    """In-memory stand-in for the card gateway."""

    def __init__(self, webhook_secret: str = WEBHOOK_SECRET):
        self.webhook_secret = webhook_secret
        self.intents: Dict[str, PaymentIntent] = {}
        self.created = []
        self.fail_with: Optional[Exception] = None

    async def create_payment_intent(self, amount, currency, metadata, description=None):
        if self.fail_with:
            raise self.fail_with
        intent = PaymentIntent(
            id=f"pi_test_{len(self.intents) + 1}",
            client_secret=f"pi_test_{len(self.intents) + 1}_secret",
            status="requires_payment_method",
            amount=amount,
            currency=currency.lower(),
            metadata=dict(metadata),
        )
        self.intents[intent.id] = intent
        self.created.append(intent)
        return intent

    async def retrieve_payment_intent(self, payment_intent_id):
        if self.fail_with:
            raise self.fail_with
        return self.intents[payment_intent_id]

    def construct_event(self, payload: bytes, signature_header) -> GatewayEvent:
        verify_notification(payload, signature_header, self.webhook_secret, tolerance=300)
        return parse_event(payload)

    def succeed(self, intent_id: str, charge_id: str = "ch_test_1") -> PaymentIntent:
        intent = self.intents[intent_id].model_copy(
            update={"status": SUCCEEDED, "charge_id": charge_id, "receipt_url": f"https://pay.example/r/{charge_id}"}
        )
        self.intents[intent_id] = intent
        return intent

    def add_intent(self, intent_id: str, fine_pk: int, status: str = SUCCEEDED, amount: int = 150000) -> PaymentIntent:
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret",
            status=status,
            amount=amount,
            currency="lkr",
            metadata={"fineId": str(fine_pk)},
            charge_id="ch_" + intent_id[3:] if status == SUCCEEDED else None,
        )
        self.intents[intent_id] = intent
        return intent


@pytest.fixture
def gateway():
    return FakeGateway()
