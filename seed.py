"""Load sample accounts and the default violation catalog.

Usage: DATABASE_URL=... SECRET_KEY=... python seed.py
Existing usernames and violation codes are left untouched, so the script can be re-run.
"""
import asyncio
import logging
from decimal import Decimal

from traffic_fines.core.config import settings
from traffic_fines.core.database import AsyncSessionLocal, engine, init_db
from traffic_fines.core.logging import configure_logging
from traffic_fines.models.user import Role
from traffic_fines.models.violation import Currency, SeverityLevel, ViolationCategory
from traffic_fines.schemas.violation import ViolationCreate
from traffic_fines.services import auth_service, violation_service

logger = logging.getLogger("seed")

USERS = [
    {
        "username": "admin",
        "email": "admin@trafficfines.lk",
        "password": "admin123",
        "role": Role.ADMIN,
        "first_name": "System",
        "last_name": "Administrator",
        "phone_number": "+94771234567",
    },
    {
        "username": "officer1",
        "email": "officer1@police.lk",
        "password": "officer123",
        "role": Role.POLICE_OFFICER,
        "first_name": "Kamal",
        "last_name": "Perera",
        "phone_number": "+94772345678",
        "badge_number": "PO001",
    },
    {
        "username": "officer2",
        "email": "officer2@police.lk",
        "password": "officer123",
        "role": Role.POLICE_OFFICER,
        "first_name": "Nimal",
        "last_name": "Silva",
        "phone_number": "+94773456789",
        "badge_number": "PO002",
    },
    {
        "username": "driver1",
        "email": "driver1@gmail.com",
        "password": "driver123",
        "role": Role.DRIVER,
        "first_name": "Saman",
        "last_name": "Fernando",
        "phone_number": "+94774567890",
        "license_number": "B1234567",
        "city": "Colombo",
        "province": "Western",
    },
    {
        "username": "driver2",
        "email": "driver2@gmail.com",
        "password": "driver123",
        "role": Role.DRIVER,
        "first_name": "Ruwan",
        "last_name": "Jayasinghe",
        "phone_number": "+94775678901",
        "license_number": "B2345678",
        "city": "Kandy",
        "province": "Central",
    },
]

VIOLATIONS = [
    ("Speeding 1-20 km/h over limit", "SP001", "1500.00", SeverityLevel.LOW, ViolationCategory.SPEEDING, 2),
    ("Speeding over 20 km/h over limit", "SP002", "3000.00", SeverityLevel.SEVERE, ViolationCategory.SPEEDING, 4),
    ("Reckless driving", "RD001", "10000.00", SeverityLevel.SEVERE, ViolationCategory.RECKLESS_DRIVING, 6),
    ("Running a red light", "RL001", "5000.00", SeverityLevel.SEVERE, ViolationCategory.TRAFFIC_SIGNAL, 4),
    ("Illegal parking", "PK001", "1000.00", SeverityLevel.MINOR, ViolationCategory.PARKING, 0),
    ("Driving without a valid licence", "DL001", "5000.00", SeverityLevel.SEVERE, ViolationCategory.DOCUMENTATION, 3),
    ("Improper lane change", "LV001", "2000.00", SeverityLevel.LOW, ViolationCategory.LANE_VIOLATION, 2),
    ("Defective lights", "VC001", "1500.00", SeverityLevel.MINOR, ViolationCategory.VEHICLE_CONDITION, 1),
    ("Driving under the influence", "DU001", "25000.00", SeverityLevel.DEATH_SEVERE, ViolationCategory.DUI, 10),
]


async def seed() -> None:
    await init_db()
    async with AsyncSessionLocal() as session:
        admin = None
        for data in USERS:
            data = dict(data)
            existing = await auth_service.get_user_by_username(session, data["username"])
            if existing:
                user = existing
            else:
                user = await auth_service.create_user(
                    session, data.pop("username"), data.pop("email"), data.pop("password"), data.pop("role"), **data
                )
                logger.info("Seeded user | username=%s | role=%s", user.username, user.role.value)
            if user.role == Role.ADMIN:
                admin = user

        for name, code, amount, severity, category, points in VIOLATIONS:
            if await violation_service.get_violation_by_code(session, code):
                continue
            payload = ViolationCreate(
                name=name,
                code=code,
                fine_amount=Decimal(amount),
                currency=Currency(settings.DEFAULT_CURRENCY),
                severity_level=severity,
                category=category,
                points=points,
            )
            await violation_service.create_violation(session, payload, created_by=admin.id if admin else None)

    await engine.dispose()


if __name__ == "__main__":
    configure_logging(settings.LOG_LEVEL)
    asyncio.run(seed())
