#!/usr/bin/env python3
"""
Seed Demo Data

Populates the database with a small, realistic data set for local
development and demos:
- An admin, a technician and two customers
- Vehicles (including a BMW that triggers luxury pricing)
- The service catalog with parts and price modifiers

Prints a bearer token for each user so the API can be exercised right away.

Usage:
    python scripts/seed_demo_data.py
"""

import asyncio
import logging
import sys
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

# Add server directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "server"))

from app.auth import create_access_token
from app.models.service import Service, ServiceCategory
from app.models.user import User, UserRole
from app.models.vehicle import Vehicle
from app.services.database import close_db, get_session_maker, init_db
from sqlalchemy import select

SERVICES = [
    {
        "name": "Synthetic Oil Change",
        "category": ServiceCategory.OIL_CHANGE,
        "description": "Full synthetic oil and filter change with multi-point inspection",
        "base_price": Decimal("89.99"),
        "estimated_duration": 45,
        "parts": [{"name": "Oil filter", "partNumber": "OF-100", "isRequired": True, "estimatedCost": 12.5}],
        "price_modifiers": [{"condition": "BMW Mercedes-Benz Audi", "multiplier": 1.2, "additionalCost": 15}],
        "is_popular": True,
    },
    {
        "name": "Brake Pad Replacement",
        "category": ServiceCategory.BRAKE_SERVICE,
        "description": "Front or rear brake pad replacement and rotor inspection",
        "base_price": Decimal("199.99"),
        "estimated_duration": 90,
        "parts": [{"name": "Brake pads", "partNumber": "BP-220", "isRequired": True, "estimatedCost": 65}],
        "price_modifiers": [{"condition": "BMW Porsche", "multiplier": 1.4}],
    },
    {
        "name": "Computer Diagnostic Scan",
        "category": ServiceCategory.ENGINE_DIAGNOSTICS,
        "description": "OBD-II scan with trouble code explanation",
        "base_price": Decimal("120.00"),
        "estimated_duration": 60,
        "is_popular": True,
    },
    {
        "name": "Tire Rotation",
        "category": ServiceCategory.TIRES_WHEELS,
        "description": "Rotate all four tires and set pressures",
        "base_price": Decimal("39.99"),
        "estimated_duration": 30,
    },
    {
        "name": "A/C Recharge",
        "category": ServiceCategory.AIR_CONDITIONING,
        "description": "Evacuate and recharge the air conditioning system",
        "base_price": Decimal("149.99"),
        "estimated_duration": 60,
    },
]


async def seed_data():
    """Seed the database with demo data."""
    print("Seeding demo data...")

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    await init_db()

    try:
        async with get_session_maker()() as db:
            existing = (
                await db.execute(select(User).where(User.email == "admin@autocure.net"))
            ).scalar_one_or_none()
            if existing:
                print("Demo data already exists. Skipping seed.")
                return

            admin = User(
                email="admin@autocure.net", first_name="Dana", last_name="Reyes", role=UserRole.ADMIN
            )
            technician = User(
                email="tech@autocure.net", first_name="Sam", last_name="Okafor", role=UserRole.STAFF
            )
            alice = User(
                email="alice@example.com",
                phone="+1-905-555-0101",
                first_name="Alice",
                last_name="Martin",
                role=UserRole.CUSTOMER,
            )
            bob = User(
                email="bob@example.com",
                phone="+1-905-555-0102",
                first_name="Bob",
                last_name="Singh",
                role=UserRole.CUSTOMER,
            )
            db.add_all([admin, technician, alice, bob])
            await db.flush()

            db.add_all(
                [
                    Vehicle(
                        owner_id=alice.id,
                        vin="WBA8E9C50GK123456",
                        license_plate="CAAB 123",
                        year=2016,
                        make="BMW",
                        model="328i",
                        mileage=112000,
                        last_service_date=date.today() - timedelta(days=240),
                    ),
                    Vehicle(
                        owner_id=bob.id,
                        vin="2HKRW2H85KH654321",
                        license_plate="CBXD 456",
                        year=2019,
                        make="Honda",
                        model="CR-V",
                        mileage=48000,
                        last_service_date=date.today() - timedelta(days=60),
                    ),
                ]
            )
            db.add_all([Service(**data) for data in SERVICES])
            await db.commit()

            print(f"Created {len(SERVICES)} services, 4 users and 2 vehicles")
            print("\nBearer tokens:")
            for user in (admin, technician, alice, bob):
                print(f"  {user.role.value:<8} {user.email:<22} {create_access_token(user.id)}")
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(seed_data())
