"""
Seed script -- populates the database with sample accounts for local testing.

Run after migrations:
    python seed.py

Creates:
  - 6 main drivers (bike / auto / car, spread around Bengaluru's MG Road)
  - 2 sub-drivers operating under the first two drivers
  - 4 customers
  - 1 admin
and prints a development bearer token for every account.
"""

import asyncio

from sqlalchemy import text

from ridehail.config import settings
from ridehail.domain.enums import Role, VehicleClass
from ridehail.domain.matching import location_cell
from ridehail.infrastructure.database import async_session_factory, engine
from ridehail.infrastructure.models import UserModel
from ridehail.realtime.auth import create_access_token

# MG Road, Bengaluru (approx)
CENTRE_LAT, CENTRE_LNG = 12.9756, 77.6050


DRIVERS = [
    {"name": "Ravi Kumar", "email": "ravi@example.com", "phone": "9000000001", "vehicle": VehicleClass.BIKE, "lat": 12.9760, "lng": 77.6055},
    {"name": "Suresh Babu", "email": "suresh@example.com", "phone": "9000000002", "vehicle": VehicleClass.AUTO, "lat": 12.9740, "lng": 77.6030},
    {"name": "Imran Khan", "email": "imran@example.com", "phone": "9000000003", "vehicle": VehicleClass.CAR, "lat": 12.9790, "lng": 77.6090},
    {"name": "Manjunath G", "email": "manju@example.com", "phone": "9000000004", "vehicle": VehicleClass.CAR, "lat": 12.9700, "lng": 77.6000},
    {"name": "Lakshmi Devi", "email": "lakshmi@example.com", "phone": "9000000005", "vehicle": VehicleClass.BIKE, "lat": 12.9820, "lng": 77.6120},
    {"name": "Naveen Rao", "email": "naveen@example.com", "phone": "9000000006", "vehicle": VehicleClass.TRUCK, "lat": 12.9650, "lng": 77.5950},
]

SUB_DRIVERS = [
    {"name": "Kiran (for Ravi)", "email": "kiran@example.com", "phone": "9000000101", "parent": 0},
    {"name": "Deepak (for Suresh)", "email": "deepak@example.com", "phone": "9000000102", "parent": 1},
]

CUSTOMERS = [
    {"name": "Aarav Sharma", "email": "aarav@example.com", "phone": "9100000001"},
    {"name": "Priya Patel", "email": "priya@example.com", "phone": "9100000002"},
    {"name": "Rohan Mehta", "email": "rohan@example.com", "phone": "9100000003"},
    {"name": "Sneha Gupta", "email": "sneha@example.com", "phone": "9100000004"},
]

ADMIN = {"name": "Ops Desk", "email": "ops@example.com", "phone": "9200000001"}


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return []

        # ── Drivers ───────────────────────────────────────────────────
        drivers = []
        for d in DRIVERS:
            m = UserModel(
                full_name=d["name"],
                email=d["email"],
                phone=d["phone"],
                role=Role.DRIVER,
                vehicle_class=d["vehicle"],
                current_lat=d["lat"],
                current_lng=d["lng"],
                location_cell=location_cell(d["lat"], d["lng"], settings.h3_resolution),
                is_available=True,
            )
            session.add(m)
            drivers.append(m)
        await session.flush()
        print(f"  Created {len(drivers)} drivers")

        # ── Sub-drivers ───────────────────────────────────────────────
        subs = []
        for s in SUB_DRIVERS:
            parent = drivers[s["parent"]]
            m = UserModel(
                full_name=s["name"],
                email=s["email"],
                phone=s["phone"],
                role=Role.SUB_DRIVER,
                parent_driver_id=parent.id,
                vehicle_class=parent.vehicle_class,
                is_available=True,
            )
            session.add(m)
            subs.append(m)
        await session.flush()
        print(f"  Created {len(subs)} sub-drivers")

        # ── Customers & admin ─────────────────────────────────────────
        customers = [
            UserModel(full_name=c["name"], email=c["email"], phone=c["phone"], role=Role.CUSTOMER)
            for c in CUSTOMERS
        ]
        admin = UserModel(
            full_name=ADMIN["name"], email=ADMIN["email"], phone=ADMIN["phone"], role=Role.ADMIN
        )
        session.add_all([*customers, admin])
        await session.flush()
        print(f"  Created {len(customers)} customers and 1 admin")

        await session.commit()
        print("\nSeed complete!")
        return [*drivers, *subs, *customers, admin]


async def main():
    print("Seeding database...")
    users = await seed()
    await engine.dispose()
    if users:
        print("\nDevelopment tokens (valid 12 h):")
        for user in users:
            print(f"  {user.role.value:<10} {user.email:<22} {create_access_token(user.id)}")


if __name__ == "__main__":
    asyncio.run(main())
