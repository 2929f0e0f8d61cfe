"""
Seed script -- populates the database with sample data for local development.

Run after migrations:
    python seed.py

Creates:
  - 2 cargo owners, 3 drivers and 1 administrator
  - 4 cargo requests around Tehran with one trip each
    (REQUESTED, ACCEPTED, IN_PROGRESS, DELIVERY_CONFIRMED), the in-progress
    one with a short breadcrumb trail
  - the default commission percentage configuration row
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import text
from geoalchemy2.functions import ST_MakePoint

from freight.config import settings
from freight.domain.entities import GeoLocation, generate_trip_number, utcnow
from freight.domain.enums import ActorRole, CargoStatus, TripStatus
from freight.domain.state_machine import cargo_status_for
from freight.infrastructure.database import async_session_factory, engine
from freight.infrastructure.models import (
    CargoRequestModel,
    DriverModel,
    SystemConfigurationModel,
    TripModel,
    UserModel,
)
from freight.infrastructure.repositories import tracking_point_to_row

USERS = [
    {"name": "Sara Ahmadi", "role": ActorRole.CARGO_OWNER},
    {"name": "Pars Logistics", "role": ActorRole.CARGO_OWNER},
    {"name": "Reza Karimi", "role": ActorRole.DRIVER},
    {"name": "Mina Hosseini", "role": ActorRole.DRIVER},
    {"name": "Ali Rahimi", "role": ActorRole.DRIVER},
    {"name": "Operations Desk", "role": ActorRole.ADMINISTRATOR},
]

# (description, pickup, delivery, agreed price in IRR, trip status, driver index)
SHIPMENTS = [
    ("Furniture, 2 pallets", (35.7000, 51.4200), (35.6892, 51.3890), "4500000", TripStatus.REQUESTED, None),
    ("Steel pipes", (35.7219, 51.3347), (35.6961, 51.4231), "7800000", TripStatus.ACCEPTED, 0),
    ("Fresh produce", (35.6997, 51.3380), (35.7448, 51.3753), "3200000", TripStatus.IN_PROGRESS, 1),
    ("Office equipment", (35.7575, 51.4106), (35.6600, 51.4000), "5100000", TripStatus.DELIVERY_CONFIRMED, 2),
]


async def seed():
    async with async_session_factory() as session:
        result = await session.execute(text("SELECT count(*) FROM users"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Users & driver profiles ───────────────────────────────────
        users = [UserModel(name=u["name"], role=u["role"]) for u in USERS]
        session.add_all(users)
        await session.flush()
        owners = [u for u in users if u.role is ActorRole.CARGO_OWNER]
        drivers = [
            DriverModel(id=u.id, is_available=True)
            for u in users
            if u.role is ActorRole.DRIVER
        ]
        session.add_all(drivers)
        await session.flush()
        print(f"  Created {len(users)} users ({len(drivers)} drivers)")

        # ── Cargo + trips ─────────────────────────────────────────────
        now = utcnow()
        for i, (label, pickup, delivery, price, status, driver_idx) in enumerate(SHIPMENTS):
            cargo = CargoRequestModel(
                owner_id=owners[i % len(owners)].id,
                description=label,
                pickup_lat=pickup[0],
                pickup_lng=pickup[1],
                delivery_lat=delivery[0],
                delivery_lng=delivery[1],
                pickup_point=ST_MakePoint(pickup[1], pickup[0]),
                delivery_point=ST_MakePoint(delivery[1], delivery[0]),
                status=cargo_status_for(status) if driver_idx is not None else CargoStatus.PENDING,
            )
            session.add(cargo)
            await session.flush()

            trip = TripModel(
                trip_number=generate_trip_number(now),
                cargo_id=cargo.id,
                status=status,
                currency="IRR",
                agreed_amount=Decimal(price),
            )
            if driver_idx is not None:
                driver = drivers[driver_idx]
                driver.is_available = False
                trip.driver_id = driver.id
                trip.accepted_at = now - timedelta(hours=3)
                if status in (TripStatus.IN_PROGRESS, TripStatus.DELIVERY_CONFIRMED):
                    trip.picked_up_at = now - timedelta(hours=2)
                    trip.started_at = now - timedelta(hours=2)
                    driver.current_lat, driver.current_lng = pickup
                    driver.location_recorded_at = now - timedelta(minutes=5)
                if status is TripStatus.DELIVERY_CONFIRMED:
                    trip.delivered_at = now - timedelta(minutes=20)
            session.add(trip)
            if status is TripStatus.IN_PROGRESS:
                await session.flush()
                trail = [
                    GeoLocation(*pickup, timestamp=now - timedelta(minutes=30)),
                    GeoLocation(
                        (pickup[0] + delivery[0]) / 2,
                        (pickup[1] + delivery[1]) / 2,
                        timestamp=now - timedelta(minutes=15),
                    ),
                ]
                session.add_all([tracking_point_to_row(trip.id, fix) for fix in trail])
        await session.flush()
        print(f"  Created {len(SHIPMENTS)} cargo requests and trips")

        # ── Configuration ─────────────────────────────────────────────
        session.add(
            SystemConfigurationModel(
                key=settings.commission_config_key,
                value=str(settings.default_commission_percent),
            )
        )

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
