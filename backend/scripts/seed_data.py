"""
Seed the database with a demo salon.

Run with: python -m scripts.seed_data
"""

import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from altq.auth.password import hash_password
from altq.database import async_session_maker, init_db
from altq.models import Offer, Salon, Service, User, UserRole
from altq.utils.timezone import utc_now


DEMO_OWNER = {
    "email": "owner@altq.dev",
    "password": "owner-password",
    "name": "Demo Owner",
    "phone": "+49 30 1234567",
}

DEMO_CUSTOMER = {
    "email": "customer@altq.dev",
    "password": "customer-password",
    "name": "Demo Customer",
    "phone": "+49 30 7654321",
}

DEMO_SALON = {
    "name": "Kiez Cuts",
    "description": "Walk-in barber and hair salon",
    "address": "Oranienstrasse 25, 10999 Berlin, Germany",
    "latitude": 52.5013,
    "longitude": 13.4183,
    "salon_type": "unisex",
}

DEMO_SERVICES = [
    {"name": "Haircut", "description": "Wash, cut and style", "duration": 30, "price": Decimal("25.00")},
    {"name": "Beard trim", "description": "Shape and hot towel", "duration": 15, "price": Decimal("12.00")},
    {"name": "Colour", "description": "Full colour", "duration": 90, "price": Decimal("70.00")},
]


async def get_or_create_user(session, data: dict, role: UserRole) -> User:
    result = await session.execute(select(User).where(User.email == data["email"]))
    user = result.scalar_one_or_none()
    if user:
        print(f"✓ {role.value} {user.email} exists")
        return user

    user = User(
        id=uuid.uuid4(),
        email=data["email"],
        password_hash=hash_password(data["password"]),
        name=data["name"],
        phone=data["phone"],
        role=role.value,
        loyalty_points=0,
        salon_loyalty_points={},
        is_active=True,
        created_at=utc_now(),
    )
    session.add(user)
    await session.flush()
    print(f"+ Created {role.value}: {user.email} / {data['password']}")
    return user


async def seed_demo_salon() -> None:
    """Seed a salon owner, a customer and a salon with services and an offer."""
    async with async_session_maker() as session:
        owner = await get_or_create_user(session, DEMO_OWNER, UserRole.SALON_OWNER)
        await get_or_create_user(session, DEMO_CUSTOMER, UserRole.CUSTOMER)

        result = await session.execute(
            select(Salon).where(Salon.owner_id == owner.id, Salon.name == DEMO_SALON["name"])
        )
        salon = result.scalar_one_or_none()

        if salon:
            print(f"✓ Salon {salon.name} exists")
        else:
            salon = Salon(id=uuid.uuid4(), owner_id=owner.id, created_at=utc_now(), **DEMO_SALON)
            session.add(salon)
            await session.flush()
            print(f"+ Created salon: {salon.name}")

        print("\nServices:")
        for service_data in DEMO_SERVICES:
            result = await session.execute(
                select(Service).where(
                    Service.salon_id == salon.id,
                    Service.name == service_data["name"],
                )
            )
            if result.scalar_one_or_none():
                print(f"  ✓ {service_data['name']} exists")
                continue
            session.add(Service(
                id=uuid.uuid4(),
                salon_id=salon.id,
                is_active=True,
                created_at=utc_now(),
                **service_data,
            ))
            print(f"  + Created: {service_data['name']}")

        result = await session.execute(select(Offer).where(Offer.salon_id == salon.id))
        if not result.scalars().first():
            session.add(Offer(
                id=uuid.uuid4(),
                salon_id=salon.id,
                title="Opening week",
                description="10% off every booking",
                discount=10,
                valid_until=utc_now() + timedelta(days=7),
                is_active=True,
                created_at=utc_now(),
            ))
            print("\n+ Created offer: Opening week")

        await session.commit()
        print("\n✓ Seed data complete!")


async def main():
    """Main entry point."""
    print("=" * 50)
    print("Seeding AltQ Database")
    print("=" * 50)

    print("\nInitializing database...")
    await init_db()

    print("\nSeeding demo salon...")
    await seed_demo_salon()


if __name__ == "__main__":
    asyncio.run(main())
