"""Seed script to populate the database with sample data."""

import asyncio

from sqlalchemy import select

from app.core.config import settings
from app.core.database import create_engine_and_sessionmaker, create_tables
from app.models.user import User
from app.services.billing import BillingEngine
from app.services.reading_store import ReadingStore

DEMO_READINGS = [120, 150, 178, 205, 231, 290]


async def seed_database() -> None:
    """Seed the database with sample data."""
    engine, session_factory = create_engine_and_sessionmaker(settings.DATABASE_URL)
    await create_tables(engine)

    async with session_factory() as db:
        # Check if data already exists
        result = await db.execute(select(User))
        if result.first():
            print("Database already has data. Skipping seed.")
            await engine.dispose()
            return

        print("Seeding database...")

        user = User(
            username="demo",
            email="demo@example.com",
            first_name="Demo",
            last_name="User",
            expo_push_token="ExponentPushToken[demo-device-token]",
        )
        db.add(user)
        await db.commit()
        print(f"Created user: {user.username} (ID: {user.user_id})")

    billing = BillingEngine(
        ReadingStore(session_factory),
        rate_per_unit=settings.RATE_PER_UNIT,
        max_register_value=settings.max_register_value,
    )
    for value in DEMO_READINGS:
        result = await billing.record_reading_and_bill(user.user_id, 1, value)
        print(
            f"  {result.bill.bill_number}: consumption {result.reading.consumption}, "
            f"amount {result.bill.amount_to_pay}"
        )

    await engine.dispose()
    print("Seeding complete!")


if __name__ == "__main__":
    asyncio.run(seed_database())
