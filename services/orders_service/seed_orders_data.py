"""Seed script for local orders data.

Creates a branch, a small coffee menu and one user per role, then prints a
bearer token for each user so the API can be exercised with curl.

Usage:
    cd brewhub-orders
    python -m services.orders_service.seed_orders_data
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

from dotenv import load_dotenv
from jose import jwt
from libs.auth.models import UserRole
from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.orders_service.models import BranchRef, CoffeeRef, UserRef
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

load_dotenv()
settings = get_settings()

engine = create_async_engine(settings.DATABASE_URL, echo=False)
AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

MENU = [
    ("Espresso", Decimal("2.50")),
    ("Americano", Decimal("3.00")),
    ("Cappuccino", Decimal("4.00")),
    ("Flat White", Decimal("4.20")),
    ("Mocha", Decimal("4.50")),
]


def _token_for(user: UserRef) -> str:
    claims = {
        "sub": str(user.id),
        "role": user.role.value,
        "exp": utc_now() + timedelta(days=7),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def seed_orders_data():
    # Reference tables are normally owned by other services; create them for a bare local DB
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("Seeding orders data...")

        count = await db.scalar(select(func.count()).select_from(BranchRef))
        if count:
            print(f"Orders data already exists ({count} branches). Skipping seed.")
            return

        branch = BranchRef(name="BrewHub Downtown", address="1 Market Street")
        db.add(branch)
        await db.flush()

        coffees = [CoffeeRef(name=name, price=price) for name, price in MENU]
        db.add_all(coffees)

        users = [
            UserRef(name="Casey Customer", role=UserRole.CUSTOMER),
            UserRef(name="Ada Admin", role=UserRole.ADMIN),
            UserRef(name="Morgan Manager", role=UserRole.MANAGER, branch_id=branch.id),
            UserRef(name="Sam Staff", role=UserRole.STAFF, branch_id=branch.id),
            UserRef(name="Drew Driver", role=UserRole.DELIVERY, branch_id=branch.id),
        ]
        db.add_all(users)
        await db.commit()

        print("=" * 60)
        print("Orders data seeded successfully!")
        print("=" * 60)
        print(f"  Branch: {branch.name} ({branch.id})")
        for coffee in coffees:
            print(f"  Coffee: {coffee.name:<12} {coffee.price}  {coffee.id}")
        print("-" * 60)
        for user in users:
            print(f"  {user.role.value:<9} {user.id}")
            print(f"    Bearer {_token_for(user)}")
        print("=" * 60)

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_orders_data())
