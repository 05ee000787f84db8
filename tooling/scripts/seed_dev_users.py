"""Seed development users, a restaurant and the default reward catalogue."""

from __future__ import annotations

import asyncio
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from yumrun_api.core.settings import settings
from yumrun_api.models.restaurant import Restaurant
from yumrun_api.models.user import User, UserRoleEnum
from yumrun_api.services.loyalty import seed_default_rewards


class SeedUser(TypedDict):
    email: str
    name: str
    role: UserRoleEnum
    approved: bool


DEV_USERS: list[SeedUser] = [
    {
        "email": os.getenv("DEV_SHORTCUT_CUSTOMER_EMAIL", "customer@yumrun.dev").lower(),
        "name": "Customer QA",
        "role": UserRoleEnum.CUSTOMER,
        "approved": True,
    },
    {
        "email": os.getenv("DEV_SHORTCUT_RESTAURANT_EMAIL", "restaurant@yumrun.dev").lower(),
        "name": "Restaurant QA",
        "role": UserRoleEnum.RESTAURANT,
        "approved": True,
    },
    {
        "email": os.getenv("DEV_SHORTCUT_RIDER_EMAIL", "rider@yumrun.dev").lower(),
        "name": "Rider QA",
        "role": UserRoleEnum.DELIVERY_RIDER,
        "approved": True,
    },
    {
        "email": os.getenv("DEV_SHORTCUT_ADMIN_EMAIL", "admin@yumrun.dev").lower(),
        "name": "Admin QA",
        "role": UserRoleEnum.ADMIN,
        "approved": True,
    },
]


async def seed_users(session: AsyncSession) -> dict[UserRoleEnum, User]:
    seeded: dict[UserRoleEnum, User] = {}
    for user in DEV_USERS:
        with session.no_autoflush:
            existing = await session.execute(select(User).where(User.email == user["email"]))
        record = existing.scalar_one_or_none()

        if record:
            record.name = user["name"]
            record.role = user["role"].value
            record.approved = user["approved"]
        else:
            record = User(
                email=user["email"],
                name=user["name"],
                role=user["role"].value,
                approved=user["approved"],
            )
            session.add(record)
        seeded[user["role"]] = record
    await session.flush()

    owner = seeded[UserRoleEnum.RESTAURANT]
    restaurant = (
        await session.execute(select(Restaurant).where(Restaurant.owner_id == owner.id))
    ).scalar_one_or_none()
    if restaurant is None:
        session.add(Restaurant(name="YumRun Test Kitchen", owner_id=owner.id, email=owner.email))

    await session.commit()
    return seeded


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_users(session)
            await seed_default_rewards(session)
        print("Development users and rewards ready")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
