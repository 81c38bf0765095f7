"""
Database seeding script for local development.

Creates two customers with one address each and two riders, enough to
walk a parcel through intake, claim and delivery by hand.
Run this script after the database is set up.
"""

import asyncio

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.app.db.session import AsyncSessionLocal, Base, engine
from lastmile.app.models.rider import Rider
from lastmile.app.models.user import User, UserAddress

DEMO_USERS = [
    ("somchai", "0810000001", "12 Sukhumvit Soi 11, Bangkok", 13.7437, 100.5555),
    ("malee", "0810000002", "99 Silom Rd, Bangkok", 13.7246, 100.5298),
]

DEMO_RIDERS = [
    ("Rider One", "0910000001", "1กข 1234"),
    ("Rider Two", "0910000002", "2กข 5678"),
]


async def seed_demo_data(db: AsyncSession) -> bool:
    """
    Insert the demo users, addresses and riders.
    
    Returns False without touching anything if the first demo user
    already exists.
    """
    result = await db.execute(select(User).where(User.phone == DEMO_USERS[0][1]))
    if result.scalar_one_or_none() is not None:
        print("ℹ️  Demo data already present, skipping seeding")
        return False
    
    for username, phone, address_text, lat, lng in DEMO_USERS:
        user = User(username=username, phone=phone)
        db.add(user)
        await db.flush()
        db.add(UserAddress(user_id=user.user_id, address_text=address_text, latitude=lat, longitude=lng))
        print(f"✅ Created user {username} (phone: {phone})")
    
    for name, phone, plate in DEMO_RIDERS:
        db.add(Rider(name=name, phone=phone, license_plate=plate))
        print(f"✅ Created rider {name} (phone: {phone})")
    
    await db.commit()
    return True


async def main():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    async with AsyncSessionLocal() as db:
        print("🌱 Starting demo seeding...")
        if await seed_demo_data(db):
            print("\n🎉 Demo seeding completed successfully!")
    
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
