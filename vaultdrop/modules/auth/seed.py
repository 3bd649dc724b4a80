"""
Create demo participants and print bearer tokens for them.

    python -m vaultdrop.modules.auth.seed seller@example.com buyer@example.com
"""
import asyncio
import sys

from sqlalchemy.future import select

from vaultdrop.core.db import SessionLocal
from vaultdrop.core.security import create_access_token
from vaultdrop.modules.auth.models import User

async def seed_users(emails):
    async with SessionLocal() as session:
        for email in emails:
            result = await session.execute(select(User).where(User.email == email))
            user = result.scalars().first()

            if user:
                print(f"User {email} already exists.")
            else:
                print(f"Creating user {email}...")
                user = User(email=email, display_name=email.split("@")[0], is_active=True)
                session.add(user)
                await session.commit()

            print(f"  id:    {user.id}")
            print(f"  token: {create_access_token(user.id)}")

if __name__ == "__main__":
    emails = sys.argv[1:] or ["seller@example.com", "buyer@example.com"]
    asyncio.run(seed_users(emails))
