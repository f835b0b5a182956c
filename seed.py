"""Seed script — creates demo accounts for local testing."""

import asyncio

from pairhub.database.engine import build_engine, init_db
from pairhub.database.store import RecordStore
from pairhub.errors import ApiError
from pairhub.services.accounts import AccountService

SAMPLE_USERS = [
    ("alice@example.com", "alice-password", 100),
    ("bob@example.com", "bob-password", 20),
    ("broke@example.com", "broke-password", 0),
]


async def seed() -> None:
    """Register the sample users (skipping ones that already exist)."""
    engine = build_engine()
    await init_db(engine)
    accounts = AccountService(RecordStore(engine), signup_coins=0)

    created = 0
    for email, password, coins in SAMPLE_USERS:
        try:
            user = await accounts.register(email, password)
        except ApiError:
            print(f"• {email} already exists, skipping")
            continue
        if coins:
            await accounts.grant(user.id, coins)
        created += 1

    await engine.dispose()
    print(f"✅ Seeded {created} users into the database.")


if __name__ == "__main__":
    asyncio.run(seed())
