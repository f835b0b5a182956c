"""Account store — users, credentials and coin balances."""

from __future__ import annotations

import asyncio
import logging

from pairhub.config import settings
from pairhub.database.repository import UserRepository
from pairhub.database.store import RecordStore
from pairhub.errors import ApiError
from pairhub.models.user import User
from pairhub.security import MAX_PASSWORD_BYTES, hash_password, verify_password

logger = logging.getLogger(__name__)


class AccountService:
    """Registration, login and balance lookups.

    Balance *mutations* happen elsewhere (admission and metering) but
    always through :meth:`User.debit`, which clamps at zero.
    """

    def __init__(self, store: RecordStore, signup_coins: int | None = None) -> None:
        self._store = store
        self._signup_coins = settings.signup_coins if signup_coins is None else signup_coins

    async def register(self, email: str, password: str) -> User:
        email = (email or "").strip().lower()
        if not email or not password:
            raise ApiError("Email and password required", status_code=400)
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ApiError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes", status_code=400
            )

        # bcrypt is CPU bound; keep it off the event loop
        password_hash = await asyncio.to_thread(hash_password, password)

        async with self._store.transaction() as tx:
            users = UserRepository(tx.session)
            if await users.find_by_email(email):
                raise ApiError("Email already registered", status_code=400)
            user = User(email=email, password_hash=password_hash, coins=self._signup_coins)
            users.add(user)

        logger.info("Registered user %s with %d coins", user.id, user.coins)
        return user

    async def authenticate(self, email: str, password: str) -> User:
        async with self._store.read() as session:
            user = await UserRepository(session).find_by_email(email or "")

        if not user or not password:
            raise ApiError("Invalid credentials", status_code=400)
        if not await asyncio.to_thread(verify_password, password, user.password_hash):
            logger.info("Rejected login for %s", user.email)
            raise ApiError("Invalid credentials", status_code=400)
        return user

    async def get(self, user_id: str) -> User | None:
        async with self._store.read() as session:
            return await UserRepository(session).find_by_id(user_id)

    async def grant(self, user_id: str, coins: int) -> User:
        """Top up a user's balance (admin / seeding helper)."""
        if coins < 0:
            raise ValueError("coins must be non-negative")
        async with self._store.transaction() as tx:
            user = await UserRepository(tx.session).find_by_id(user_id)
            if not user:
                raise ApiError("User not found", status_code=404)
            user.coins += coins
        logger.info("Granted %d coins to %s (balance %d)", coins, user_id, user.coins)
        return user
