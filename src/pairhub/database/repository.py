"""Repositories — data access layer for users and session records."""

from collections.abc import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pairhub.models.session import ACTIVE_STATUSES, SessionMeta, SessionStatus
from pairhub.models.user import User


class UserRepository:
    """Encapsulates all database queries related to users."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_by_id(self, user_id: str) -> User | None:
        return await self._session.get(User, user_id)

    async def find_by_email(self, email: str) -> User | None:
        """Look up a user by e-mail (stored lower-cased)."""
        stmt = select(User).where(User.email == email.strip().lower())
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_many(self, user_ids: Iterable[str]) -> dict[str, User]:
        ids = set(user_ids)
        if not ids:
            return {}
        result = await self._session.execute(select(User).where(User.id.in_(ids)))
        return {user.id: user for user in result.scalars()}

    def add(self, user: User) -> None:
        self._session.add(user)


class SessionRepository:
    """Encapsulates all database queries related to session records."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, session_id: str) -> SessionMeta | None:
        return await self._session.get(SessionMeta, session_id)

    async def list_for_owner(self, owner_user_id: str) -> Sequence[SessionMeta]:
        stmt = (
            select(SessionMeta)
            .where(SessionMeta.owner_user_id == owner_user_id)
            .order_by(SessionMeta.created_at)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_by_status(self, *statuses: SessionStatus) -> Sequence[SessionMeta]:
        stmt = (
            select(SessionMeta)
            .where(SessionMeta.status.in_(statuses))
            .order_by(SessionMeta.created_at)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count_active(self) -> int:
        """Number of sessions currently pairing or connected."""
        stmt = select(func.count()).select_from(SessionMeta).where(
            SessionMeta.status.in_(ACTIVE_STATUSES)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one()

    def add(self, meta: SessionMeta) -> None:
        self._session.add(meta)
