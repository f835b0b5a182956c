"""Record store — the single owner of every write to the database.

All read-modify-write sequences (admission debits, status transitions,
metering charges) run inside :meth:`RecordStore.transaction`, which holds
one process-wide lock for the whole unit of work. Reads go through
:meth:`RecordStore.read` and never wait for the lock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class Transaction:
    """One serialized unit of work.

    In-memory side effects performed inside the unit (e.g. live-map
    updates) register an undo callback with :meth:`on_rollback` so they are
    reverted if the commit fails.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self._undo: list[Callable[[], None]] = []

    def on_rollback(self, callback: Callable[[], None]) -> None:
        self._undo.append(callback)

    def _revert(self) -> None:
        for callback in reversed(self._undo):
            try:
                callback()
            except Exception:
                logger.exception("Rollback callback failed")
        self._undo.clear()


class RecordStore:
    """Owns the engine, the session factory and the writer lock."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._factory = async_sessionmaker(engine, expire_on_commit=False)
        self._write_lock = asyncio.Lock()

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """Yield a :class:`Transaction`, committing on exit and rolling back on error."""
        async with self._write_lock:
            async with self._factory() as session:
                tx = Transaction(session)
                try:
                    yield tx
                    await session.commit()
                except BaseException:
                    await session.rollback()
                    tx._revert()
                    raise

    @asynccontextmanager
    async def read(self) -> AsyncIterator[AsyncSession]:
        """Yield a session for lock-free reads."""
        async with self._factory() as session:
            yield session

    async def dispose(self) -> None:
        await self._engine.dispose()
