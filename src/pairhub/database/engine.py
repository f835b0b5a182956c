"""Database engine construction and schema bootstrap."""

from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from pairhub.config import settings
from pairhub.models.base import Base

# Imported for their side effect of registering tables on Base.metadata.
from pairhub.models import session as _session_model  # noqa: F401
from pairhub.models import user as _user_model  # noqa: F401


def build_engine(database_url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    return create_async_engine(
        database_url or settings.database_url,
        echo=settings.debug if echo is None else echo,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables that don't yet exist (and a SQLite file's folder)."""
    url = engine.url
    if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
