"""Engine and session factory setup."""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.sql.dml import Insert

from reckon.db._models import Base

type SessionFactory = async_sessionmaker[AsyncSession]


async def create_database(
    url: str = "sqlite+aiosqlite:///./reckon.db",
) -> tuple[SessionFactory, AsyncEngine]:
    """Create tables if missing and return (session_factory, engine)."""
    engine = create_async_engine(url, echo=False)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _sqlite_pragmas(dbapi_connection, _record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=5000")
            cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False), engine


def upsert(session: AsyncSession, model: type[Base]) -> Insert:
    """
    Dialect-specific INSERT supporting ON CONFLICT.

    Both SQLite and PostgreSQL expose `on_conflict_do_nothing` and
    `on_conflict_do_update` with the same signature.
    """
    match session.bind.dialect.name:
        case "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        case "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        case other:
            raise NotImplementedError(f"upsert is not supported on {other}")
    return insert(model)
