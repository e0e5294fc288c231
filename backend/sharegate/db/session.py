"""SQLite session and engine."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from sharegate.config import get_settings

Base = declarative_base()


def create_engine_for_path(db_path, busy_timeout: float = 15.0) -> AsyncEngine:
    """Create an aiosqlite engine with foreign keys enforced on every connection."""
    # SQLAlchemy async needs sqlite+aiosqlite and path as URL
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=False,
        connect_args={"timeout": busy_timeout},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
        # SQLite ignores ON DELETE CASCADE unless this is set per connection
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def session_scope(engine: AsyncEngine) -> Callable:
    """
    Return a context-manager factory yielding sessions on engine.
    The session commits on clean exit and rolls back on error.
    """
    factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )

    @asynccontextmanager
    async def _scope() -> AsyncGenerator[AsyncSession, None]:
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    return _scope


_settings = get_settings()
_engine = create_engine_for_path(_settings.db_path, _settings.db_busy_timeout_seconds)

# Yield an async session (context manager)
get_session = session_scope(_engine)


async def init_db(engine: AsyncEngine = _engine) -> None:
    """Create tables if they do not exist."""
    from sharegate.shares import db_models  # noqa: F401 - register with Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose pooled connections on shutdown."""
    await _engine.dispose()
