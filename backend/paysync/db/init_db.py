"""
Database Initialization

Builds the async SQLAlchemy engine and session factory and creates the
PaySync tables (users, products, orders).

Engines are created explicitly and handed to the OrderStore; nothing here is a
module-level connection.
"""
import logging
from typing import Tuple

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker

from .models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    """
    Enable WAL mode and a busy timeout on every new SQLite connection.

    WAL lets the webhook handler, the request path and the sweeper read while
    one of them writes.
    """
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")  # 30 second timeout
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine_and_sessionmaker(
    database_url: str,
    echo: bool = False
) -> Tuple[AsyncEngine, async_sessionmaker]:
    """
    Create async engine and session factory.

    Args:
        database_url: SQLAlchemy async URL (sqlite+aiosqlite://..., postgresql+asyncpg://...)
        echo: Log SQL statements

    Returns:
        (engine, session factory)
    """
    is_sqlite = database_url.startswith("sqlite")
    engine_options = {
        "echo": echo,
        "pool_pre_ping": True,  # Verify connections before using
    }
    if is_sqlite:
        engine_options["connect_args"] = {
            "timeout": 30,  # 30 second timeout for lock acquisition
            "check_same_thread": False
        }
    else:
        engine_options["pool_recycle"] = 3600

    engine = create_async_engine(database_url, **engine_options)

    if is_sqlite:
        event.listen(engine.sync_engine, "connect", _enable_sqlite_pragmas)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    return engine, session_factory


async def initialize_database(engine: AsyncEngine) -> None:
    """
    Create all tables if they do not exist.

    Called during FastAPI startup.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database initialized at {engine.url.render_as_string(hide_password=True)}")


def main():
    """CLI entry point for initializing database."""
    import asyncio
    from ..config import settings

    async def _run():
        engine, _ = create_engine_and_sessionmaker(settings.database_url)
        try:
            await initialize_database(engine)
        finally:
            await engine.dispose()

    logging.basicConfig(level=settings.log_level)
    asyncio.run(_run())


if __name__ == "__main__":
    main()
