"""
Database Initialization

Builds the storage backend selected by STORAGE_BACKEND. Called once at
startup; the resulting Storage is injected into request handlers.

For SQLite the engine enables WAL mode on each connection for better
concurrency between readers and the single writer.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from ..config import Settings, settings as default_settings
from .sql_storage import SqlStorage
from .storage import MemoryStorage, Storage

logger = logging.getLogger(__name__)


def create_engine_for_path(database_path: str, enable_wal: bool = True) -> AsyncEngine:
    """
    Create an async SQLite engine.

    Args:
        database_path: File path, or ":memory:" for a private in-memory database
        enable_wal: Set journal_mode=WAL on every new connection (file databases only)

    Returns:
        AsyncEngine using aiosqlite
    """
    if database_path == ":memory:":
        # One shared connection, otherwise every session sees an empty database
        return create_async_engine(
            "sqlite+aiosqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    Path(database_path).parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{database_path}",
        echo=False,
        connect_args={
            "timeout": 30,  # 30 second timeout for lock acquisition
            "check_same_thread": False
        },
        pool_pre_ping=True,
        pool_recycle=3600
    )

    if enable_wal:
        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    return engine


async def build_storage(config: Optional[Settings] = None) -> Storage:
    """
    Construct and initialize the configured storage backend.

    Args:
        config: Settings to read STORAGE_BACKEND and DATABASE_PATH from

    Returns:
        Ready-to-use Storage
    """
    config = config or default_settings

    if config.storage_backend == "memory":
        logger.warning("Using in-memory storage; data is lost on restart")
        storage: Storage = MemoryStorage()
    else:
        logger.info(f"Using SQLite storage at: {config.database_path}")
        storage = SqlStorage(create_engine_for_path(config.database_path))

    await storage.initialize()
    return storage


async def initialize_database(config: Optional[Settings] = None) -> None:
    """Create all tables for the configured SQLite database and exit."""
    config = config or default_settings
    storage = SqlStorage(create_engine_for_path(config.database_path))
    try:
        await storage.initialize()
        logger.info(f"Database initialized successfully at {config.database_path}")
    finally:
        await storage.close()


def main():
    """CLI entry point for initializing database."""
    logging.basicConfig(level=logging.INFO)
    asyncio.run(initialize_database())


if __name__ == "__main__":
    main()
