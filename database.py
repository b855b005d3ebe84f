"""
Database Configuration and Session Management
============================================

This module provides the database engines, session factories, and table creation
for the SafeCall Telegram Bot.
"""

import logging
from contextlib import asynccontextmanager
from sqlalchemy import create_engine, event, text, inspect
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from config import Config
from models import Base

logger = logging.getLogger(__name__)


def _to_async_url(url: str) -> str:
    """Map a sync database URL onto its asyncio driver"""
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        # asyncpg uses 'ssl' instead of 'sslmode'
        return url.replace("sslmode=", "ssl=")
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


IS_SQLITE = Config.DATABASE_URL.startswith("sqlite")

if IS_SQLITE:
    # SQLite serializes writers; a generous busy timeout lets concurrent
    # compare-and-set updates wait for each other instead of failing.
    engine = create_engine(Config.DATABASE_URL, connect_args={"timeout": 30})
    async_engine = create_async_engine(
        _to_async_url(Config.DATABASE_URL),
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(async_engine.sync_engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _sqlite_begin(conn):
        # Take the write lock up front so concurrent writers queue on the busy timeout
        conn.exec_driver_sql("BEGIN IMMEDIATE")
else:
    engine = create_engine(
        Config.DATABASE_URL,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,    # Validate connections before use
        pool_recycle=3600,     # Recycle connections every hour
        pool_timeout=30,
        connect_args={
            "connect_timeout": 10,
            "application_name": "safecall_bot",
        }
    )
    async_engine = create_async_engine(
        _to_async_url(Config.DATABASE_URL),
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=30,
        connect_args={
            "server_settings": {"application_name": "safecall_bot_async"},
            "timeout": 10,          # Connection timeout
            "command_timeout": 30,  # Bounded statement time
        }
    )

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    autoflush=False,
    expire_on_commit=False  # Objects stay readable after commit in handlers and jobs
)


@asynccontextmanager
async def async_managed_session():
    """Async context manager for database sessions - commits on success, rolls back on error"""
    session = AsyncSessionLocal()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.error(f"Database session error: {e}")
        await session.rollback()
        raise
    finally:
        await session.close()


def create_tables() -> bool:
    """Create all database tables if they don't exist"""
    try:
        logger.info("🏗️ Creating database tables (if they don't exist)...")
        logger.info(f"📊 Found {len(Base.metadata.tables)} table models to create")

        Base.metadata.create_all(bind=engine, checkfirst=True)

        existing_tables = inspect(engine).get_table_names()
        logger.info(f"✅ Database schema verified: {len(existing_tables)} tables available")
        logger.info(f"📋 Tables: {', '.join(sorted(existing_tables))}")
        return True
    except Exception as e:
        logger.error(f"❌ Failed to create database tables: {e}", exc_info=True)
        return False


async def create_tables_async():
    """Create all tables through the async engine (used by tests and local runs)"""
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_tables_async():
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


def test_connection() -> bool:
    """Test database connection"""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
            logger.info("✅ Database connection test successful")
            return True
    except Exception as e:
        logger.error(f"❌ Database connection test failed: {e}")
        return False
