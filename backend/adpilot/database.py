"""
Database configuration and session management.
Uses PostgreSQL via asyncpg with SQLAlchemy 2 async engine (aiosqlite for local sqlite URLs).
"""

import logging
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool
from sqlalchemy import text
from adpilot.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def _engine_kwargs() -> dict:
    """Pool settings for Postgres; sqlite needs a single shared connection."""
    if settings.is_sqlite:
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    return {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "connect_args": {"timeout": 30},  # Fail fast if DB unreachable
    }


engine = create_async_engine(settings.database_url, echo=False, **_engine_kwargs())

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """Dependency that provides a database session with auto-commit/rollback."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    """
    Create all tables defined in models.
    Uses create_all which is safe — it only creates tables that don't exist yet.
    Production schemas are managed by Alembic.
    """
    # Import models to ensure they are registered with Base.metadata
    import adpilot.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Database initialized with {len(Base.metadata.tables)} tables: "
                     f"{', '.join(Base.metadata.tables.keys())}")


async def check_db_connection() -> bool:
    """Test database connectivity."""
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
