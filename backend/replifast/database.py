"""
Database configuration and session management.
Uses PostgreSQL via asyncpg with SQLAlchemy 2 async engine.
"""

import logging
import ssl
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy import text
from replifast.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def _get_connect_args(settings) -> dict:
    """SSL when configured (or asked for in the URL), verified unless DATABASE_SSL_VERIFY is off."""
    args = {"timeout": 30}  # Fail fast if DB unreachable
    if settings.database_ssl or "sslmode=require" in settings.database_url:
        ctx = ssl.create_default_context()
        if not settings.database_ssl_verify:
            logger.warning("Postgres TLS certificate verification is disabled (DATABASE_SSL_VERIFY=false)")
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        args["ssl"] = ctx
    return args


engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_size=5,
    max_overflow=10,
    pool_pre_ping=True,
    connect_args=_get_connect_args(settings),
)

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


@asynccontextmanager
async def session_scope():
    """
    Standalone unit of work for background jobs (cron, CLI).
    Commits on clean exit, rolls back on error.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """
    Create all tables defined in models.
    create_all only creates tables that don't exist yet; schema changes go through Alembic.
    """
    # Import models to ensure they are registered with Base.metadata
    import replifast.models  # noqa: F401

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
