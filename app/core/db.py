import asyncio
import logging
import re
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import get_settings
from app.models.base import Base

logger = logging.getLogger(__name__)
settings = get_settings()


def get_async_database_url(url: str) -> str:
    """Convert database URL to async-compatible format using psycopg driver."""
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)
    elif url.startswith("sqlite:///"):
        url = url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)

    if "channel_binding=" in url:
        url = re.sub(r'[&?]channel_binding=[^&]*', '', url)
        url = url.replace('?&', '?').rstrip('?')

    return url


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    url = get_async_database_url(url)
    if url.startswith("postgresql"):
        return create_async_engine(
            url,
            echo=echo,
            pool_pre_ping=True,  # Verify connections before using
            pool_recycle=3600,   # Recycle connections after 1 hour
            pool_timeout=10,
            max_overflow=10,
            connect_args={"connect_timeout": 10},
        )
    return create_async_engine(url, echo=echo)


engine: AsyncEngine = build_engine(settings.database_url, echo=settings.debug)
logger.info("db_engine_created", extra={"url": engine.url.render_as_string(hide_password=True)})

AsyncSessionFactory = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionFactory() as session:
        yield session


async def init_database(bind: AsyncEngine = engine) -> None:
    """Create all tables. In production use Alembic migrations instead."""
    import app.models  # noqa: F401 register mappers

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db_tables_initialized")


async def test_database_connection(bind: AsyncEngine = engine) -> bool:
    """Test database connection with timeout."""
    async def _test_connection():
        async with bind.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            result.fetchone()

    try:
        await asyncio.wait_for(_test_connection(), timeout=10.0)
        return True
    except asyncio.TimeoutError:
        logger.error("db_connection_timeout")
        return False
    except Exception as exc:
        logger.error("db_connection_failed", extra={"error": str(exc), "error_type": type(exc).__name__})
        return False
