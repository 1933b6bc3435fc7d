import asyncio
import logging
from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rhyme_studio.config import get_settings
from rhyme_studio.models.base import Base

settings = get_settings()
logger = logging.getLogger(__name__)


def _engine_kwargs(database_url: str) -> dict[str, Any]:
    # SQLite (tests, local tooling) does not take pool sizing arguments
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": 5,
        "max_overflow": 0,  # Queue instead of exceeding the connection limit
        "pool_pre_ping": True,  # Check connection health before use
        "pool_recycle": 300,  # Recycle connections after 5 minutes
        "pool_timeout": 30,
    }


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    **_engine_kwargs(settings.database_url),
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db(attempts: int = 5, first_delay: float = 2.0) -> None:
    """Create tables, waiting for the database with exponential backoff."""
    delay = first_delay
    for attempt in range(1, attempts + 1):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            return
        except (OSError, OperationalError) as e:
            if attempt == attempts:
                logger.error(f"Database unreachable after {attempts} attempts")
                raise
            logger.warning(
                f"Database not ready (attempt {attempt}/{attempts}): {e}; retrying in {delay:.0f}s"
            )
            await asyncio.sleep(delay)
            delay *= 2


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
