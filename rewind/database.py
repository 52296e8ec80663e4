import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm.exc import StaleDataError

from rewind.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Convert postgresql:// to postgresql+asyncpg://
db_url = settings.database_url
if db_url.startswith("postgresql://"):
    db_url = db_url.replace("postgresql://", "postgresql+asyncpg://", 1)

engine = create_async_engine(
    db_url,
    echo=settings.environment == "development",
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    """Dependency for getting database session"""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


# Alias used by routers
get_session = get_db


async def run_in_transaction(
    session: AsyncSession,
    operation: Callable[..., Awaitable[T]],
    *args: Any,
    attempts: Optional[int] = None,
) -> T:
    """
    Run `operation(session, *args)` as one unit of work and commit it.

    The whole operation is replayed from scratch when a versioned row
    (the user row) was changed concurrently. Any other error rolls the
    transaction back and propagates.
    """
    attempts = attempts or settings.completion_max_attempts
    for attempt in range(1, attempts + 1):
        try:
            result = await operation(session, *args)
            await session.commit()
            return result
        except StaleDataError:
            await session.rollback()
            if attempt == attempts:
                logger.error(f"❌ [Tx] {operation.__name__} gave up after {attempts} attempts")
                raise
            logger.warning(f"⚠️ [Tx] {operation.__name__} hit a concurrent update, retrying ({attempt}/{attempts})")
        except Exception:
            await session.rollback()
            raise
