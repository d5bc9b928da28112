import logging

from core.config import settings
from core.logging_setup import log_step
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

LOG_STEP = "DATABASE"


class Base(DeclarativeBase):
    pass


def _to_sqlalchemy_database_url(database_url: str) -> str:
    if database_url.startswith(("postgresql+asyncpg://", "sqlite+aiosqlite://")):
        return database_url
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


SQLALCHEMY_DATABASE_URL = _to_sqlalchemy_database_url(settings.DATABASE_URL)

engine: AsyncEngine = create_async_engine(
    SQLALCHEMY_DATABASE_URL,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_orm(bind: AsyncEngine = engine) -> None:
    """Creates the events, users and integrations tables when missing."""
    import models  # noqa: F401

    with log_step(LOG_STEP):
        try:
            async with bind.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            logger.error(f"Failed to initialize schema: {e}", exc_info=True)
            raise
        logger.info("Schema ready.")
