import logging

from core.errors import PersistenceError
from core.logging_setup import log_owner, log_step
from models.users import User
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


async def get_user(
    session_factory: async_sessionmaker[AsyncSession], user_id: str
) -> User | None:
    try:
        async with session_factory() as session:
            return await session.get(User, user_id)
    except SQLAlchemyError as e:
        with log_step("USERS"), log_owner(user_id):
            logger.error(f"Failed to load user: {e}", exc_info=True)
        raise PersistenceError("Failed to load user")
