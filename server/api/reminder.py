import logging

from core.authentication import get_current_owner_id
from core.errors import Unauthorized, ValidationError
from core.logging_setup import log_owner, log_step
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from services.email import EmailService
from services.users import get_user
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class ReminderRequest(BaseModel):
    message: str | None = None


def create_reminder_router(
    email: EmailService, session_factory: async_sessionmaker[AsyncSession]
) -> APIRouter:
    """
    Creates the REST API router for emailing a reminder to yourself.
    """
    router = APIRouter(
        prefix="/api/reminder",
    )
    LOG_STEP = "API-REMINDER"

    # NOTE: Requires User Auth
    @router.post("")
    async def send_reminder(
        request: ReminderRequest, owner_id: str = Depends(get_current_owner_id)
    ):
        if not request.message or not request.message.strip():
            raise ValidationError("Message is required", field="message")

        user = await get_user(session_factory, owner_id)
        if user is None or not user.email:
            raise Unauthorized("Not authenticated")

        with log_step(LOG_STEP), log_owner(owner_id):
            email.dispatch_reminder(owner_id, user.email, request.message)
            logger.info("Reminder email queued.")
        return {"success": True}

    return router
