import logging

from core.authentication import get_current_owner_id
from core.errors import NotFound
from core.logging_setup import log_owner, log_step
from fastapi import APIRouter, Depends, Request, Response
from integrations import google
from integrations.google import GoogleCalendarClient, GoogleLoginResponse
from pydantic import BaseModel
from services.users import get_user
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


class UserResponse(BaseModel):
    id: str
    name: str | None
    email: str | None


def create_auth_router(
    google_client: GoogleCalendarClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> APIRouter:
    """
    Creates the REST API router for sign-in and the current user.
    """
    router = APIRouter(
        prefix="/api/auth",
    )
    LOG_STEP = "API-AUTH"

    @router.post("/google/login", response_model=GoogleLoginResponse)
    async def google_login(response: Response):
        """
        Returns the Google consent URL and sets the state cookie.
        """
        with log_step(LOG_STEP):
            logger.debug("Handling Google login request.")
            return await google.handle_login(response)

    @router.get("/google/callback")
    async def google_callback(request: Request):
        """
        Handles the OAuth redirect from Google.
        Stores the calendar credential and sets the auth cookie.
        """
        with log_step(LOG_STEP):
            logger.debug("Handling Google OAuth callback.")
            return await google.handle_callback(request, google_client, session_factory)

    @router.post("/logout")
    async def logout(response: Response, owner_id: str = Depends(get_current_owner_id)):
        with log_step(LOG_STEP), log_owner(owner_id):
            logger.info("Handling logout.")
            return await google.handle_logout(response)

    # NOTE: Requires User Auth
    @router.get("/me", response_model=UserResponse)
    async def get_me(owner_id: str = Depends(get_current_owner_id)):
        user = await get_user(session_factory, owner_id)
        if user is None:
            with log_step(LOG_STEP), log_owner(owner_id):
                logger.error("Authenticated user not found in DB.")
            raise NotFound("User not found")
        return UserResponse(id=user.id, name=user.name, email=user.email)

    return router
