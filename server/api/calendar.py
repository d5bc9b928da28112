import logging

from core.authentication import get_current_owner_id
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from services.calendar_sync import CalendarSyncService

logger = logging.getLogger(__name__)


class CalendarSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(alias="eventId", min_length=1)


class CalendarSyncResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    google_event_id: str = Field(alias="googleEventId")
    html_link: str = Field(alias="htmlLink")


def create_calendar_router(calendar_sync: CalendarSyncService) -> APIRouter:
    """
    Creates the REST API router for pushing events to Google Calendar.
    """
    router = APIRouter(
        prefix="/api/calendar",
    )

    # NOTE: Requires User Auth
    @router.post("", response_model=CalendarSyncResponse, response_model_by_alias=True)
    async def sync_event(
        request: CalendarSyncRequest, owner_id: str = Depends(get_current_owner_id)
    ):
        """
        Creates the event in the caller's primary calendar, refreshing the
        stored Google token first when needed.
        """
        result = await calendar_sync.sync(owner_id, request.event_id)
        return CalendarSyncResponse(
            google_event_id=result.google_event_id, html_link=result.html_link
        )

    return router
