import logging
from datetime import date
from typing import List

from core.authentication import get_current_owner_id
from core.logging_setup import log_owner, log_step
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from services.event_filters import TimeFilter, filter_events, split_upcoming_past
from services.events import EventFields, EventRepository, EventResponse
from services.sweeper import ExpirationSweeper

logger = logging.getLogger(__name__)


class DashboardResponse(BaseModel):
    upcoming: List[EventResponse]
    past: List[EventResponse]


class CleanupResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    deleted: int
    event_ids: List[str] = Field(alias="eventIds")


def create_events_router(
    repository: EventRepository,
    sweeper: ExpirationSweeper,
    today=date.today,
) -> APIRouter:
    """
    Creates the REST API router for active events.
    """
    router = APIRouter(
        prefix="/api/events",
    )
    LOG_STEP = "API-EVENTS"

    async def _filtered(owner_id: str, q: str, mode: TimeFilter):
        sweeper.dispatch(owner_id)
        events = await repository.list_active(owner_id)
        return filter_events(events, query=q, mode=mode, today=today())

    # NOTE: Requires User Auth
    @router.get("", response_model=List[EventResponse])
    async def list_events(
        q: str = "",
        mode: TimeFilter = Query(TimeFilter.ALL, alias="filter"),
        owner_id: str = Depends(get_current_owner_id),
    ):
        """
        Lists the caller's active events, ordered by date.
        Expired events are swept in the background.
        """
        return await _filtered(owner_id, q, mode)

    @router.get("/dashboard", response_model=DashboardResponse)
    async def dashboard(
        q: str = "",
        mode: TimeFilter = Query(TimeFilter.ALL, alias="filter"),
        owner_id: str = Depends(get_current_owner_id),
    ):
        events = await _filtered(owner_id, q, mode)
        upcoming, past = split_upcoming_past(events, today=today())
        return DashboardResponse(
            upcoming=[EventResponse.model_validate(e) for e in upcoming],
            past=[EventResponse.model_validate(e) for e in past],
        )

    @router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
    async def create_event(
        fields: EventFields, owner_id: str = Depends(get_current_owner_id)
    ):
        return await repository.create(owner_id, fields)

    @router.post(
        "/cleanup",
        response_model=CleanupResponse,
        response_model_by_alias=True,
        dependencies=[Depends(get_current_owner_id)],
    )
    async def cleanup():
        """
        Runs the expiration sweep synchronously across every owner.
        """
        with log_step(LOG_STEP):
            result = await sweeper.sweep()
            logger.info(f"Manual cleanup removed {result.deleted} event(s).")
        return CleanupResponse(deleted=result.deleted, event_ids=result.event_ids)

    @router.get("/{event_id}", response_model=EventResponse)
    async def get_event(event_id: str, owner_id: str = Depends(get_current_owner_id)):
        return await repository.get(owner_id, event_id)

    @router.put("/{event_id}", response_model=EventResponse)
    async def update_event(
        event_id: str,
        fields: EventFields,
        owner_id: str = Depends(get_current_owner_id),
    ):
        """
        Replaces every editable field; omitted optional fields are cleared.
        """
        return await repository.update(owner_id, event_id, fields)

    @router.delete("/{event_id}")
    async def delete_event(event_id: str, owner_id: str = Depends(get_current_owner_id)):
        """Moves the event to the bin."""
        await repository.soft_delete(owner_id, event_id)
        with log_step(LOG_STEP), log_owner(owner_id, event_id):
            logger.debug("Event moved to bin via API.")
        return {"success": True}

    return router
