import logging
from typing import List

from core.authentication import get_current_owner_id
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from services.bin import BinManager, BulkResult
from services.events import EventResponse

logger = logging.getLogger(__name__)


class BulkRequest(BaseModel):
    ids: List[str] = Field(min_length=1)


def create_bin_router(bin_manager: BinManager) -> APIRouter:
    """
    Creates the REST API router for the bin (soft-deleted events).
    """
    router = APIRouter(
        prefix="/api/bin",
    )

    # NOTE: Requires User Auth
    @router.get("", response_model=List[EventResponse])
    async def list_bin(owner_id: str = Depends(get_current_owner_id)):
        """Most recently deleted first."""
        return await bin_manager.list(owner_id)

    @router.delete("")
    async def empty_bin(owner_id: str = Depends(get_current_owner_id)):
        deleted = await bin_manager.purge_all(owner_id)
        return {"success": True, "deleted": deleted}

    @router.post("/restore", response_model=BulkResult)
    async def restore_many(
        request: BulkRequest, owner_id: str = Depends(get_current_owner_id)
    ):
        """
        Restores each id independently and reports per-id outcomes.
        """
        return await bin_manager.restore_many(owner_id, request.ids)

    @router.post("/purge", response_model=BulkResult)
    async def purge_many(
        request: BulkRequest, owner_id: str = Depends(get_current_owner_id)
    ):
        return await bin_manager.purge_many(owner_id, request.ids)

    @router.post("/{event_id}", response_model=EventResponse)
    async def restore_event(event_id: str, owner_id: str = Depends(get_current_owner_id)):
        return await bin_manager.restore(owner_id, event_id)

    @router.delete("/{event_id}")
    async def purge_event(event_id: str, owner_id: str = Depends(get_current_owner_id)):
        await bin_manager.purge_one(owner_id, event_id)
        return {"success": True}

    return router
