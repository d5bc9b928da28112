import logging

from core.authentication import get_current_owner_id
from core.logging_setup import log_owner, log_step
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from services.assets import LocalAssetStore
from services.extraction import ExtractedEventData, ExtractionService

logger = logging.getLogger(__name__)


class ExtractImageRequest(BaseModel):
    image_url: str = Field(alias="imageUrl", min_length=1)


class ExtractUrlRequest(BaseModel):
    url: str


class ExtractResponse(BaseModel):
    success: bool = True
    data: ExtractedEventData


def create_extract_router(
    extraction: ExtractionService, assets: LocalAssetStore
) -> APIRouter:
    """
    Creates the REST API router for poster and page extraction.
    Nothing is persisted here; the draft goes back to the user for review.
    """
    router = APIRouter(
        prefix="/api",
    )
    LOG_STEP = "API-EXTRACT"

    # NOTE: Requires User Auth
    @router.post("/extract", response_model=ExtractResponse, response_model_by_alias=True)
    async def extract_from_image(
        request: ExtractImageRequest, owner_id: str = Depends(get_current_owner_id)
    ):
        with log_step(LOG_STEP), log_owner(owner_id):
            asset = await assets.read(request.image_url)
            logger.debug(f"Extracting from upload {request.image_url}")
        data = await extraction.extract_from_image(asset.data, asset.mime_type)
        return ExtractResponse(data=data)

    @router.post("/extract-url", response_model=ExtractResponse, response_model_by_alias=True)
    async def extract_from_url(
        request: ExtractUrlRequest, owner_id: str = Depends(get_current_owner_id)
    ):
        with log_step(LOG_STEP), log_owner(owner_id):
            logger.debug("Extracting from web page.")
        data = await extraction.extract_from_url(request.url)
        return ExtractResponse(data=data)

    return router
