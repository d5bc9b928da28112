import logging

from core.authentication import get_current_owner_id
from core.errors import ValidationError
from core.logging_setup import log_owner, log_step
from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel, ConfigDict, Field
from services.assets import LocalAssetStore

logger = logging.getLogger(__name__)


class UploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(alias="imageUrl")


def create_upload_router(assets: LocalAssetStore) -> APIRouter:
    """
    Creates the REST API router for poster uploads.
    """
    router = APIRouter(
        prefix="/api/upload",
    )
    LOG_STEP = "API-UPLOAD"

    # NOTE: Requires User Auth
    @router.post("", response_model=UploadResponse, response_model_by_alias=True)
    async def upload_image(
        file: UploadFile | None = File(None),
        owner_id: str = Depends(get_current_owner_id),
    ):
        if file is None:
            raise ValidationError("No file provided", field="file")

        data = await file.read()
        with log_step(LOG_STEP), log_owner(owner_id):
            logger.debug(f"Received upload of type {file.content_type}.")
        reference = await assets.save(data, file.content_type or "")
        return UploadResponse(image_url=reference)

    return router
