import asyncio
import logging
import os
import uuid
from dataclasses import dataclass

from core.errors import AssetNotFound, ValidationError
from core.logging_setup import log_step

logger = logging.getLogger(__name__)

LOG_STEP = "ASSETS"

URL_PREFIX = "/uploads/"

ALLOWED_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}

EXTENSION_TYPES = {
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}


@dataclass
class StoredAsset:
    reference: str
    data: bytes
    mime_type: str


def mime_type_for(filename: str) -> str:
    """PNG, GIF and WebP by extension; anything else is treated as JPEG."""
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return EXTENSION_TYPES.get(ext, "image/jpeg")


class LocalAssetStore:
    """Poster images on local disk, addressed as /uploads/<file>."""

    def __init__(self, directory: str):
        self.directory = os.path.abspath(directory)

    def _resolve(self, reference: str) -> str:
        name = reference[len(URL_PREFIX):] if reference.startswith(URL_PREFIX) else reference
        path = os.path.abspath(os.path.join(self.directory, name))
        if os.path.dirname(path) != self.directory:
            raise AssetNotFound()
        return path

    async def save(self, data: bytes, content_type: str) -> str:
        """The stored extension always follows the declared image type."""
        if content_type not in ALLOWED_TYPES:
            raise ValidationError("Invalid file type. Please upload an image.", field="file")
        if not data:
            raise ValidationError("No file provided", field="file")

        stored_name = f"{uuid.uuid4()}.{ALLOWED_TYPES[content_type]}"
        path = os.path.join(self.directory, stored_name)

        def _write():
            os.makedirs(self.directory, exist_ok=True)
            with open(path, "wb") as f:
                f.write(data)

        with log_step(LOG_STEP):
            await asyncio.to_thread(_write)
            logger.info(f"Stored upload {stored_name} ({len(data)} bytes).")
        return f"{URL_PREFIX}{stored_name}"

    async def read(self, reference: str) -> StoredAsset:
        path = self._resolve(reference)

        def _read() -> bytes:
            with open(path, "rb") as f:
                return f.read()

        try:
            data = await asyncio.to_thread(_read)
        except (FileNotFoundError, IsADirectoryError):
            with log_step(LOG_STEP):
                logger.warning(f"Upload not found: {os.path.basename(path)}")
            raise AssetNotFound()
        return StoredAsset(reference=reference, data=data, mime_type=mime_type_for(path))
