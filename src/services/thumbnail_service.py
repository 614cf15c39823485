"""Thumbnail generation for stored photos"""

import logging
import mimetypes
import posixpath
from dataclasses import dataclass
from io import BytesIO
from typing import Optional, Tuple
from uuid import UUID
from PIL import Image, ImageOps

from src.config import settings
from src.exceptions import CircuitOpen, ProcessingStageFailure, StorageFailure
from src.storage.base import StorageProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThumbnailResult:
    """Outcome of a thumbnail task"""

    thumbnail_key: str
    thumbnail_url: str
    width: int
    height: int


def thumbnail_key_for(storage_key: str) -> str:
    """
    Derive the thumbnail key from the original key.

    photos/u/p/abc.jpg -> photos/u/p/abc_thumb.jpg
    """
    directory, filename = posixpath.split(storage_key)
    stem, ext = posixpath.splitext(filename)
    return posixpath.join(directory, f"{stem}_thumb{ext}")


class ThumbnailService:
    """Downloads an original, shrinks it and stores the result beside it"""

    # Pillow can read these but not write them
    FALLBACK_FORMAT = "JPEG"

    def __init__(
        self,
        storage: StorageProvider,
        size: Optional[Tuple[int, int]] = None,
    ):
        self.storage = storage
        self.size = size or (settings.thumbnail_width, settings.thumbnail_height)

    def generate(self, photo_id: UUID, storage_key: str) -> ThumbnailResult:
        """
        Generate and upload a thumbnail.

        Args:
            photo_id: Photo being processed (for errors and logs)
            storage_key: Key of the original image

        Returns:
            ThumbnailResult with the thumbnail URL and the original dimensions

        Raises:
            ProcessingStageFailure: stage "thumbnail", on any download, decode
                or upload error
        """
        try:
            original = self.storage.download_bytes(storage_key)
            data, content_type, width, height = self.render(original)

            thumbnail_key = thumbnail_key_for(storage_key)
            url = self.storage.upload(thumbnail_key, data, content_type, len(data))
        except (StorageFailure, CircuitOpen, OSError, ValueError, Image.DecompressionBombError) as e:
            logger.error(f"Thumbnail generation failed for photo {photo_id}: {e}")
            raise ProcessingStageFailure(photo_id, "thumbnail", e)

        logger.info(f"Thumbnail generated for photo {photo_id}: {thumbnail_key} ({width}x{height} original)")
        return ThumbnailResult(thumbnail_key=thumbnail_key, thumbnail_url=url, width=width, height=height)

    def render(self, image_bytes: bytes) -> Tuple[bytes, str, int, int]:
        """
        Resize image bytes into a thumbnail.

        Returns:
            (thumbnail bytes, content type, original width, original height)
        """
        with Image.open(BytesIO(image_bytes)) as image:
            source_format = image.format
            image = ImageOps.exif_transpose(image)
            width, height = image.size

            image.thumbnail(self.size, Image.Resampling.LANCZOS)

            output_format = source_format if self._can_write(source_format) else self.FALLBACK_FORMAT
            if output_format == "JPEG" and image.mode not in ("RGB", "L"):
                image = image.convert("RGB")

            buffer = BytesIO()
            image.save(buffer, format=output_format)

        content_type = Image.MIME.get(output_format) or mimetypes.types_map.get(
            f".{output_format.lower()}", "application/octet-stream"
        )
        return buffer.getvalue(), content_type, width, height

    @staticmethod
    def _can_write(image_format: Optional[str]) -> bool:
        if not image_format:
            return False
        Image.init()
        return image_format.upper() in Image.SAVE
