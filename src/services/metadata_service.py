"""EXIF metadata extraction for stored photos"""

import logging
import math
from io import BytesIO
from typing import Any, Dict, Optional
from uuid import UUID
from PIL import Image, TiffImagePlugin
from PIL.ExifTags import GPSTAGS, IFD, TAGS

from src.exceptions import CircuitOpen, ProcessingStageFailure, StorageFailure
from src.storage.base import StorageProvider

logger = logging.getLogger(__name__)


def _json_safe(value: Any) -> Any:
    """Convert Pillow EXIF values into JSON-serializable ones"""
    if isinstance(value, TiffImagePlugin.IFDRational):
        # Zero denominators come back as NaN, which JSONB rejects
        if value.denominator == 0:
            return None
        return float(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore").strip("\x00")
    if isinstance(value, (tuple, list)):
        return [_json_safe(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


class MetadataService:
    """Reads EXIF directories from an original image"""

    def __init__(self, storage: StorageProvider):
        self.storage = storage

    def extract(self, photo_id: UUID, storage_key: str) -> Dict[str, Any]:
        """
        Download the original and extract its metadata.

        Raises:
            ProcessingStageFailure: stage "metadata", on download or decode errors
        """
        try:
            image_bytes = self.storage.download_bytes(storage_key)
            metadata = self.extract_from_bytes(image_bytes)
        except (StorageFailure, CircuitOpen, OSError, ValueError, Image.DecompressionBombError) as e:
            logger.warning(f"Metadata extraction failed for photo {photo_id}: {e}")
            raise ProcessingStageFailure(photo_id, "metadata", e)

        logger.info(f"Extracted metadata for photo {photo_id}: {len(metadata)} fields")
        return metadata

    @staticmethod
    def extract_from_bytes(image_bytes: bytes) -> Dict[str, Any]:
        """
        Extract format, dimensions and EXIF grouped by directory.

        Args:
            image_bytes: Image file bytes

        Returns:
            Dictionary with "format", "mode", "width", "height" and, when
            present, "Image", "Exif", "GPS" and "gps_coordinates"
        """
        with Image.open(BytesIO(image_bytes)) as image:
            metadata: Dict[str, Any] = {
                "format": image.format,
                "mode": image.mode,
                "width": image.width,
                "height": image.height,
            }
            exif = image.getexif()

            if not exif:
                return metadata

            image_tags = {
                str(TAGS.get(tag_id, tag_id)): _json_safe(value)
                for tag_id, value in exif.items()
                if tag_id not in (IFD.Exif, IFD.GPSInfo)
            }
            if image_tags:
                metadata["Image"] = image_tags

            exif_tags = {
                str(TAGS.get(tag_id, tag_id)): _json_safe(value)
                for tag_id, value in exif.get_ifd(IFD.Exif).items()
            }
            if exif_tags:
                metadata["Exif"] = exif_tags

            gps_raw = exif.get_ifd(IFD.GPSInfo)
            if gps_raw:
                gps_info = {str(GPSTAGS.get(tag_id, tag_id)): value for tag_id, value in gps_raw.items()}
                metadata["GPS"] = _json_safe(gps_info)

                coordinates = MetadataService._get_gps_coordinates(gps_info)
                if coordinates:
                    metadata["gps_coordinates"] = coordinates

        return metadata

    @staticmethod
    def _convert_to_degrees(value: tuple) -> Optional[float]:
        try:
            d, m, s = value
            # IFDRational with a zero denominator converts to NaN instead of raising
            if any(getattr(part, "denominator", 1) == 0 for part in (d, m, s)):
                return None
            degrees = float(d) + (float(m) / 60.0) + (float(s) / 3600.0)
        except (ValueError, TypeError, ZeroDivisionError):
            return None
        return degrees if math.isfinite(degrees) else None

    @staticmethod
    def _get_gps_coordinates(gps_info: Dict[str, Any]) -> Optional[Dict[str, float]]:
        latitude = gps_info.get("GPSLatitude")
        latitude_ref = gps_info.get("GPSLatitudeRef")
        longitude = gps_info.get("GPSLongitude")
        longitude_ref = gps_info.get("GPSLongitudeRef")

        if not all([latitude, latitude_ref, longitude, longitude_ref]):
            return None

        lat = MetadataService._convert_to_degrees(latitude)
        lon = MetadataService._convert_to_degrees(longitude)
        if lat is None or lon is None:
            return None

        # Adjust for hemisphere
        if latitude_ref == "S":
            lat = -lat
        if longitude_ref == "W":
            lon = -lon

        return {"latitude": lat, "longitude": lon}
