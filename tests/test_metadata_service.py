"""Unit tests for EXIF metadata extraction"""

import json
import uuid

import pytest
from PIL import Image
from PIL.TiffImagePlugin import IFDRational
from unittest.mock import Mock

from src.exceptions import CircuitOpen, ProcessingStageFailure
from src.services.metadata_service import MetadataService, _json_safe
from src.storage.base import StorageProvider

MAKE = 0x010F
MODEL = 0x0110


@pytest.fixture
def jpeg_with_exif(image_factory):
    """JPEG carrying camera make and model"""
    exif = Image.Exif()
    exif[MAKE] = "Acme"
    exif[MODEL] = "RoofCam 2"
    return image_factory(size=(800, 600), exif=exif)


class TestExtractFromBytes:
    """Metadata extraction"""

    def test_jpeg_with_exif(self, jpeg_with_exif):
        """Test format, dimensions and the Image directory"""
        metadata = MetadataService.extract_from_bytes(jpeg_with_exif)

        assert metadata["format"] == "JPEG"
        assert (metadata["width"], metadata["height"]) == (800, 600)
        assert metadata["Image"]["Make"] == "Acme"
        assert metadata["Image"]["Model"] == "RoofCam 2"

    def test_result_is_json_serializable(self, jpeg_with_exif):
        """Test the result can be stored as JSON"""
        json.dumps(MetadataService.extract_from_bytes(jpeg_with_exif))

    def test_png_without_exif(self, image_factory):
        """Test images without EXIF only report basics"""
        metadata = MetadataService.extract_from_bytes(image_factory(size=(1024, 768), image_format="PNG"))

        assert metadata["format"] == "PNG"
        assert metadata["width"] == 1024
        assert "Image" not in metadata
        assert "GPS" not in metadata

    def test_invalid_bytes(self):
        """Test undecodable bytes raise"""
        with pytest.raises(OSError):
            MetadataService.extract_from_bytes(b"not an image")


class TestExtract:
    """Download and extract"""

    def test_extract_from_storage(self, storage, uploaded_photo):
        """Test extraction reads the stored original"""
        metadata = MetadataService(storage).extract(uploaded_photo.id, uploaded_photo.storage_key)

        assert metadata["format"] == "JPEG"
        assert metadata["width"] == 640

    def test_corrupt_original(self):
        """Test decode errors fail the metadata stage"""
        storage = Mock(spec=StorageProvider)
        storage.download_bytes.return_value = b"not an image"
        photo_id = uuid.uuid4()

        with pytest.raises(ProcessingStageFailure) as exc_info:
            MetadataService(storage).extract(photo_id, "k.jpg")

        assert exc_info.value.stage == "metadata"
        assert exc_info.value.photo_id == photo_id

    def test_open_breaker(self):
        """Test an open storage breaker fails the metadata stage"""
        storage = Mock(spec=StorageProvider)
        storage.download_bytes.side_effect = CircuitOpen("storage-s3")

        with pytest.raises(ProcessingStageFailure):
            MetadataService(storage).extract(uuid.uuid4(), "k.jpg")


class TestGPSConversion:
    """GPS coordinate conversion"""

    def test_convert_to_degrees(self):
        """Test degrees/minutes/seconds conversion"""
        assert MetadataService._convert_to_degrees((40.0, 30.0, 0.0)) == pytest.approx(40.5)

    def test_convert_invalid(self):
        """Test malformed values"""
        assert MetadataService._convert_to_degrees((40.0, 30.0)) is None

    def test_coordinates_with_hemisphere(self):
        """Test southern and western references negate the values"""
        coordinates = MetadataService._get_gps_coordinates(
            {
                "GPSLatitude": (33.0, 52.0, 12.0),
                "GPSLatitudeRef": "S",
                "GPSLongitude": (151.0, 12.0, 36.0),
                "GPSLongitudeRef": "W",
            }
        )

        assert coordinates["latitude"] == pytest.approx(-33.87)
        assert coordinates["longitude"] == pytest.approx(-151.21)

    def test_missing_reference(self):
        """Test incomplete GPS data yields no coordinates"""
        assert MetadataService._get_gps_coordinates({"GPSLatitude": (1.0, 0.0, 0.0)}) is None

    def test_zero_denominator_rational(self):
        """Test an undefined rational component yields no degrees"""
        value = (IFDRational(10, 1), IFDRational(0, 0), IFDRational(0, 1))

        assert MetadataService._convert_to_degrees(value) is None

    def test_undefined_coordinates_are_dropped(self):
        """Test GPS data with undefined rationals stays JSON serializable"""
        gps_info = {
            "GPSLatitude": (IFDRational(10, 1), IFDRational(0, 0), IFDRational(0, 1)),
            "GPSLatitudeRef": "N",
            "GPSLongitude": (IFDRational(20, 1), IFDRational(30, 1), IFDRational(0, 1)),
            "GPSLongitudeRef": "E",
        }

        assert MetadataService._get_gps_coordinates(gps_info) is None
        json.dumps(_json_safe(gps_info), allow_nan=False)

    def test_non_finite_degrees(self):
        """Test infinite components are rejected"""
        assert MetadataService._convert_to_degrees((float("inf"), 0.0, 0.0)) is None


class TestJsonSafe:
    """EXIF value normalization"""

    def test_rational(self):
        """Test rationals become floats"""
        assert _json_safe(IFDRational(1, 4)) == 0.25

    def test_zero_denominator(self):
        """Test undefined rationals become None"""
        assert _json_safe(IFDRational(1, 0)) is None

    def test_bytes_and_nesting(self):
        """Test bytes decode and containers recurse"""
        assert _json_safe({1: (b"abc\x00", 2)}) == {"1": ["abc", 2]}
