"""Photo API schemas"""

from typing import Optional, Dict, Any
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator
from uuid import UUID

from src.models.photo import PhotoStatus


class PhotoResponse(BaseModel):
    """Response schema for photo details"""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(..., description="Photo ID")
    user_id: str = Field(..., description="User ID who uploaded the photo")
    original_filename: str = Field(..., description="Client-supplied file name")
    content_type: str = Field(..., description="MIME type")
    file_size: int = Field(..., description="File size in bytes")
    checksum: Optional[str] = Field(None, description="SHA-256 of the content, cleared when the upload failed")
    description: Optional[str] = Field(None, description="Description")
    tags: Optional[str] = Field(None, description="Comma separated tags")
    storage_key: Optional[str] = Field(None, description="Storage key of the original")
    storage_url: Optional[str] = Field(None, description="URL of the original")
    thumbnail_url: Optional[str] = Field(None, description="URL of the thumbnail")
    width: Optional[int] = Field(None, description="Image width in pixels")
    height: Optional[int] = Field(None, description="Image height in pixels")
    metadata: Optional[Dict[str, Any]] = Field(
        None, validation_alias="photo_metadata", description="Extracted EXIF metadata"
    )
    status: PhotoStatus = Field(..., description="Lifecycle status")
    retry_count: int = Field(0, description="Automatic processing attempts that failed")
    manual_retry_count: int = Field(0, description="Manual retries requested")
    last_error: Optional[str] = Field(None, description="Last processing error")
    uploaded_at: Optional[datetime] = Field(None, description="Upload timestamp")
    processed_at: Optional[datetime] = Field(None, description="Completion timestamp")
    created_at: datetime = Field(..., description="Creation timestamp")
    updated_at: datetime = Field(..., description="Last update timestamp")


class PhotoListResponse(BaseModel):
    """Response schema for list of photos"""

    photos: list[PhotoResponse] = Field(..., description="List of photos")
    total: int = Field(..., description="Number of photos returned")


class PhotoEventResponse(BaseModel):
    """One audit log entry"""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    photo_id: UUID
    event_type: str
    timestamp: datetime
    success: bool
    details: Optional[str] = None
    error_message: Optional[str] = None
    correlation_id: Optional[str] = None
    source: Optional[str] = None

    @field_validator("event_type", mode="before")
    @classmethod
    def enum_value(cls, v: Any) -> str:
        return getattr(v, "value", v)


class PhotoEventPage(BaseModel):
    """Paginated audit log, newest first"""

    events: list[PhotoEventResponse]
    page: int = Field(..., ge=0)
    size: int = Field(..., gt=0)
    total: int


class PhotoStatsResponse(BaseModel):
    """Photo counts per status"""

    counts: Dict[str, int] = Field(..., description="Number of photos per status")
    total: int = Field(..., description="Total number of photos")


class DownloadUrlResponse(BaseModel):
    """Time-limited download URL for the original"""

    photo_id: UUID
    url: str
    expires_in_seconds: int
