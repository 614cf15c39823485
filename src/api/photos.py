"""Photo API routes"""

import logging
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile, status

from src.config import settings
from src.models.photo import PhotoStatus
from src.schemas.photo import (
    DownloadUrlResponse,
    PhotoEventPage,
    PhotoEventResponse,
    PhotoListResponse,
    PhotoResponse,
    PhotoStatsResponse,
)
from src.services.orchestrator import ProcessingOrchestrator
from src.services.photo_service import PhotoService
from src.services.upload_service import UploadPipeline
from src.api.dependencies import get_orchestrator, get_photo_service, get_upload_pipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/photos", tags=["photos"])


@router.post("/upload", response_model=PhotoResponse, status_code=status.HTTP_202_ACCEPTED)
def upload_photo(
    file: UploadFile = File(..., description="Image file"),
    user_id: str = Form(..., description="Owning user ID"),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None, description="Comma separated tags"),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> PhotoResponse:
    """
    Upload a photo and start background processing.

    This endpoint:
    1. Validates content type and size
    2. Rejects content that was already uploaded (409)
    3. Stores the original through the resilient storage layer
    4. Submits the processing saga when the photo reached UPLOADED

    A storage outage still answers 202, with the photo in FAILED status.
    """
    photo = pipeline.upload(
        user_id=user_id,
        stream=file.file,
        filename=file.filename or "upload",
        content_type=file.content_type or "",
        size=file.size,
        description=description,
        tags=tags,
    )

    if photo.current_status == PhotoStatus.UPLOADED:
        orchestrator.submit(photo.id)
    else:
        logger.warning(f"Photo {photo.id} stored as {photo.current_status.value}, processing not started")

    return PhotoResponse.model_validate(photo)


@router.get("/stats", response_model=PhotoStatsResponse)
def photo_stats(photo_service: PhotoService = Depends(get_photo_service)) -> PhotoStatsResponse:
    """Number of photos per status"""
    stats = photo_service.get_stats()
    total = stats.pop("total")
    return PhotoStatsResponse(counts=stats, total=total)


@router.get("", response_model=PhotoListResponse)
def list_photos(
    user_id: Optional[str] = Query(None, description="Filter by owner"),
    photo_status: Optional[PhotoStatus] = Query(None, alias="status", description="Filter by status"),
    photo_service: PhotoService = Depends(get_photo_service),
) -> PhotoListResponse:
    """List photos by owner and/or status; at least one filter is required"""
    photos = photo_service.list_photos(user_id=user_id, status=photo_status)
    return PhotoListResponse(
        photos=[PhotoResponse.model_validate(photo) for photo in photos],
        total=len(photos),
    )


@router.get("/{photo_id}", response_model=PhotoResponse)
def get_photo(photo_id: UUID, photo_service: PhotoService = Depends(get_photo_service)) -> PhotoResponse:
    return PhotoResponse.model_validate(photo_service.get_photo(photo_id))


@router.delete("/{photo_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_photo(
    photo_id: UUID,
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Delete a photo, its stored files and any pending retry"""
    orchestrator.delete_photo(photo_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{photo_id}/events", response_model=list[PhotoEventResponse])
def get_photo_events(
    photo_id: UUID,
    photo_service: PhotoService = Depends(get_photo_service),
) -> list[PhotoEventResponse]:
    """Full audit trail, oldest first"""
    photo_service.get_photo(photo_id)
    return [PhotoEventResponse.model_validate(event) for event in photo_service.get_events(photo_id)]


@router.get("/{photo_id}/events/paginated", response_model=PhotoEventPage)
def get_photo_events_paginated(
    photo_id: UUID,
    page: int = Query(0, ge=0),
    size: int = Query(20, ge=1, le=100),
    photo_service: PhotoService = Depends(get_photo_service),
) -> PhotoEventPage:
    """Audit trail page, newest first"""
    events, total = photo_service.get_events_paginated(photo_id, page, size)
    return PhotoEventPage(
        events=[PhotoEventResponse.model_validate(event) for event in events],
        page=page,
        size=size,
        total=total,
    )


@router.post("/{photo_id}/retry", response_model=PhotoResponse, status_code=status.HTTP_202_ACCEPTED)
def retry_photo(
    photo_id: UUID,
    orchestrator: ProcessingOrchestrator = Depends(get_orchestrator),
) -> PhotoResponse:
    """
    Manually retry processing of a FAILED photo.

    Raises:
        404: Photo not found
        409: Photo not FAILED, manual retry limit reached, or original missing
        503: Storage unavailable while checking the original
    """
    return PhotoResponse.model_validate(orchestrator.retry_processing(photo_id))


@router.get("/{photo_id}/download-url", response_model=DownloadUrlResponse)
def get_download_url(
    photo_id: UUID,
    expires_in: Optional[int] = Query(None, ge=1, le=7 * 24 * 3600, description="URL lifetime in seconds"),
    photo_service: PhotoService = Depends(get_photo_service),
) -> DownloadUrlResponse:
    ttl = expires_in or settings.presigned_url_expiration_seconds
    return DownloadUrlResponse(
        photo_id=photo_id,
        url=photo_service.presigned_url(photo_id, ttl),
        expires_in_seconds=ttl,
    )
