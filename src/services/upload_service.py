"""Upload pipeline: validate, deduplicate, store and announce a new photo"""

import hashlib
import logging
import posixpath
import tempfile
import uuid
from typing import BinaryIO, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from src.config import settings
from src.database import SessionLocal, session_scope
from src.events.base import EventPublisher, publish_quietly
from src.exceptions import CircuitOpen, DuplicateContent, StorageFailure, ValidationError
from src.models.photo import Photo, PhotoStatus
from src.models.photo_event import PhotoEventType
from src.monitoring.metrics import metrics_collector
from src.schemas.events import photo_uploaded
from src.services.photo_event_service import PhotoEventService
from src.services.photo_repository import PhotoRepository
from src.storage.base import StorageProvider

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
# Payloads above this spill from memory to a temporary file
SPOOL_MEMORY_LIMIT = 8 * 1024 * 1024

SOURCE = "upload"


def generate_storage_key(user_id: str, photo_id: UUID, filename: str) -> str:
    """photos/{user_id}/{photo_id}/{uuid4}{ext}"""
    _, ext = posixpath.splitext(filename or "")
    return f"photos/{user_id}/{photo_id}/{uuid.uuid4()}{ext.lower()}"


class UploadPipeline:
    """
    Accepts a client upload and drives the photo from PENDING to UPLOADED.

    A storage outage does not raise: the photo is stored as FAILED with the
    error recorded so the client can retry later.
    """

    def __init__(
        self,
        storage: StorageProvider,
        publisher: EventPublisher,
        session_factory: sessionmaker = SessionLocal,
        max_upload_size: Optional[int] = None,
    ):
        self.storage = storage
        self.publisher = publisher
        self.session_factory = session_factory
        self.max_upload_size = max_upload_size or settings.max_upload_size_bytes

    def upload(
        self,
        user_id: str,
        stream: BinaryIO,
        filename: str,
        content_type: str,
        size: Optional[int] = None,
        description: Optional[str] = None,
        tags: Optional[str] = None,
    ) -> Photo:
        """
        Upload one photo.

        Args:
            user_id: Owning user
            stream: Readable payload
            filename: Client-supplied filename
            content_type: MIME type, must be image/*
            size: Declared size in bytes, if known
            description: Optional description
            tags: Optional comma separated tags

        Returns:
            The photo in UPLOADED status, or in FAILED status when storage
            rejected the payload

        Raises:
            ValidationError: Empty payload, non-image content type or size over
                the limit. No record is created.
            DuplicateContent: A photo with the same checksum exists
        """
        correlation_id = str(uuid.uuid4())
        logger.info(
            f"Starting upload: filename={filename}, user_id={user_id}, correlation_id={correlation_id}"
        )

        self._validate_request(user_id, filename, content_type, size)

        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MEMORY_LIMIT) as spool:
            checksum, actual_size = self._spool_and_hash(stream, spool)
            if actual_size == 0:
                metrics_collector.record_upload("rejected")
                raise ValidationError("File is empty", [{"field": "file", "message": "File is empty"}])

            photo = self._create_record(
                user_id, filename, content_type, actual_size, checksum, description, tags, correlation_id
            )

            try:
                storage_url = self.storage.upload(photo.storage_key, spool, content_type, actual_size)
            except (StorageFailure, CircuitOpen) as e:
                return self._mark_upload_failed(photo.id, e, correlation_id)

        return self._mark_uploaded(photo.id, storage_url, correlation_id)

    def _validate_request(
        self, user_id: str, filename: str, content_type: str, size: Optional[int]
    ) -> None:
        errors = []
        if not user_id or not user_id.strip():
            errors.append({"field": "user_id", "message": "user_id is required"})
        if not filename:
            errors.append({"field": "file", "message": "Filename is required"})
        if not content_type or not content_type.lower().startswith("image/"):
            errors.append({"field": "content_type", "message": f"Unsupported content type: {content_type}"})
        if size is not None and size > self.max_upload_size:
            errors.append({"field": "file", "message": f"File exceeds {self.max_upload_size} bytes"})
        if size is not None and size == 0:
            errors.append({"field": "file", "message": "File is empty"})

        if errors:
            metrics_collector.record_upload("rejected")
            raise ValidationError(errors[0]["message"], errors)

    def _spool_and_hash(self, stream: BinaryIO, spool) -> tuple[str, int]:
        """Copy the payload into the spool once, hashing as it goes"""
        digest = hashlib.sha256()
        total = 0
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            total += len(chunk)
            if total > self.max_upload_size:
                metrics_collector.record_upload("rejected")
                raise ValidationError(
                    f"File exceeds {self.max_upload_size} bytes",
                    [{"field": "file", "message": f"File exceeds {self.max_upload_size} bytes"}],
                )
            digest.update(chunk)
            spool.write(chunk)
        spool.seek(0)
        return digest.hexdigest(), total

    def _create_record(
        self,
        user_id: str,
        filename: str,
        content_type: str,
        size: int,
        checksum: str,
        description: Optional[str],
        tags: Optional[str],
        correlation_id: str,
    ) -> Photo:
        """Persist the PENDING photo, then move it to UPLOADING with its storage key"""
        try:
            with session_scope(self.session_factory) as db:
                existing = PhotoRepository.get_by_checksum(db, checksum)
                if existing:
                    logger.warning(
                        f"Duplicate photo detected: checksum={checksum}, existing_id={existing.id}, "
                        f"correlation_id={correlation_id}"
                    )
                    metrics_collector.record_upload("duplicate")
                    raise DuplicateContent(existing.id)

                photo = Photo(
                    id=uuid.uuid4(),
                    user_id=user_id,
                    original_filename=filename,
                    content_type=content_type,
                    file_size=size,
                    checksum=checksum,
                    description=description,
                    tags=tags,
                    status=PhotoStatus.PENDING,
                    retry_count=0,
                    manual_retry_count=0,
                )
                PhotoRepository.save(db, photo)
                PhotoEventService.record(
                    db,
                    photo.id,
                    PhotoEventType.PHOTO_UPLOAD_STARTED,
                    details=f"Upload started for {filename}",
                    correlation_id=correlation_id,
                    user_id=user_id,
                    source=SOURCE,
                )

                photo.storage_key = generate_storage_key(user_id, photo.id, filename)
                photo.transition_to(PhotoStatus.UPLOADING)
                PhotoRepository.save(db, photo)
        except IntegrityError:
            # Lost a race with a concurrent upload of the same content
            with session_scope(self.session_factory) as db:
                existing = PhotoRepository.get_by_checksum(db, checksum)
            if existing is None:
                raise
            metrics_collector.record_upload("duplicate")
            raise DuplicateContent(existing.id)

        logger.info(f"Photo {photo.id} created, uploading to {photo.storage_key}, correlation_id={correlation_id}")
        return photo

    def _mark_uploaded(self, photo_id: UUID, storage_url: str, correlation_id: str) -> Photo:
        with session_scope(self.session_factory) as db:
            photo = PhotoRepository.get(db, photo_id)
            photo.storage_url = storage_url
            photo.transition_to(PhotoStatus.UPLOADED)
            PhotoRepository.save(db, photo)
            PhotoEventService.record(
                db,
                photo.id,
                PhotoEventType.PHOTO_UPLOADED,
                details=f"Stored at {photo.storage_key}",
                correlation_id=correlation_id,
                user_id=photo.user_id,
                source=SOURCE,
            )

        metrics_collector.record_upload("success")
        logger.info(f"Photo {photo.id} uploaded, correlation_id={correlation_id}")

        publish_quietly(self.publisher, photo_uploaded(photo, correlation_id), correlation_id)
        return photo

    def _mark_upload_failed(self, photo_id: UUID, error: Exception, correlation_id: str) -> Photo:
        logger.error(
            f"Upload of photo {photo_id} failed after retries: {error}, correlation_id={correlation_id}"
        )
        with session_scope(self.session_factory) as db:
            photo = PhotoRepository.get(db, photo_id)
            photo.storage_key = None
            # Nothing was stored, so the content must stay uploadable
            photo.checksum = None
            photo.last_error = str(error)
            photo.transition_to(PhotoStatus.FAILED)
            PhotoRepository.save(db, photo)
            PhotoEventService.record(
                db,
                photo.id,
                PhotoEventType.PHOTO_PROCESSING_FAILED,
                success=False,
                details="Upload to storage failed",
                error_message=str(error),
                correlation_id=correlation_id,
                user_id=photo.user_id,
                source=SOURCE,
            )

        metrics_collector.record_upload("failure")
        return photo
