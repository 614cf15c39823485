"""
Photo processing saga.

One run moves a photo UPLOADED (or RETRYING) -> PROCESSING, derives the
thumbnail while a pool worker extracts metadata, then finishes as
COMPLETED, RETRYING (with a scheduled resumption) or FAILED. Every step
re-reads the photo and writes under optimistic versioning; no exception
escapes a run.
"""

import logging
import time
import uuid
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from src.config import settings
from src.database import SessionLocal, session_scope
from src.events.base import EventPublisher, publish_quietly
from src.exceptions import ConflictError, PhotoNotFound, StorageFailure, CircuitOpen
from src.models.photo import Photo, PhotoStatus
from src.models.photo_event import PhotoEventType
from src.monitoring.metrics import metrics_collector
from src.schemas.events import (
    photo_deleted,
    processing_completed,
    processing_failed,
    processing_started,
)
from src.services.metadata_service import MetadataService
from src.services.photo_event_service import PhotoEventService
from src.services.photo_repository import PhotoRepository
from src.services.thumbnail_service import ThumbnailResult, ThumbnailService, thumbnail_key_for
from src.storage.base import StorageProvider
from src.workers.pool import BoundedWorkerPool, RetryScheduler
from src.workers.retry_manager import backoff_delay

logger = logging.getLogger(__name__)

SOURCE = "orchestrator"

# Reload-and-reapply attempts after a version conflict
MAX_CONFLICT_RETRIES = 3

# mutation(db, photo) -> True to persist, False to abandon the step
Mutation = Callable[[Session, Photo], bool]


class ProcessingOrchestrator:
    """Runs and re-runs the processing saga for uploaded photos"""

    def __init__(
        self,
        storage: StorageProvider,
        publisher: EventPublisher,
        pool: BoundedWorkerPool,
        scheduler: RetryScheduler,
        session_factory: sessionmaker = SessionLocal,
        thumbnail_service: Optional[ThumbnailService] = None,
        metadata_service: Optional[MetadataService] = None,
        max_retries: Optional[int] = None,
        max_manual_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
    ):
        self.storage = storage
        self.publisher = publisher
        self.pool = pool
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.thumbnail_service = thumbnail_service or ThumbnailService(storage)
        self.metadata_service = metadata_service or MetadataService(storage)
        self.max_retries = max_retries if max_retries is not None else settings.max_processing_retries
        self.max_manual_retries = (
            max_manual_retries if max_manual_retries is not None else settings.max_manual_retries
        )
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.retry_base_delay_seconds
        )

    def submit(self, photo_id: UUID, correlation_id: Optional[str] = None):
        """Run the saga for a photo on the worker pool; returns its Future"""
        correlation_id = correlation_id or str(uuid.uuid4())
        logger.info(f"Submitting processing saga for photo {photo_id}, correlation_id={correlation_id}")
        return self.pool.submit(self.process_photo, photo_id, correlation_id)

    def process_photo(self, photo_id: UUID, correlation_id: Optional[str] = None) -> Optional[PhotoStatus]:
        """
        Execute one saga run.

        A missing photo, or one that is not UPLOADED or RETRYING (COMPLETED
        included), is left untouched and no events are emitted.

        Args:
            photo_id: Photo to process
            correlation_id: Shared by every event of this run

        Returns:
            Status the photo ended in, or None when the run was a no-op
        """
        correlation_id = correlation_id or str(uuid.uuid4())
        started_at = time.monotonic()

        try:
            photo = self._start(photo_id, correlation_id)
            if photo is None:
                metrics_collector.record_saga("skipped", time.monotonic() - started_at)
                return None

            # Metadata runs beside the thumbnail, which stays on this thread
            metadata_future = self.pool.submit(self._extract_metadata, photo.id, photo.storage_key)
            thumbnail_error = None
            try:
                thumbnail = self._generate_thumbnail(photo.id, photo.storage_key)
            except Exception as e:
                thumbnail, thumbnail_error = None, e
            metadata, metadata_error = self._join_metadata(metadata_future, photo.id, photo.storage_key)

            if thumbnail_error is not None:
                status = self._fail(photo_id, "completion", thumbnail_error, correlation_id, metadata_error)
            else:
                status = self._complete(photo_id, thumbnail, metadata, metadata_error, correlation_id)
        except Exception as e:
            logger.error(
                f"Saga for photo {photo_id} failed: {e}, correlation_id={correlation_id}", exc_info=True
            )
            status = self._fail(photo_id, "completion", e, correlation_id)

        outcome = status.value.lower() if status else "abandoned"
        metrics_collector.record_saga(outcome, time.monotonic() - started_at)
        return status

    def resume(self, photo_id: UUID, correlation_id: Optional[str] = None) -> Optional[PhotoStatus]:
        """
        Re-enter the saga after a retry backoff.

        Inert when the photo was deleted or is no longer RETRYING.
        """
        with session_scope(self.session_factory) as db:
            photo = PhotoRepository.get(db, photo_id)
            status = photo.current_status if photo else None

        if status != PhotoStatus.RETRYING:
            logger.info(
                f"Skipping retry for photo {photo_id}: status={status.value if status else 'deleted'}, "
                f"correlation_id={correlation_id}"
            )
            return None

        logger.info(f"Retrying photo {photo_id}, correlation_id={correlation_id}")
        return self.process_photo(photo_id, correlation_id)

    def delete_photo(self, photo_id: UUID) -> None:
        """
        Delete a photo, its stored objects and any pending retry.

        Storage errors are logged, not raised; the record is removed either way.

        Raises:
            PhotoNotFound: If the photo does not exist
        """
        correlation_id = str(uuid.uuid4())
        self.scheduler.cancel(photo_id)

        photo = None
        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            try:
                with session_scope(self.session_factory) as db:
                    photo = PhotoRepository.get(db, photo_id)
                    if photo is None:
                        raise PhotoNotFound(photo_id)
                    PhotoRepository.delete(db, photo)
                    PhotoEventService.record(
                        db,
                        photo_id,
                        PhotoEventType.PHOTO_DELETED,
                        details="Photo deleted",
                        correlation_id=correlation_id,
                        user_id=photo.user_id,
                        source=SOURCE,
                    )
                break
            except StaleDataError:
                logger.warning(f"Version conflict deleting photo {photo_id} (attempt {attempt}), reloading")
        else:
            raise ConflictError(f"Photo {photo_id} is being modified concurrently, try again")

        self._delete_stored_objects(photo, correlation_id)
        publish_quietly(self.publisher, photo_deleted(photo, correlation_id), correlation_id)
        logger.info(f"Photo {photo_id} deleted, correlation_id={correlation_id}")

    def retry_processing(self, photo_id: UUID) -> Photo:
        """
        Manually retry a FAILED photo.

        Resets the automatic retry budget, walks the photo back to UPLOADED
        and submits a new saga run.

        Raises:
            PhotoNotFound: If the photo does not exist
            ConflictError: If the photo is not FAILED, the manual retry limit
                is reached, or the original is not in storage
        """
        correlation_id = str(uuid.uuid4())

        with session_scope(self.session_factory) as db:
            photo = PhotoRepository.get(db, photo_id)
        if photo is None:
            raise PhotoNotFound(photo_id)
        self._check_manual_retry(photo)

        if not photo.storage_key or not self.storage.exists(photo.storage_key):
            raise ConflictError(f"Original file for photo {photo_id} is not in storage, please re-upload")

        def reset(db: Session, current: Photo) -> bool:
            self._check_manual_retry(current)
            current.reset_for_manual_retry()
            current.transition_to(PhotoStatus.UPLOADING)
            current.transition_to(PhotoStatus.UPLOADED)
            PhotoEventService.record(
                db,
                current.id,
                PhotoEventType.PHOTO_RETRY_SCHEDULED,
                details=f"Manual retry {current.manual_retry_count} of {self.max_manual_retries}",
                correlation_id=correlation_id,
                user_id=current.user_id,
                source=SOURCE,
            )
            return True

        updated = self._update_photo(photo_id, reset, correlation_id)
        if updated is None:
            raise PhotoNotFound(photo_id)

        logger.info(f"Manual retry triggered for photo {photo_id}, correlation_id={correlation_id}")
        self.submit(photo_id, correlation_id)
        return updated

    def _check_manual_retry(self, photo: Photo) -> None:
        if photo.current_status != PhotoStatus.FAILED:
            raise ConflictError(
                f"Photo {photo.id} is {photo.current_status.value}; only FAILED photos can be retried"
            )
        if (photo.manual_retry_count or 0) >= self.max_manual_retries:
            raise ConflictError(
                f"Photo {photo.id} reached the limit of {self.max_manual_retries} manual retries"
            )

    def _start(self, photo_id: UUID, correlation_id: str) -> Optional[Photo]:
        def begin(db: Session, photo: Photo) -> bool:
            status = photo.current_status
            if status not in (PhotoStatus.UPLOADED, PhotoStatus.RETRYING):
                logger.info(
                    f"Photo {photo_id} is {status.value}, nothing to process, "
                    f"correlation_id={correlation_id}"
                )
                return False
            photo.transition_to(PhotoStatus.PROCESSING)
            PhotoEventService.record(
                db,
                photo.id,
                PhotoEventType.PHOTO_PROCESSING_STARTED,
                details=f"Processing attempt {(photo.retry_count or 0) + 1}",
                correlation_id=correlation_id,
                user_id=photo.user_id,
                source=SOURCE,
            )
            return True

        photo = self._update_photo(photo_id, begin, correlation_id)
        if photo is None:
            return None

        logger.info(f"Processing started for photo {photo_id}, correlation_id={correlation_id}")
        publish_quietly(self.publisher, processing_started(photo, correlation_id), correlation_id)
        return photo

    def _generate_thumbnail(self, photo_id: UUID, storage_key: str) -> ThumbnailResult:
        return self.thumbnail_service.generate(photo_id, storage_key)

    def _extract_metadata(self, photo_id: UUID, storage_key: str) -> Tuple[Dict[str, Any], Optional[str]]:
        """Metadata failures resolve to an empty result plus the error text"""
        try:
            return self.metadata_service.extract(photo_id, storage_key), None
        except Exception as e:
            logger.warning(f"Metadata extraction failed for photo {photo_id} (non-critical): {e}")
            return {}, str(e)

    def _join_metadata(
        self, future: Future, photo_id: UUID, storage_key: str
    ) -> Tuple[Dict[str, Any], Optional[str]]:
        """
        Wait for the metadata branch without parking on the backlog.

        A branch that no worker has picked up yet is cancelled and run on
        the calling thread, so a saga holding a worker never waits for a
        task queued behind other sagas.
        """
        if future.cancel():
            logger.debug(f"Metadata for photo {photo_id} still queued, extracting on the saga thread")
            return self._extract_metadata(photo_id, storage_key)
        return future.result()

    def _complete(
        self,
        photo_id: UUID,
        thumbnail: ThumbnailResult,
        metadata: Dict[str, Any],
        metadata_error: Optional[str],
        correlation_id: str,
    ) -> Optional[PhotoStatus]:
        def finish(db: Session, photo: Photo) -> bool:
            if not photo.current_status.can_transition_to(PhotoStatus.COMPLETED):
                logger.warning(
                    f"Photo {photo_id} moved to {photo.current_status.value} during processing, "
                    f"not completing, correlation_id={correlation_id}"
                )
                return False

            photo.thumbnail_url = thumbnail.thumbnail_url
            photo.width = thumbnail.width
            photo.height = thumbnail.height
            photo.photo_metadata = metadata
            photo.last_error = None
            photo.transition_to(PhotoStatus.COMPLETED)

            self._record(db, photo, PhotoEventType.PHOTO_THUMBNAIL_GENERATED, correlation_id,
                         details=f"Thumbnail stored at {thumbnail.thumbnail_key}")
            self._record_metadata_outcome(db, photo, metadata, metadata_error, correlation_id)
            self._record(db, photo, PhotoEventType.PHOTO_PROCESSING_COMPLETED, correlation_id,
                         details="Processing completed")
            return True

        photo = self._update_photo(photo_id, finish, correlation_id)
        if photo is None:
            return None

        logger.info(f"Processing completed for photo {photo_id}, correlation_id={correlation_id}")
        publish_quietly(self.publisher, processing_completed(photo, correlation_id), correlation_id)
        return PhotoStatus.COMPLETED

    def _fail(
        self,
        photo_id: UUID,
        stage: str,
        error: BaseException,
        correlation_id: str,
        metadata_error: Optional[str] = None,
    ) -> Optional[PhotoStatus]:
        """Record a failed attempt and either schedule a retry or give up"""
        logger.error(
            f"Processing failed for photo {photo_id} at {stage}: {error}, correlation_id={correlation_id}"
        )
        decision: Dict[str, Any] = {}

        def record_failure(db: Session, photo: Photo) -> bool:
            if photo.current_status != PhotoStatus.PROCESSING:
                logger.warning(
                    f"Photo {photo_id} is {photo.current_status.value}, dropping failure of this run, "
                    f"correlation_id={correlation_id}"
                )
                return False

            photo.increment_retry_count()
            photo.last_error = str(error)
            will_retry = photo.should_retry(self.max_retries)
            photo.transition_to(PhotoStatus.RETRYING if will_retry else PhotoStatus.FAILED)

            if metadata_error is not None:
                self._record_metadata_outcome(db, photo, {}, metadata_error, correlation_id)
            self._record(
                db,
                photo,
                PhotoEventType.PHOTO_PROCESSING_FAILED,
                correlation_id,
                success=False,
                details=f"Processing failed at {stage} (attempt {photo.retry_count}, will_retry={will_retry})",
                error_message=str(error),
            )
            decision["will_retry"] = will_retry
            return True

        try:
            photo = self._update_photo(photo_id, record_failure, correlation_id)
        except Exception as e:
            logger.critical(
                f"Could not record failure for photo {photo_id}: {e}, correlation_id={correlation_id}",
                exc_info=True,
            )
            return None
        if photo is None:
            return None

        will_retry = decision["will_retry"]
        publish_quietly(
            self.publisher, processing_failed(photo, error, will_retry, correlation_id), correlation_id
        )

        if not will_retry:
            logger.error(
                f"Max retries ({self.max_retries}) exceeded for photo {photo_id}, "
                f"correlation_id={correlation_id}"
            )
            return PhotoStatus.FAILED

        delay = backoff_delay(photo.retry_count, self.retry_base_delay)
        try:
            with session_scope(self.session_factory) as db:
                self._record(db, photo, PhotoEventType.PHOTO_RETRY_SCHEDULED, correlation_id,
                             details=f"Retry {photo.retry_count} scheduled in {delay:.0f}s")
            self.scheduler.schedule(delay, self.resume, photo_id, correlation_id, key=photo_id)
        except Exception as e:
            logger.critical(
                f"Could not schedule retry for photo {photo_id}: {e}, correlation_id={correlation_id}",
                exc_info=True,
            )
        return PhotoStatus.RETRYING

    def _update_photo(self, photo_id: UUID, mutation: Mutation, correlation_id: str) -> Optional[Photo]:
        """
        Re-fetch the photo, apply mutation and commit.

        A version conflict reloads the photo and re-applies the mutation,
        which re-checks whether its transition is still legal.

        Returns:
            The persisted photo, or None if it is gone or the step was abandoned
        """
        for attempt in range(1, MAX_CONFLICT_RETRIES + 1):
            try:
                with session_scope(self.session_factory) as db:
                    photo = PhotoRepository.get(db, photo_id)
                    if photo is None:
                        logger.info(
                            f"Photo {photo_id} no longer exists, correlation_id={correlation_id}"
                        )
                        return None
                    if not mutation(db, photo):
                        return None
                    PhotoRepository.save(db, photo)
                return photo
            except StaleDataError:
                logger.warning(
                    f"Version conflict on photo {photo_id} (attempt {attempt}), reloading, "
                    f"correlation_id={correlation_id}"
                )

        logger.error(
            f"Abandoning update of photo {photo_id} after {MAX_CONFLICT_RETRIES} version conflicts, "
            f"correlation_id={correlation_id}"
        )
        return None

    def _record(
        self,
        db: Session,
        photo: Photo,
        event_type: PhotoEventType,
        correlation_id: str,
        success: bool = True,
        details: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        PhotoEventService.record(
            db,
            photo.id,
            event_type,
            success=success,
            details=details,
            error_message=error_message,
            correlation_id=correlation_id,
            user_id=photo.user_id,
            source=SOURCE,
        )

    def _record_metadata_outcome(
        self,
        db: Session,
        photo: Photo,
        metadata: Dict[str, Any],
        metadata_error: Optional[str],
        correlation_id: str,
    ) -> None:
        if metadata_error is None:
            self._record(db, photo, PhotoEventType.PHOTO_METADATA_EXTRACTED, correlation_id,
                         details=f"{len(metadata)} metadata fields")
        else:
            self._record(db, photo, PhotoEventType.PHOTO_METADATA_EXTRACTED, correlation_id,
                         success=False, details="Metadata extraction failed", error_message=metadata_error)

    def _delete_stored_objects(self, photo: Photo, correlation_id: str) -> None:
        if not photo.storage_key:
            return

        keys = [photo.storage_key]
        if photo.thumbnail_url:
            keys.append(thumbnail_key_for(photo.storage_key))

        for key in keys:
            try:
                self.storage.delete(key)
            except (StorageFailure, CircuitOpen) as e:
                logger.error(
                    f"Failed to delete {key} for photo {photo.id}: {e}, correlation_id={correlation_id}"
                )
