"""Tests for the processing saga"""

import threading
import uuid
from collections import Counter
from io import BytesIO

import pytest
from unittest.mock import Mock, patch

from src.exceptions import ConflictError, PhotoNotFound, ProcessingStageFailure
from src.models import Photo, PhotoEvent, PhotoEventType, PhotoStatus
from src.services.metadata_service import MetadataService
from src.services.orchestrator import ProcessingOrchestrator
from src.services.photo_event_service import PhotoEventService
from src.services.photo_repository import PhotoRepository
from src.services.thumbnail_service import ThumbnailResult, ThumbnailService, thumbnail_key_for
from src.workers.pool import BoundedWorkerPool


def thumbnail_result(photo) -> ThumbnailResult:
    key = thumbnail_key_for(photo.storage_key)
    return ThumbnailResult(thumbnail_key=key, thumbnail_url=f"http://files.test/{key}", width=640, height=480)


def thumbnail_failure(photo) -> ProcessingStageFailure:
    return ProcessingStageFailure(photo.id, "thumbnail", OSError("decoder crashed"))


def load(session_factory, photo_id) -> Photo:
    with session_factory() as db:
        return db.query(Photo).filter(Photo.id == photo_id).one_or_none()


def audit(session_factory, photo_id) -> list:
    with session_factory() as db:
        return db.query(PhotoEvent).filter(PhotoEvent.photo_id == photo_id).all()


def count_types(events) -> Counter:
    return Counter(event.event_type for event in events)


@pytest.fixture
def make_orchestrator(storage, publisher, inline_pool, scheduler, session_factory):
    def factory(thumbnail_service=None, metadata_service=None, max_retries=3, max_manual_retries=5):
        return ProcessingOrchestrator(
            storage=storage,
            publisher=publisher,
            pool=inline_pool,
            scheduler=scheduler,
            session_factory=session_factory,
            thumbnail_service=thumbnail_service,
            metadata_service=metadata_service,
            max_retries=max_retries,
            max_manual_retries=max_manual_retries,
            retry_base_delay=1.0,
        )
    return factory


@pytest.fixture
def failing_thumbnails(uploaded_photo):
    service = Mock(spec=ThumbnailService)
    service.generate.side_effect = thumbnail_failure(uploaded_photo)
    return service


class TestSuccessfulSaga:
    """Saga runs with real thumbnail and metadata derivation"""

    def test_photo_completes(self, make_orchestrator, uploaded_photo, session_factory, storage, publisher):
        """Test UPLOADED -> COMPLETED with thumbnail stored and metadata filled"""
        orchestrator = make_orchestrator()

        status = orchestrator.process_photo(uploaded_photo.id, "corr-ok")

        photo = load(session_factory, uploaded_photo.id)
        assert status == PhotoStatus.COMPLETED
        assert photo.status == PhotoStatus.COMPLETED
        assert photo.processed_at is not None
        assert (photo.width, photo.height) == (640, 480)
        assert photo.photo_metadata["format"] == "JPEG"
        assert photo.thumbnail_url.endswith("_thumb.jpg")
        assert storage.exists(thumbnail_key_for(photo.storage_key))

        completed = publisher.events_of("PhotoProcessingCompletedEvent")
        assert len(completed) == 1
        assert completed[0].correlation_id == "corr-ok"
        assert completed[0].thumbnail_url == photo.thumbnail_url

    def test_audit_trail(self, make_orchestrator, uploaded_photo, session_factory):
        """Test one entry per saga step, all with the run's correlation id"""
        make_orchestrator().process_photo(uploaded_photo.id, "corr-audit")

        saga_events = [e for e in audit(session_factory, uploaded_photo.id) if e.correlation_id == "corr-audit"]
        assert count_types(saga_events) == Counter({
            PhotoEventType.PHOTO_PROCESSING_STARTED: 1,
            PhotoEventType.PHOTO_THUMBNAIL_GENERATED: 1,
            PhotoEventType.PHOTO_METADATA_EXTRACTED: 1,
            PhotoEventType.PHOTO_PROCESSING_COMPLETED: 1,
        })
        assert all(event.success for event in saga_events)

    def test_submit_runs_on_pool(self, make_orchestrator, uploaded_photo, inline_pool):
        """Test submit hands the saga to the worker pool"""
        future = make_orchestrator().submit(uploaded_photo.id)

        assert future.result() == PhotoStatus.COMPLETED
        # saga + metadata; the thumbnail is derived on the saga thread
        assert inline_pool.submitted == 2

    def test_completed_photo_is_not_reprocessed(self, make_orchestrator, uploaded_photo, session_factory, publisher):
        """Test re-running on a COMPLETED photo is a no-op"""
        orchestrator = make_orchestrator()
        orchestrator.process_photo(uploaded_photo.id, "corr-1")
        events_before = len(audit(session_factory, uploaded_photo.id))

        assert orchestrator.process_photo(uploaded_photo.id, "corr-2") is None

        assert len(audit(session_factory, uploaded_photo.id)) == events_before
        assert len(publisher.events_of("PhotoProcessingCompletedEvent")) == 1

    def test_missing_photo_is_noop(self, make_orchestrator, publisher):
        """Test an unknown photo id does nothing"""
        assert make_orchestrator().process_photo(uuid.uuid4()) is None
        assert publisher.published == []


class TestThumbnailRecovery:
    """Thumbnail fails twice, then succeeds"""

    def test_completes_after_two_retries(
        self, make_orchestrator, uploaded_photo, scheduler, session_factory, publisher
    ):
        """Test COMPLETED with retry_count 2 and 3 started / 2 failed / 1 completed events"""
        thumbnails = Mock(spec=ThumbnailService)
        thumbnails.generate.side_effect = [
            thumbnail_failure(uploaded_photo),
            thumbnail_failure(uploaded_photo),
            thumbnail_result(uploaded_photo),
        ]
        orchestrator = make_orchestrator(thumbnail_service=thumbnails)

        assert orchestrator.process_photo(uploaded_photo.id, "corr-b") == PhotoStatus.RETRYING
        assert load(session_factory, uploaded_photo.id).status == PhotoStatus.RETRYING
        scheduler.run_all()

        photo = load(session_factory, uploaded_photo.id)
        assert photo.status == PhotoStatus.COMPLETED
        assert photo.retry_count == 2
        assert photo.last_error is None
        assert scheduler.delays == [1.0, 2.0]

        counts = count_types(audit(session_factory, uploaded_photo.id))
        assert counts[PhotoEventType.PHOTO_PROCESSING_STARTED] == 3
        assert counts[PhotoEventType.PHOTO_PROCESSING_FAILED] == 2
        assert counts[PhotoEventType.PHOTO_RETRY_SCHEDULED] == 2
        assert counts[PhotoEventType.PHOTO_PROCESSING_COMPLETED] == 1

        failed = publisher.events_of("PhotoProcessingFailedEvent")
        assert [event.will_retry for event in failed] == [True, True]
        assert [event.retry_count for event in failed] == [1, 2]
        assert all(event.error_type == "ProcessingStageFailure" for event in failed)
        assert len(publisher.events_of("PhotoProcessingStartedEvent")) == 3
        assert len(publisher.events_of("PhotoProcessingCompletedEvent")) == 1

    def test_retries_keep_correlation_id(self, make_orchestrator, uploaded_photo, scheduler, session_factory):
        """Test automatic retries continue the original run's correlation id"""
        thumbnails = Mock(spec=ThumbnailService)
        thumbnails.generate.side_effect = [thumbnail_failure(uploaded_photo), thumbnail_result(uploaded_photo)]
        orchestrator = make_orchestrator(thumbnail_service=thumbnails)

        orchestrator.process_photo(uploaded_photo.id, "corr-keep")
        scheduler.run_all()

        saga_events = [
            e for e in audit(session_factory, uploaded_photo.id)
            if e.event_type != PhotoEventType.PHOTO_UPLOAD_STARTED and e.event_type != PhotoEventType.PHOTO_UPLOADED
        ]
        assert {event.correlation_id for event in saga_events} == {"corr-keep"}

        with session_factory() as db:
            by_correlation = PhotoEventService.list_by_correlation(db, "corr-keep")
        assert {event.id for event in by_correlation} == {event.id for event in saga_events}


class TestMetadataFailure:
    """Metadata extraction always fails, thumbnail succeeds"""

    def test_completes_with_empty_metadata(
        self, make_orchestrator, uploaded_photo, scheduler, session_factory, publisher
    ):
        """Test COMPLETED, empty metadata, one failed metadata entry and no retry"""
        metadata = Mock(spec=MetadataService)
        metadata.extract.side_effect = ProcessingStageFailure(uploaded_photo.id, "metadata", ValueError("bad EXIF"))
        orchestrator = make_orchestrator(metadata_service=metadata)

        assert orchestrator.process_photo(uploaded_photo.id, "corr-c") == PhotoStatus.COMPLETED

        photo = load(session_factory, uploaded_photo.id)
        assert photo.status == PhotoStatus.COMPLETED
        assert photo.photo_metadata == {}
        assert photo.retry_count == 0
        assert scheduler.delays == []

        metadata_events = [
            e for e in audit(session_factory, uploaded_photo.id)
            if e.event_type == PhotoEventType.PHOTO_METADATA_EXTRACTED
        ]
        assert len(metadata_events) == 1
        assert metadata_events[0].success is False
        assert "bad EXIF" in metadata_events[0].error_message
        assert publisher.events_of("PhotoProcessingFailedEvent") == []
        assert publisher.events_of("PhotoProcessingCompletedEvent")[0].metadata == {}


class TestRetryExhaustion:
    """Thumbnail always fails"""

    def test_fails_after_max_retries(
        self, make_orchestrator, failing_thumbnails, uploaded_photo, scheduler, session_factory, publisher
    ):
        """Test FAILED after 3 attempts, no 4th attempt, last event will_retry False"""
        orchestrator = make_orchestrator(thumbnail_service=failing_thumbnails, max_retries=3)

        orchestrator.process_photo(uploaded_photo.id, "corr-d")
        scheduler.run_all()

        photo = load(session_factory, uploaded_photo.id)
        assert photo.status == PhotoStatus.FAILED
        assert photo.retry_count == 3
        assert "decoder crashed" in photo.last_error
        assert failing_thumbnails.generate.call_count == 3
        assert scheduler.delays == [1.0, 2.0]
        assert not scheduler.pending(uploaded_photo.id)

        failed = publisher.events_of("PhotoProcessingFailedEvent")
        assert [event.will_retry for event in failed] == [True, True, False]
        assert [event.retry_count for event in failed] == [1, 2, 3]

        counts = count_types(audit(session_factory, uploaded_photo.id))
        assert counts[PhotoEventType.PHOTO_PROCESSING_STARTED] == 3
        assert counts[PhotoEventType.PHOTO_PROCESSING_FAILED] == 3
        assert counts[PhotoEventType.PHOTO_PROCESSING_COMPLETED] == 0

    def test_backoff_doubles(self, make_orchestrator, failing_thumbnails, uploaded_photo, scheduler):
        """Test delays of 1s, 2s, 4s with a budget of four attempts"""
        orchestrator = make_orchestrator(thumbnail_service=failing_thumbnails, max_retries=4)

        orchestrator.process_photo(uploaded_photo.id)
        scheduler.run_all()

        assert scheduler.delays == [1.0, 2.0, 4.0]

    def test_metadata_failure_recorded_on_failed_run(
        self, make_orchestrator, failing_thumbnails, uploaded_photo, session_factory
    ):
        """Test a failed run still records its metadata failure"""
        metadata = Mock(spec=MetadataService)
        metadata.extract.side_effect = ProcessingStageFailure(uploaded_photo.id, "metadata", ValueError("x"))
        orchestrator = make_orchestrator(
            thumbnail_service=failing_thumbnails, metadata_service=metadata, max_retries=1
        )

        assert orchestrator.process_photo(uploaded_photo.id) == PhotoStatus.FAILED

        metadata_events = [
            e for e in audit(session_factory, uploaded_photo.id)
            if e.event_type == PhotoEventType.PHOTO_METADATA_EXTRACTED
        ]
        assert [event.success for event in metadata_events] == [False]


class TestResume:
    """Re-entry after a backoff"""

    def test_resume_ignores_non_retrying_photo(self, make_orchestrator, uploaded_photo, session_factory):
        """Test resume only acts on RETRYING photos"""
        assert make_orchestrator().resume(uploaded_photo.id, "corr") is None
        assert load(session_factory, uploaded_photo.id).status == PhotoStatus.UPLOADED

    def test_resume_after_delete_is_noop(
        self, make_orchestrator, failing_thumbnails, uploaded_photo, scheduler, publisher
    ):
        """Test a retry firing after deletion does nothing"""
        orchestrator = make_orchestrator(thumbnail_service=failing_thumbnails)
        orchestrator.process_photo(uploaded_photo.id, "corr")
        orchestrator.delete_photo(uploaded_photo.id)
        published_before = len(publisher.published)

        assert orchestrator.resume(uploaded_photo.id, "corr") is None
        assert len(publisher.published) == published_before
        assert failing_thumbnails.generate.call_count == 1


class TestDeletePhoto:
    """Deletion of records, stored objects and pending retries"""

    def test_delete_completed_photo(self, make_orchestrator, uploaded_photo, storage, session_factory, publisher):
        """Test row, original and thumbnail are removed and the audit trail survives"""
        orchestrator = make_orchestrator()
        orchestrator.process_photo(uploaded_photo.id)
        photo = load(session_factory, uploaded_photo.id)

        orchestrator.delete_photo(uploaded_photo.id)

        assert load(session_factory, uploaded_photo.id) is None
        assert not storage.exists(photo.storage_key)
        assert not storage.exists(thumbnail_key_for(photo.storage_key))

        events = audit(session_factory, uploaded_photo.id)
        assert PhotoEventType.PHOTO_DELETED in {event.event_type for event in events}
        deleted = publisher.events_of("PhotoDeletedEvent")
        assert len(deleted) == 1
        assert deleted[0].storage_key == photo.storage_key

    def test_delete_cancels_pending_retry(self, make_orchestrator, failing_thumbnails, uploaded_photo, scheduler):
        """Test deleting a RETRYING photo drops its scheduled retry"""
        orchestrator = make_orchestrator(thumbnail_service=failing_thumbnails)
        orchestrator.process_photo(uploaded_photo.id)
        assert scheduler.pending(uploaded_photo.id)

        orchestrator.delete_photo(uploaded_photo.id)

        assert not scheduler.pending(uploaded_photo.id)

    def test_delete_missing_photo(self, make_orchestrator):
        """Test deleting an unknown photo raises PhotoNotFound"""
        with pytest.raises(PhotoNotFound):
            make_orchestrator().delete_photo(uuid.uuid4())


class TestManualRetry:
    """Manual retry of FAILED photos"""

    def fail_photo(self, make_orchestrator, photo, **kwargs):
        thumbnails = Mock(spec=ThumbnailService)
        thumbnails.generate.side_effect = thumbnail_failure(photo)
        orchestrator = make_orchestrator(thumbnail_service=thumbnails, max_retries=1, **kwargs)
        assert orchestrator.process_photo(photo.id) == PhotoStatus.FAILED
        return orchestrator, thumbnails

    def test_manual_retry_reprocesses(self, make_orchestrator, uploaded_photo, session_factory):
        """Test FAILED -> PENDING -> UPLOADED and a new saga run that completes"""
        orchestrator, thumbnails = self.fail_photo(make_orchestrator, uploaded_photo)
        thumbnails.generate.side_effect = None
        thumbnails.generate.return_value = thumbnail_result(uploaded_photo)

        returned = orchestrator.retry_processing(uploaded_photo.id)

        assert returned.status == PhotoStatus.UPLOADED
        assert returned.manual_retry_count == 1
        assert returned.retry_count == 0

        photo = load(session_factory, uploaded_photo.id)
        assert photo.status == PhotoStatus.COMPLETED
        scheduled = [
            e for e in audit(session_factory, uploaded_photo.id)
            if e.event_type == PhotoEventType.PHOTO_RETRY_SCHEDULED
        ]
        assert len(scheduled) == 1
        assert scheduled[0].details == "Manual retry 1 of 5"

    def test_manual_retry_limit(self, make_orchestrator, uploaded_photo, session_factory):
        """Test retries beyond max_manual_retries are rejected"""
        orchestrator, _ = self.fail_photo(make_orchestrator, uploaded_photo, max_manual_retries=1)

        orchestrator.retry_processing(uploaded_photo.id)
        assert load(session_factory, uploaded_photo.id).status == PhotoStatus.FAILED

        with pytest.raises(ConflictError, match="limit"):
            orchestrator.retry_processing(uploaded_photo.id)
        assert load(session_factory, uploaded_photo.id).manual_retry_count == 1

    def test_manual_retry_requires_failed(self, make_orchestrator, uploaded_photo):
        """Test only FAILED photos can be retried"""
        with pytest.raises(ConflictError):
            make_orchestrator().retry_processing(uploaded_photo.id)

    def test_manual_retry_requires_original(self, make_orchestrator, uploaded_photo, storage):
        """Test a missing original blocks the retry"""
        orchestrator, _ = self.fail_photo(make_orchestrator, uploaded_photo)
        storage.delete(uploaded_photo.storage_key)

        with pytest.raises(ConflictError, match="re-upload"):
            orchestrator.retry_processing(uploaded_photo.id)

    def test_manual_retry_unknown_photo(self, make_orchestrator):
        """Test retrying an unknown photo raises PhotoNotFound"""
        with pytest.raises(PhotoNotFound):
            make_orchestrator().retry_processing(uuid.uuid4())


@pytest.fixture
def concurrent_write(session_factory):
    """
    Commit a change from a second session right after the orchestrator
    loads a photo matching `when`, so its own write hits a stale version.
    """
    def install(when, change, times=1):
        original_get = PhotoRepository.get
        remaining = [times]

        def get(db, photo_id):
            photo = original_get(db, photo_id)
            if photo is not None and remaining[0] and when(photo):
                remaining[0] -= 1
                with session_factory() as other:
                    change(other.get(Photo, photo_id))
                    other.commit()
            return photo

        return patch.object(PhotoRepository, "get", side_effect=get)
    return install


def is_processing(photo) -> bool:
    return photo.current_status == PhotoStatus.PROCESSING


class TestVersionConflicts:
    """Steps that lose an optimistic-locking race reload and re-check"""

    def test_completion_reapplied_after_conflict(
        self, make_orchestrator, uploaded_photo, session_factory, publisher, concurrent_write
    ):
        """Test completion reloads and keeps the other session's write"""
        def edit_description(photo):
            photo.description = "x"

        with concurrent_write(is_processing, edit_description):
            status = make_orchestrator().process_photo(uploaded_photo.id, "corr-race")

        photo = load(session_factory, uploaded_photo.id)
        assert status == PhotoStatus.COMPLETED
        assert photo.status == PhotoStatus.COMPLETED
        assert photo.description == "x"
        completed = [
            e for e in audit(session_factory, uploaded_photo.id)
            if e.event_type == PhotoEventType.PHOTO_PROCESSING_COMPLETED
        ]
        assert len(completed) == 1
        assert len(publisher.events_of("PhotoProcessingCompletedEvent")) == 1

    def test_completion_abandoned_when_no_longer_legal(
        self, make_orchestrator, uploaded_photo, session_factory, publisher, concurrent_write
    ):
        """Test a photo failed by another writer is not completed"""
        def fail_elsewhere(photo):
            photo.transition_to(PhotoStatus.FAILED)

        with concurrent_write(is_processing, fail_elsewhere):
            status = make_orchestrator().process_photo(uploaded_photo.id, "corr-race")

        photo = load(session_factory, uploaded_photo.id)
        assert status is None
        assert photo.status == PhotoStatus.FAILED
        assert photo.thumbnail_url is None
        types = count_types(audit(session_factory, uploaded_photo.id))
        assert PhotoEventType.PHOTO_PROCESSING_COMPLETED not in types
        assert publisher.events_of("PhotoProcessingCompletedEvent") == []

    def test_delete_retried_after_conflict(
        self, make_orchestrator, uploaded_photo, session_factory, publisher, concurrent_write
    ):
        """Test delete reloads after a concurrent edit and removes the photo"""
        def edit_description(photo):
            photo.description = "x"

        with concurrent_write(lambda photo: True, edit_description):
            make_orchestrator().delete_photo(uploaded_photo.id)

        assert load(session_factory, uploaded_photo.id) is None
        types = count_types(audit(session_factory, uploaded_photo.id))
        assert types[PhotoEventType.PHOTO_DELETED] == 1
        assert len(publisher.events_of("PhotoDeletedEvent")) == 1

    def test_delete_gives_up_after_repeated_conflicts(
        self, make_orchestrator, uploaded_photo, session_factory, publisher, concurrent_write
    ):
        """Test delete raises ConflictError and keeps the photo when every attempt conflicts"""
        def edit_description(photo):
            photo.description = "x"

        with concurrent_write(lambda photo: True, edit_description, times=3):
            with pytest.raises(ConflictError):
                make_orchestrator().delete_photo(uploaded_photo.id)

        assert load(session_factory, uploaded_photo.id) is not None
        assert publisher.events_of("PhotoDeletedEvent") == []


class TestOnWorkerPool:
    """Sagas running on a real bounded pool"""

    @pytest.fixture
    def pool(self):
        pool = BoundedWorkerPool(core_size=1, max_workers=2, queue_capacity=10)
        yield pool
        pool.shutdown(wait=True)

    def test_sagas_holding_every_worker_complete(
        self, storage, publisher, scheduler, session_factory, upload_pipeline, image_factory, pool
    ):
        """Test sagas occupying all workers still finish their queued metadata"""
        photos = []
        for color in [(200, 120, 40), (10, 20, 30)]:
            data = image_factory(color=color)
            photos.append(
                upload_pipeline.upload(
                    user_id="user-1",
                    stream=BytesIO(data),
                    filename="roof.jpg",
                    content_type="image/jpeg",
                    size=len(data),
                )
            )

        # Both sagas hold a worker before either thumbnail returns
        both_running = threading.Barrier(len(photos), timeout=5)

        def generate(photo_id, storage_key):
            both_running.wait()
            key = thumbnail_key_for(storage_key)
            return ThumbnailResult(thumbnail_key=key, thumbnail_url=f"http://files.test/{key}", width=640, height=480)

        thumbnails = Mock(spec=ThumbnailService)
        thumbnails.generate.side_effect = generate
        orchestrator = ProcessingOrchestrator(
            storage=storage,
            publisher=publisher,
            pool=pool,
            scheduler=scheduler,
            session_factory=session_factory,
            thumbnail_service=thumbnails,
            max_retries=3,
            max_manual_retries=5,
            retry_base_delay=1.0,
        )

        futures = [orchestrator.submit(photo.id) for photo in photos]

        assert [future.result(timeout=10) for future in futures] == [PhotoStatus.COMPLETED] * 2
        for photo in photos:
            stored = load(session_factory, photo.id)
            assert stored.status == PhotoStatus.COMPLETED
            assert stored.photo_metadata["format"] == "JPEG"
        assert pool.active_count() == 0
