"""Pytest configuration and shared fixtures"""

import os
import tempfile

# Settings are read at import time; point them at a throwaway database first
os.environ.setdefault(
    "DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'photo_pipeline_test.db')}"
)
os.environ.setdefault("LOCAL_STORAGE_PATH", os.path.join(tempfile.gettempdir(), "photo_pipeline_storage"))

from concurrent.futures import Future
from io import BytesIO
from typing import Any, Callable, Hashable, List, Optional, Tuple

import pytest
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.config import Settings
from src.container import ServiceContainer
from src.database import Base
from src.events.base import EventPublisher
from src.models import Photo, PhotoEvent, ProcessingQueueItem  # noqa: F401  (register tables)
from src.schemas.events import PhotoEventMessage
from src.services.orchestrator import ProcessingOrchestrator
from src.services.photo_service import PhotoService
from src.services.upload_service import UploadPipeline
from src.storage.factory import StorageProviderFactory
from src.storage.local import LocalFileStorageProvider


class InlinePool:
    """Worker pool stand-in that runs every task on the calling thread"""

    def __init__(self):
        self.submitted = 0
        self.is_shutdown = False

    def submit(self, func: Callable[..., Any], *args, **kwargs) -> Future:
        self.submitted += 1
        future: Future = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(func(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def active_count(self) -> int:
        return 0

    def shutdown(self, wait: bool = True) -> None:
        self.is_shutdown = True


class RecordingScheduler:
    """Retry scheduler stand-in; retries run only when the test asks for them"""

    def __init__(self):
        self.delays: List[float] = []
        self._queue: List[Tuple[Optional[Hashable], Callable[..., Any], tuple]] = []

    def schedule(self, delay_seconds: float, func: Callable[..., Any], *args, key: Optional[Hashable] = None):
        self.delays.append(delay_seconds)
        if key is not None:
            self._queue = [entry for entry in self._queue if entry[0] != key]
        self._queue.append((key, func, args))

    def cancel(self, key: Hashable) -> bool:
        remaining = [entry for entry in self._queue if entry[0] != key]
        cancelled = len(remaining) != len(self._queue)
        self._queue = remaining
        return cancelled

    def pending(self, key: Hashable) -> bool:
        return any(entry[0] == key for entry in self._queue)

    def run_next(self) -> Any:
        _, func, args = self._queue.pop(0)
        return func(*args)

    def run_all(self, limit: int = 20) -> int:
        """Fire pending retries (including ones they schedule) until none remain"""
        runs = 0
        while self._queue and runs < limit:
            self.run_next()
            runs += 1
        return runs

    def shutdown(self) -> None:
        self._queue.clear()


class RecordingPublisher(EventPublisher):
    """Publisher that keeps every event it is handed"""

    def __init__(self):
        self.published: List[Tuple[str, PhotoEventMessage, Optional[str]]] = []

    def publish_with_correlation(self, topic, event, correlation_id):
        self.published.append((topic, event, correlation_id))

    def is_available(self) -> bool:
        return True

    def provider_type(self) -> str:
        return "Recording"

    def events_of(self, event_type: str) -> List[PhotoEventMessage]:
        return [event for _, event, _ in self.published if event.event_type == event_type]


def make_image_bytes(
    size: Tuple[int, int] = (640, 480),
    color: Any = (200, 120, 40),
    image_format: str = "JPEG",
    mode: str = "RGB",
    **save_kwargs,
) -> bytes:
    buffer = BytesIO()
    Image.new(mode, size, color).save(buffer, format=image_format, **save_kwargs)
    return buffer.getvalue()


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings for a local-storage, database-fallback deployment"""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'settings.db'}",
        storage_provider="local",
        local_storage_path=str(tmp_path / "storage"),
        local_storage_base_url="http://files.test",
        event_publisher="database",
    )


@pytest.fixture
def engine(tmp_path):
    """Per-test SQLite database with the full schema"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def storage_root(tmp_path):
    return tmp_path / "storage"


@pytest.fixture
def storage_factory(test_settings, storage_root):
    """Storage factory whose retries never sleep"""
    return StorageProviderFactory(
        test_settings,
        constructors={
            "local": lambda: LocalFileStorageProvider(root=str(storage_root), base_url="http://files.test"),
        },
        sleep=lambda seconds: None,
    )


@pytest.fixture
def storage(storage_factory):
    """Resilient local storage (breaker "storage-local")"""
    return storage_factory.get_resilient_provider("local")


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def inline_pool():
    return InlinePool()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def image_factory():
    """Build encoded test images: image_factory(size=(w, h), image_format="PNG", ...)"""
    return make_image_bytes


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def upload_pipeline(storage, publisher, session_factory):
    return UploadPipeline(storage, publisher, session_factory, max_upload_size=50 * 1024 * 1024)


@pytest.fixture
def uploaded_photo(upload_pipeline, jpeg_bytes) -> Photo:
    """A photo that reached UPLOADED with a real JPEG in local storage"""
    return upload_pipeline.upload(
        user_id="user-1",
        stream=BytesIO(jpeg_bytes),
        filename="roof.jpg",
        content_type="image/jpeg",
        size=len(jpeg_bytes),
    )


@pytest.fixture
def service_container(
    test_settings, session_factory, storage_factory, storage, publisher, inline_pool, scheduler
):
    """Service graph on SQLite, local storage and inline workers"""

    orchestrator = ProcessingOrchestrator(
        storage=storage,
        publisher=publisher,
        pool=inline_pool,
        scheduler=scheduler,
        session_factory=session_factory,
        max_retries=3,
        max_manual_retries=5,
        retry_base_delay=1.0,
    )
    return ServiceContainer(
        settings=test_settings,
        session_factory=session_factory,
        storage_factory=storage_factory,
        storage=storage,
        publisher=publisher,
        pool=inline_pool,
        scheduler=scheduler,
        upload_pipeline=UploadPipeline(storage, publisher, session_factory, max_upload_size=50 * 1024 * 1024),
        orchestrator=orchestrator,
        photo_service=PhotoService(storage, session_factory),
    )
