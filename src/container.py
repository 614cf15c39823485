"""Service graph built once per process"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import sessionmaker

from src.config import Settings, settings as default_settings
from src.database import SessionLocal
from src.events.base import EventPublisher
from src.events.factory import create_event_publisher
from src.services.orchestrator import ProcessingOrchestrator
from src.services.photo_service import PhotoService
from src.services.upload_service import UploadPipeline
from src.storage.factory import StorageProviderFactory
from src.storage.resilient import ResilientStorageProvider
from src.workers.pool import BoundedWorkerPool, RetryScheduler

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Long-lived collaborators shared by every request"""

    settings: Settings
    session_factory: sessionmaker
    storage_factory: StorageProviderFactory
    storage: ResilientStorageProvider
    publisher: EventPublisher
    pool: BoundedWorkerPool
    scheduler: RetryScheduler
    upload_pipeline: UploadPipeline
    orchestrator: ProcessingOrchestrator
    photo_service: PhotoService

    def shutdown(self, wait: bool = True) -> None:
        """Cancel pending retries and drain the worker pool"""
        self.scheduler.shutdown()
        self.pool.shutdown(wait=wait)


def build_container(
    config: Optional[Settings] = None,
    session_factory: sessionmaker = SessionLocal,
    storage_factory: Optional[StorageProviderFactory] = None,
    publisher: Optional[EventPublisher] = None,
) -> ServiceContainer:
    """
    Wire storage, events, worker pool and services from configuration.

    Args:
        config: Settings to read (default: global settings)
        session_factory: Session factory shared by all services
        storage_factory: Pre-configured storage factory (tests)
        publisher: Pre-built event publisher (tests)

    Returns:
        ServiceContainer
    """
    config = config or default_settings
    storage_factory = storage_factory or StorageProviderFactory(config)
    storage = storage_factory.get_resilient_provider(config.storage_provider)
    publisher = publisher or create_event_publisher(config, session_factory)

    pool = BoundedWorkerPool(
        core_size=config.worker_pool_core_size,
        max_workers=config.worker_pool_max_size,
        queue_capacity=config.worker_pool_queue_capacity,
    )
    scheduler = RetryScheduler(pool)

    orchestrator = ProcessingOrchestrator(
        storage=storage,
        publisher=publisher,
        pool=pool,
        scheduler=scheduler,
        session_factory=session_factory,
        max_retries=config.max_processing_retries,
        max_manual_retries=config.max_manual_retries,
        retry_base_delay=config.retry_base_delay_seconds,
    )

    logger.info(
        f"Service container ready: storage={storage.provider_name}, events={publisher.provider_type()}"
    )
    return ServiceContainer(
        settings=config,
        session_factory=session_factory,
        storage_factory=storage_factory,
        storage=storage,
        publisher=publisher,
        pool=pool,
        scheduler=scheduler,
        upload_pipeline=UploadPipeline(storage, publisher, session_factory, config.max_upload_size_bytes),
        orchestrator=orchestrator,
        photo_service=PhotoService(storage, session_factory),
    )
