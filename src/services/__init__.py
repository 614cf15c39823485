"""Services package"""

from .photo_repository import PhotoRepository
from .photo_event_service import PhotoEventService
from .processing_queue_service import ProcessingQueueService

__all__ = ["PhotoRepository", "PhotoEventService", "ProcessingQueueService"]
