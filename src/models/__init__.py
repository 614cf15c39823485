"""Database models package"""

from src.models.base import BaseModel
from src.models.photo import Photo, PhotoStatus, ALLOWED_TRANSITIONS
from src.models.photo_event import PhotoEvent, PhotoEventType
from src.models.processing_queue import ProcessingQueueItem, CommandType, QueueStatus

# Export all models
__all__ = [
    "BaseModel",
    "Photo",
    "PhotoStatus",
    "ALLOWED_TRANSITIONS",
    "PhotoEvent",
    "PhotoEventType",
    "ProcessingQueueItem",
    "CommandType",
    "QueueStatus",
]
