"""API and event schemas package"""

from .photo import (
    PhotoResponse,
    PhotoListResponse,
    PhotoEventResponse,
    PhotoEventPage,
    PhotoStatsResponse,
    DownloadUrlResponse,
)
from .events import (
    PhotoEventMessage,
    PhotoUploadedEvent,
    PhotoProcessingStartedEvent,
    PhotoProcessingCompletedEvent,
    PhotoProcessingFailedEvent,
    PhotoDeletedEvent,
)

__all__ = [
    "PhotoResponse",
    "PhotoListResponse",
    "PhotoEventResponse",
    "PhotoEventPage",
    "PhotoStatsResponse",
    "DownloadUrlResponse",
    "PhotoEventMessage",
    "PhotoUploadedEvent",
    "PhotoProcessingStartedEvent",
    "PhotoProcessingCompletedEvent",
    "PhotoProcessingFailedEvent",
    "PhotoDeletedEvent",
]
