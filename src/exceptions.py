"""Domain exceptions for the photo pipeline"""

from typing import Any, Dict, List, Optional


class PhotoPipelineError(Exception):
    """Base exception for photo pipeline errors"""
    pass


class ValidationError(PhotoPipelineError):
    """Client input rejected before any record is created"""

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class DuplicateContent(PhotoPipelineError):
    """A photo with the same content checksum already exists"""

    def __init__(self, existing_id: Any):
        super().__init__(f"Photo with identical content already exists: {existing_id}")
        self.existing_id = existing_id


class PhotoNotFound(PhotoPipelineError):
    """Photo does not exist"""

    def __init__(self, photo_id: Any):
        super().__init__(f"Photo {photo_id} not found")
        self.photo_id = photo_id


class InvalidTransition(PhotoPipelineError):
    """Requested status change is not an edge of the lifecycle state machine"""

    def __init__(self, current: Any, requested: Any):
        super().__init__(f"Invalid status transition from {current} to {requested}")
        self.current = current
        self.requested = requested


class ConflictError(PhotoPipelineError):
    """Operation not allowed in the photo's current state"""
    pass


class StorageFailure(PhotoPipelineError):
    """Storage backend operation failed"""

    def __init__(self, provider: str, operation: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Storage operation '{operation}' failed on provider '{provider}'{detail}")
        self.provider = provider
        self.operation = operation
        self.cause = cause


class CircuitOpen(PhotoPipelineError):
    """Circuit breaker is open; the call was not attempted"""

    def __init__(self, name: str, operation: Optional[str] = None):
        super().__init__(f"Circuit breaker '{name}' is OPEN")
        self.name = name
        self.operation = operation


class EventPublishFailure(PhotoPipelineError):
    """Event could not be delivered to the transport"""

    def __init__(self, event_type: str, topic: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Failed to publish {event_type} to topic '{topic}'{detail}")
        self.event_type = event_type
        self.topic = topic
        self.cause = cause


class ProcessingStageFailure(PhotoPipelineError):
    """A derivation stage (thumbnail, metadata) failed for a photo"""

    def __init__(self, photo_id: Any, stage: str, cause: Optional[BaseException] = None):
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Processing stage '{stage}' failed for photo {photo_id}{detail}")
        self.photo_id = photo_id
        self.stage = stage
        self.cause = cause
