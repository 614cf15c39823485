"""Photo model and its lifecycle state machine"""

from datetime import datetime
from typing import Dict, FrozenSet
from sqlalchemy import Column, String, Integer, BigInteger, Text, DateTime, Enum
from src.exceptions import InvalidTransition
from src.models.base import BaseModel, JSONType
import enum


class PhotoStatus(str, enum.Enum):
    """Photo upload and processing status"""
    PENDING = "PENDING"
    UPLOADING = "UPLOADING"
    UPLOADED = "UPLOADED"
    PROCESSING = "PROCESSING"
    RETRYING = "RETRYING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    def can_transition_to(self, target: "PhotoStatus") -> bool:
        """Check whether target is a legal next state"""
        return target in ALLOWED_TRANSITIONS[self]

    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Dict[PhotoStatus, FrozenSet[PhotoStatus]] = {
    PhotoStatus.PENDING: frozenset({PhotoStatus.UPLOADING, PhotoStatus.FAILED}),
    PhotoStatus.UPLOADING: frozenset({PhotoStatus.UPLOADED, PhotoStatus.FAILED}),
    PhotoStatus.UPLOADED: frozenset({PhotoStatus.PROCESSING, PhotoStatus.FAILED}),
    PhotoStatus.PROCESSING: frozenset(
        {PhotoStatus.COMPLETED, PhotoStatus.FAILED, PhotoStatus.RETRYING}
    ),
    PhotoStatus.RETRYING: frozenset({PhotoStatus.PROCESSING, PhotoStatus.FAILED}),
    # Manual retry goes back through PENDING
    PhotoStatus.FAILED: frozenset({PhotoStatus.RETRYING, PhotoStatus.PENDING}),
    PhotoStatus.COMPLETED: frozenset(),
}


class Photo(BaseModel):
    """
    Photo model representing one uploaded image.

    Status changes go through transition_to(); every flush bumps version so a
    concurrent writer fails with StaleDataError instead of overwriting.
    """

    __tablename__ = "photos"

    user_id = Column(String(255), nullable=False, index=True)
    original_filename = Column(String(500), nullable=False)
    content_type = Column(String(100), nullable=False)
    file_size = Column(BigInteger, nullable=False)
    checksum = Column(String(64), nullable=True, unique=True, index=True)
    description = Column(Text, nullable=True)
    tags = Column(Text, nullable=True)
    storage_key = Column(String(500), nullable=True, unique=True)
    storage_url = Column(Text, nullable=True)
    thumbnail_url = Column(Text, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    photo_metadata = Column(JSONType, nullable=True)
    status = Column(
        Enum(PhotoStatus, name="photo_status"),
        nullable=False,
        default=PhotoStatus.PENDING,
        index=True,
    )
    retry_count = Column(Integer, nullable=False, default=0, server_default="0")
    manual_retry_count = Column(Integer, nullable=False, default=0, server_default="0")
    last_error = Column(Text, nullable=True)
    uploaded_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def current_status(self) -> PhotoStatus:
        return PhotoStatus(self.status) if self.status is not None else PhotoStatus.PENDING

    def transition_to(self, target: PhotoStatus) -> None:
        """
        Move to target status.

        Raises:
            InvalidTransition: If target is not reachable from the current status.
                The photo is left unchanged.
        """
        current = self.current_status
        if not current.can_transition_to(target):
            raise InvalidTransition(current, target)

        self.status = target
        if target == PhotoStatus.UPLOADED:
            self.uploaded_at = datetime.utcnow()
        elif target == PhotoStatus.COMPLETED:
            self.processed_at = datetime.utcnow()

    def increment_retry_count(self) -> int:
        self.retry_count = (self.retry_count or 0) + 1
        return self.retry_count

    def should_retry(self, max_retries: int) -> bool:
        return (self.retry_count or 0) < max_retries

    def reset_for_manual_retry(self) -> None:
        """FAILED -> PENDING with a fresh automatic retry budget"""
        self.transition_to(PhotoStatus.PENDING)
        self.retry_count = 0
        self.last_error = None
        self.manual_retry_count = (self.manual_retry_count or 0) + 1

    def __repr__(self):
        return f"<Photo(id={self.id}, status={self.status}, storage_key={self.storage_key})>"
