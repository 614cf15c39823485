"""Durable fallback queue model for commands that could not go through the event bus"""

from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy import Column, String, Integer, Text, DateTime, Enum, Uuid
from src.models.base import BaseModel
from src.workers.retry_manager import backoff_delay
import enum


class CommandType(str, enum.Enum):
    """Commands carried by fallback queue items"""
    PROCESS_PHOTO = "PROCESS_PHOTO"
    GENERATE_THUMBNAIL = "GENERATE_THUMBNAIL"
    EXTRACT_METADATA = "EXTRACT_METADATA"
    VALIDATE_PHOTO = "VALIDATE_PHOTO"
    DELETE_PHOTO = "DELETE_PHOTO"


class QueueStatus(str, enum.Enum):
    """Queue item lifecycle"""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    DEAD_LETTER = "DEAD_LETTER"


class ProcessingQueueItem(BaseModel):
    """
    Unit of work written by the database fallback publisher.
    Moves PENDING -> PROCESSING -> (COMPLETED | PENDING with backoff | DEAD_LETTER).
    """

    __tablename__ = "processing_queue"

    photo_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    command_type = Column(Enum(CommandType, name="queue_command_type"), nullable=False)
    status = Column(
        Enum(QueueStatus, name="queue_status"),
        nullable=False,
        default=QueueStatus.PENDING,
        index=True,
    )
    retry_count = Column(Integer, nullable=False, default=0, server_default="0")
    max_retries = Column(Integer, nullable=False, default=3, server_default="3")
    next_retry_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    topic = Column(String(255), nullable=True)
    event_type = Column(String(100), nullable=True)
    payload = Column(Text, nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)
    completed_at = Column(DateTime, nullable=True)

    def schedule_retry(self, now: Optional[datetime] = None) -> None:
        """
        Count a failed attempt and either back off or dead-letter.

        Once retry_count reaches max_retries the item is DEAD_LETTER and stays there.
        """
        now = now or datetime.utcnow()
        self.retry_count = (self.retry_count or 0) + 1
        if self.retry_count >= self.max_retries:
            self.status = QueueStatus.DEAD_LETTER
            self.next_retry_at = None
            return
        self.next_retry_at = now + timedelta(seconds=backoff_delay(self.retry_count))
        self.status = QueueStatus.PENDING

    def mark_processing(self) -> None:
        self.status = QueueStatus.PROCESSING

    def mark_completed(self) -> None:
        self.status = QueueStatus.COMPLETED
        self.completed_at = datetime.utcnow()

    def mark_failed(self, error: str) -> None:
        self.status = QueueStatus.FAILED
        self.last_error = error

    def should_retry(self) -> bool:
        return self.status == QueueStatus.FAILED and (self.retry_count or 0) < self.max_retries

    def is_ready_for_processing(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return self.status == QueueStatus.PENDING and (
            self.next_retry_at is None or self.next_retry_at <= now
        )

    def __repr__(self):
        return f"<ProcessingQueueItem(id={self.id}, command={self.command_type}, status={self.status})>"
