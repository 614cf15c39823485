"""Fallback queue database operations"""

import logging
from datetime import datetime
from typing import Dict, Optional
from uuid import UUID
from sqlalchemy import func
from sqlalchemy.orm import Session

from src.models.processing_queue import CommandType, ProcessingQueueItem, QueueStatus

logger = logging.getLogger(__name__)


class ProcessingQueueService:
    """Static helpers over the processing_queue table; callers own the transaction"""

    @staticmethod
    def enqueue(
        db: Session,
        command_type: CommandType,
        photo_id: Optional[UUID] = None,
        payload: Optional[str] = None,
        topic: Optional[str] = None,
        event_type: Optional[str] = None,
        correlation_id: Optional[str] = None,
        max_retries: int = 3,
    ) -> ProcessingQueueItem:
        """
        Create a new PENDING queue item.

        Args:
            db: Database session
            command_type: Command to replay
            photo_id: Referenced photo, if any
            payload: Serialized event JSON
            topic: Topic the event was meant for
            event_type: Event class name
            correlation_id: Correlation id of the originating saga run
            max_retries: Attempts before dead-lettering

        Returns:
            Created ProcessingQueueItem instance
        """
        item = ProcessingQueueItem(
            photo_id=photo_id,
            command_type=command_type,
            status=QueueStatus.PENDING,
            payload=payload,
            topic=topic,
            event_type=event_type,
            correlation_id=correlation_id,
            retry_count=0,
            max_retries=max_retries,
        )
        db.add(item)
        db.flush()

        logger.info(f"Queued {command_type.value} item {item.id} for photo {photo_id}")
        return item

    @staticmethod
    def get(db: Session, item_id: UUID) -> Optional[ProcessingQueueItem]:
        return db.query(ProcessingQueueItem).filter(ProcessingQueueItem.id == item_id).first()

    @staticmethod
    def find_ready_for_processing(
        db: Session, now: Optional[datetime] = None, limit: int = 10, lock: bool = False
    ) -> list[ProcessingQueueItem]:
        """
        Get PENDING items whose backoff has elapsed, oldest first.

        Args:
            db: Database session
            now: Reference time (default: utcnow)
            limit: Maximum number of items to return
            lock: Lock the rows, skipping ones another poller holds (PostgreSQL)

        Returns:
            List of ready ProcessingQueueItem instances
        """
        now = now or datetime.utcnow()
        query = (
            db.query(ProcessingQueueItem)
            .filter(ProcessingQueueItem.status == QueueStatus.PENDING)
            .filter(
                (ProcessingQueueItem.next_retry_at.is_(None))
                | (ProcessingQueueItem.next_retry_at <= now)
            )
            .order_by(ProcessingQueueItem.created_at.asc())
            .limit(limit)
        )
        if lock:
            query = query.with_for_update(skip_locked=True)
        return query.all()

    @staticmethod
    def list_by_status(db: Session, status: QueueStatus, limit: int = 100) -> list[ProcessingQueueItem]:
        return (
            db.query(ProcessingQueueItem)
            .filter(ProcessingQueueItem.status == status)
            .order_by(ProcessingQueueItem.created_at.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def count_by_status(db: Session) -> Dict[str, int]:
        rows = (
            db.query(ProcessingQueueItem.status, func.count(ProcessingQueueItem.id))
            .group_by(ProcessingQueueItem.status)
            .all()
        )
        counts = {status.value: 0 for status in QueueStatus}
        for status, count in rows:
            counts[QueueStatus(status).value] = count
        return counts

    @staticmethod
    def delete_by_status_and_completed_before(
        db: Session, status: QueueStatus, before: datetime
    ) -> int:
        """
        Purge finished items.

        Returns:
            Number of deleted rows
        """
        deleted = (
            db.query(ProcessingQueueItem)
            .filter(ProcessingQueueItem.status == status)
            .filter(ProcessingQueueItem.completed_at < before)
            .delete(synchronize_session=False)
        )
        logger.info(f"Purged {deleted} {status.value} queue items completed before {before}")
        return deleted
