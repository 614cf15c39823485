"""Replays fallback queue items once a broker transport is reachable again"""

import logging
import signal
import sys
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.orm import sessionmaker

from src.config import settings
from src.database import SessionLocal, session_scope
from src.events.base import EventPublisher
from src.models.processing_queue import CommandType, ProcessingQueueItem, QueueStatus
from src.monitoring.metrics import metrics_collector
from src.schemas.events import parse_event
from src.services.processing_queue_service import ProcessingQueueService

logger = logging.getLogger(__name__)

QueueHandler = Callable[[ProcessingQueueItem], None]


class ProcessingQueuePoller:
    """
    Worker that drains the processing_queue table.

    Responsibilities:
    - Load PENDING items whose backoff has elapsed
    - Replay each through the handler for its command type
    - Back off failed items and dead-letter them at max retries
    - Purge old COMPLETED items
    """

    def __init__(
        self,
        primary: Optional[EventPublisher] = None,
        session_factory: sessionmaker = SessionLocal,
        batch_size: Optional[int] = None,
        poll_interval: Optional[float] = None,
        retention_days: Optional[int] = None,
        handlers: Optional[Dict[CommandType, QueueHandler]] = None,
    ):
        """
        Initialize the poller.

        Args:
            primary: Broker transport events are republished to
            session_factory: Session factory for queue access
            batch_size: Items per poll (default: settings.queue_poll_batch_size)
            poll_interval: Seconds between polls (default: settings.queue_poll_interval_seconds)
            retention_days: Age after which COMPLETED items are purged
            handlers: Per-command overrides of the republish handler
        """
        self.primary = primary
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.queue_poll_batch_size
        self.poll_interval = poll_interval if poll_interval is not None else settings.queue_poll_interval_seconds
        self.retention_days = retention_days or settings.queue_completed_retention_days
        self.handlers: Dict[CommandType, QueueHandler] = dict(handlers or {})
        self.running = False
        self._stop = threading.Event()

        logger.info(
            f"Initialized ProcessingQueuePoller (batch={self.batch_size}, interval={self.poll_interval}s, "
            f"transport={primary.provider_type() if primary else 'none'})"
        )

    def register(self, command_type: CommandType, handler: QueueHandler) -> None:
        self.handlers[command_type] = handler

    def republish(self, item: ProcessingQueueItem) -> None:
        """
        Default handler: send the stored event to the primary transport.

        Raises:
            RuntimeError: If no primary transport is configured
            EventPublishFailure: If the transport rejects the event
        """
        if self.primary is None:
            raise RuntimeError("No primary transport configured for replay")

        event = parse_event(item.event_type, item.payload)
        topic = item.topic or event.default_topic
        self.primary.publish_with_correlation(topic, event, item.correlation_id)

    def poll_once(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Process one batch of ready items.

        Args:
            now: Reference time (default: utcnow)

        Returns:
            Count of items per outcome (completed, retrying, dead_letter)
        """
        now = now or datetime.utcnow()
        with session_scope(self.session_factory) as db:
            items = ProcessingQueueService.find_ready_for_processing(db, now, self.batch_size, lock=True)
            for item in items:
                item.mark_processing()
            item_ids = [item.id for item in items]

        if item_ids:
            logger.info(f"Replaying {len(item_ids)} fallback queue items")

        outcomes = {"completed": 0, "retrying": 0, "dead_letter": 0}
        for item_id in item_ids:
            outcome = self._process_item(item_id, now)
            if outcome:
                outcomes[outcome] += 1
        return outcomes

    def _process_item(self, item_id: UUID, now: datetime) -> Optional[str]:
        with session_scope(self.session_factory) as db:
            item = ProcessingQueueService.get(db, item_id)
            if item is None:
                return None

            handler = self.handlers.get(CommandType(item.command_type), self.republish)
            command = CommandType(item.command_type).value
            try:
                handler(item)
            except Exception as e:
                item.last_error = str(e)
                item.schedule_retry(now)
                if item.status == QueueStatus.DEAD_LETTER:
                    logger.error(
                        f"Queue item {item.id} dead-lettered after {item.retry_count} attempts: {e}, "
                        f"correlation_id={item.correlation_id}"
                    )
                    outcome = "dead_letter"
                else:
                    logger.warning(
                        f"Queue item {item.id} failed (attempt {item.retry_count}), next try at "
                        f"{item.next_retry_at}: {e}"
                    )
                    outcome = "retrying"
            else:
                item.mark_completed()
                logger.info(
                    f"Replayed {command} item {item.id} for photo {item.photo_id}, "
                    f"correlation_id={item.correlation_id}"
                )
                outcome = "completed"

        metrics_collector.record_queue_item(command, outcome)
        return outcome

    def purge_completed(self, older_than: Optional[timedelta] = None, now: Optional[datetime] = None) -> int:
        """Delete COMPLETED items finished before now - older_than"""
        older_than = older_than or timedelta(days=self.retention_days)
        cutoff = (now or datetime.utcnow()) - older_than
        with session_scope(self.session_factory) as db:
            return ProcessingQueueService.delete_by_status_and_completed_before(
                db, QueueStatus.COMPLETED, cutoff
            )

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals gracefully"""
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.stop()

    def stop(self) -> None:
        self.running = False
        self._stop.set()

    def start(self, install_signal_handlers: bool = True) -> None:
        """
        Poll until stopped.

        Purges old COMPLETED items on start and then about once an hour.
        """
        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._signal_handler)
            signal.signal(signal.SIGTERM, self._signal_handler)

        self.running = True
        self._stop.clear()
        logger.info("Starting ProcessingQueuePoller")

        consecutive_errors = 0
        max_consecutive_errors = 10
        purge_every = max(1, int(3600 / max(self.poll_interval, 1)))
        polls = 0

        while self.running:
            try:
                if polls % purge_every == 0:
                    self.purge_completed()
                self.poll_once()
                consecutive_errors = 0
            except Exception as e:
                logger.error(f"Error in poller loop: {e}", exc_info=True)
                consecutive_errors += 1

                if consecutive_errors >= max_consecutive_errors:
                    logger.critical(
                        f"Too many consecutive errors ({consecutive_errors}), shutting down poller"
                    )
                    self.running = False
                    break

            polls += 1
            self._stop.wait(self.poll_interval)

        logger.info("ProcessingQueuePoller stopped")

    def get_health_status(self) -> Dict:
        with session_scope(self.session_factory) as db:
            counts = ProcessingQueueService.count_by_status(db)
        return {
            "status": "running" if self.running else "stopped",
            "transport": self.primary.provider_type() if self.primary else None,
            "queue": counts,
            "timestamp": datetime.utcnow().isoformat(),
        }


def main():
    """
    Main entry point for running the poller as a standalone process.

    Usage:
        python -m src.workers.queue_poller --interval 5 --batch-size 10
    """
    import argparse

    from src.events.factory import create_primary_publisher

    parser = argparse.ArgumentParser(description="Fallback queue replay worker")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.queue_poll_interval_seconds,
        help="Seconds between polls (default: %(default)s)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.queue_poll_batch_size,
        help="Items replayed per poll (default: %(default)s)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Process a single batch and exit",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    primary = create_primary_publisher(settings)
    if primary is None:
        logger.error("Queue replay needs a broker transport; set EVENT_PUBLISHER to sqs or redis")
        sys.exit(2)

    poller = ProcessingQueuePoller(primary=primary, batch_size=args.batch_size, poll_interval=args.interval)

    try:
        if args.once:
            logger.info(f"Single poll finished: {poller.poll_once()}")
        else:
            poller.start()
    except Exception as e:
        logger.error(f"Poller failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
