"""SQS event publisher"""

import logging
from typing import Optional
import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
)
from botocore.config import Config
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from src.config import settings
from src.events.base import EventPublisher
from src.exceptions import EventPublishFailure
from src.monitoring.metrics import metrics_collector
from src.schemas.events import PhotoEventMessage

logger = logging.getLogger(__name__)


class SqsEventPublisher(EventPublisher):
    """Publishes events as SQS messages on a single queue"""

    PROVIDER_TYPE = "SQS"

    def __init__(self, queue_name: Optional[str] = None, client=None):
        """
        Initialize SQS client with retry configuration.

        Args:
            queue_name: Queue to publish to (default: settings.sqs_event_queue_name)
            client: Pre-built boto3 SQS client (tests)
        """
        self.queue_name = queue_name or settings.sqs_event_queue_name
        self._queue_url: Optional[str] = None

        if client is not None:
            self.sqs_client = client
            return

        retry_config = Config(
            retries={
                "max_attempts": 3,
                "mode": "standard",
            },
            connect_timeout=5,
            read_timeout=10,
        )

        client_kwargs = {
            "region_name": settings.aws_region,
            "config": retry_config,
        }

        # Add credentials if provided
        if settings.aws_access_key_id and settings.aws_secret_access_key:
            client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
            client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key

        # Use custom endpoint for local development
        if settings.aws_endpoint_url:
            client_kwargs["endpoint_url"] = settings.aws_endpoint_url

        try:
            self.sqs_client = boto3.client("sqs", **client_kwargs)
            logger.info("SQS client initialized")
        except Exception as e:
            logger.error(f"Failed to initialize SQS client: {e}")
            # Publisher reports itself unavailable; the fallback takes over
            self.sqs_client = None

    def _get_queue_url(self) -> Optional[str]:
        """
        Get or retrieve the queue URL.

        Returns:
            Queue URL or None if the queue cannot be resolved
        """
        if not self.sqs_client:
            return None

        # Return cached URL if available
        if self._queue_url:
            return self._queue_url

        try:
            response = self.sqs_client.get_queue_url(QueueName=self.queue_name)
            self._queue_url = response["QueueUrl"]
            logger.info(f"Found queue URL for {self.queue_name}: {self._queue_url}")
            return self._queue_url
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "AWS.SimpleQueueService.NonExistentQueue":
                logger.warning(f"Queue {self.queue_name} does not exist")
            else:
                logger.error(f"Error getting queue URL: {error_code} - {e}")
            return None
        except BotoCoreError as e:
            logger.error(f"Error getting queue URL: {e}")
            return None

    @retry(
        retry=retry_if_exception_type((EndpointConnectionError, ConnectTimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    def _send(self, queue_url: str, topic: str, event: PhotoEventMessage, correlation_id: Optional[str]) -> str:
        attributes = {
            "EventType": {"StringValue": event.event_type, "DataType": "String"},
            "Topic": {"StringValue": topic, "DataType": "String"},
            "PhotoId": {"StringValue": str(event.photo_id), "DataType": "String"},
        }
        if correlation_id:
            attributes["CorrelationId"] = {"StringValue": correlation_id, "DataType": "String"}

        response = self.sqs_client.send_message(
            QueueUrl=queue_url,
            MessageBody=event.model_dump_json(),
            MessageAttributes=attributes,
        )
        return response.get("MessageId")

    def publish_with_correlation(
        self, topic: str, event: PhotoEventMessage, correlation_id: Optional[str]
    ) -> None:
        """
        Send one event to the queue.

        Raises:
            EventPublishFailure: If the queue cannot be resolved or the send fails
        """
        queue_url = self._get_queue_url()
        if not queue_url:
            metrics_collector.record_event_published(self.PROVIDER_TYPE, event.event_type, "failure")
            raise EventPublishFailure(
                event.event_type, topic, RuntimeError(f"Queue {self.queue_name} not available")
            )

        try:
            message_id = self._send(queue_url, topic, event, correlation_id)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to publish {event.event_type} for photo {event.photo_id}: {e}")
            metrics_collector.record_event_published(self.PROVIDER_TYPE, event.event_type, "failure")
            raise EventPublishFailure(event.event_type, topic, e)

        metrics_collector.record_event_published(self.PROVIDER_TYPE, event.event_type, "success")
        logger.info(
            f"Published {event.event_type} for photo {event.photo_id} to {topic}. "
            f"MessageId: {message_id}, correlation_id={correlation_id}"
        )

    def is_available(self) -> bool:
        return self._get_queue_url() is not None

    def provider_type(self) -> str:
        return self.PROVIDER_TYPE
