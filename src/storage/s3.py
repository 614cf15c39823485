"""S3 storage backend"""

import logging
from typing import BinaryIO, Optional, Union
import boto3
from botocore.exceptions import BotoCoreError, ClientError
from botocore.config import Config

from src.config import settings
from src.exceptions import StorageFailure
from src.storage.base import StorageMetadata, StorageProvider

logger = logging.getLogger(__name__)


class S3StorageProvider(StorageProvider):
    """Storage backend for S3 and S3-compatible stores (MinIO)"""

    provider_name = "s3"

    def __init__(self, bucket: Optional[str] = None, client=None):
        """
        Initialize S3 client with retry configuration.

        Args:
            bucket: Bucket name (default: settings.s3_bucket)
            client: Pre-built boto3 S3 client (tests)
        """
        self.bucket = bucket or settings.s3_bucket

        if client is not None:
            self.s3_client = client
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

        # Add credentials if provided (not needed for IAM roles)
        if settings.aws_access_key_id and settings.aws_secret_access_key:
            client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
            client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key

        # Use custom endpoint for local development (MinIO)
        if settings.aws_endpoint_url:
            client_kwargs["endpoint_url"] = settings.aws_endpoint_url

        try:
            self.s3_client = boto3.client("s3", **client_kwargs)
            logger.info(f"S3 client initialized for bucket: {self.bucket}")
        except Exception as e:
            logger.error(f"Failed to initialize S3 client: {e}")
            raise StorageFailure(self.provider_name, "initialize", e)

    def _failure(self, operation: str, error: Exception) -> StorageFailure:
        if isinstance(error, ClientError):
            error_code = error.response.get("Error", {}).get("Code", "Unknown")
            logger.error(f"S3 ClientError during {operation}: {error_code} - {error}")
        else:
            logger.error(f"Unexpected S3 error during {operation}: {error}")
        return StorageFailure(self.provider_name, operation, error)

    def url_for(self, key: str) -> str:
        if settings.aws_endpoint_url:
            # For local development with MinIO
            return f"{settings.aws_endpoint_url}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{settings.aws_region}.amazonaws.com/{key}"

    def upload(
        self,
        key: str,
        data: Union[bytes, BinaryIO],
        content_type: str,
        size: Optional[int] = None,
    ) -> str:
        """
        Upload bytes or a file object to S3.

        Args:
            key: S3 key for the object
            data: Bytes or readable binary stream
            content_type: Content type of the file
            size: Content length in bytes, if known

        Returns:
            URL of uploaded object

        Raises:
            StorageFailure: If upload fails
        """
        put_kwargs = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
        }
        if size is not None:
            put_kwargs["ContentLength"] = size

        if hasattr(data, "seek"):
            data.seek(0)

        try:
            self.s3_client.put_object(**put_kwargs)
        except (ClientError, BotoCoreError) as e:
            raise self._failure("upload", e)

        url = self.url_for(key)
        logger.info(f"Uploaded {size if size is not None else 'unknown'} bytes to {url}")
        return url

    def download(self, key: str) -> BinaryIO:
        """
        Open an object for reading.

        Raises:
            StorageFailure: If the object cannot be fetched
        """
        try:
            response = self.s3_client.get_object(Bucket=self.bucket, Key=key)
            logger.debug(f"Opened {self.bucket}/{key} for download")
            return response["Body"]
        except (ClientError, BotoCoreError) as e:
            raise self._failure("download", e)

    def delete(self, key: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self.bucket, Key=key)
            logger.info(f"Deleted object: {key}")
            return True
        except (ClientError, BotoCoreError) as e:
            raise self._failure("delete", e)

    def exists(self, key: str) -> bool:
        """
        Check if an object exists in S3.

        Returns:
            True if object exists, False on a 404
        """
        try:
            self.s3_client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise self._failure("exists", e)
        except BotoCoreError as e:
            raise self._failure("exists", e)

    def presign(self, key: str, ttl_seconds: int) -> str:
        try:
            return self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._failure("presign", e)

    def metadata(self, key: str) -> StorageMetadata:
        """
        Get metadata for an S3 object.

        Raises:
            StorageFailure: If the object is missing or the call fails
        """
        try:
            response = self.s3_client.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._failure("metadata", e)

        return StorageMetadata(
            key=key,
            content_type=response.get("ContentType"),
            content_length=response.get("ContentLength"),
            etag=(response.get("ETag") or "").strip('"') or None,
            last_modified=response.get("LastModified"),
            user_metadata=dict(response.get("Metadata") or {}),
            storage_class=response.get("StorageClass"),
            encryption=response.get("ServerSideEncryption"),
        )

    def is_available(self) -> bool:
        try:
            self.s3_client.head_bucket(Bucket=self.bucket)
            return True
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"S3 bucket {self.bucket} not reachable: {e}")
            return False
