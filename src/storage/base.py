"""Storage capability shared by every backend"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Dict, Optional, Union


@dataclass(frozen=True)
class StorageMetadata:
    """Object metadata as reported by a storage backend"""

    key: str
    content_type: Optional[str] = None
    content_length: Optional[int] = None
    etag: Optional[str] = None
    last_modified: Optional[datetime] = None
    user_metadata: Dict[str, str] = field(default_factory=dict)
    storage_class: Optional[str] = None
    encryption: Optional[str] = None


class StorageProvider(ABC):
    """
    Uniform object storage operations.

    Every operation raises StorageFailure(provider, operation, cause) when the
    backend fails.
    """

    provider_name: str = "unknown"

    @abstractmethod
    def upload(
        self,
        key: str,
        data: Union[bytes, BinaryIO],
        content_type: str,
        size: Optional[int] = None,
    ) -> str:
        """Store data under key and return its URL"""

    @abstractmethod
    def download(self, key: str) -> BinaryIO:
        """Return a readable stream over the object's bytes"""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete the object; returns True if the backend reports success"""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check whether the object exists"""

    @abstractmethod
    def presign(self, key: str, ttl_seconds: int) -> str:
        """Time-limited URL for reading the object"""

    @abstractmethod
    def metadata(self, key: str) -> StorageMetadata:
        """Object metadata"""

    @abstractmethod
    def url_for(self, key: str) -> str:
        """Public URL of a key, without contacting the backend"""

    def is_available(self) -> bool:
        return True

    def download_bytes(self, key: str) -> bytes:
        """Convenience wrapper reading the whole object into memory"""
        stream = self.download(key)
        try:
            return stream.read()
        finally:
            stream.close()
