"""Local filesystem storage backend"""

import hashlib
import logging
import mimetypes
import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Optional, Union

from src.config import settings
from src.exceptions import StorageFailure
from src.storage.base import StorageMetadata, StorageProvider

logger = logging.getLogger(__name__)


class LocalFileStorageProvider(StorageProvider):
    """Stores objects as files under a root directory; used for development and tests"""

    provider_name = "local"

    def __init__(self, root: Optional[str] = None, base_url: Optional[str] = None):
        self.root = Path(root or settings.local_storage_path).resolve()
        self.base_url = base_url if base_url is not None else settings.local_storage_base_url
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Local storage initialized at {self.root}")

    def _path(self, key: str, operation: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise StorageFailure(self.provider_name, operation, ValueError(f"Key escapes storage root: {key}"))
        return path

    def url_for(self, key: str) -> str:
        if self.base_url:
            return f"{self.base_url.rstrip('/')}/{key}"
        return (self.root / key).as_uri()

    def upload(
        self,
        key: str,
        data: Union[bytes, BinaryIO],
        content_type: str,
        size: Optional[int] = None,
    ) -> str:
        path = self._path(key, "upload")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                if isinstance(data, (bytes, bytearray)):
                    f.write(data)
                else:
                    data.seek(0)
                    shutil.copyfileobj(data, f)
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")
            raise StorageFailure(self.provider_name, "upload", e)

        logger.info(f"Stored {key} ({path.stat().st_size} bytes)")
        return self.url_for(key)

    def download(self, key: str) -> BinaryIO:
        path = self._path(key, "download")
        try:
            return open(path, "rb")
        except OSError as e:
            raise StorageFailure(self.provider_name, "download", e)

    def delete(self, key: str) -> bool:
        path = self._path(key, "delete")
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageFailure(self.provider_name, "delete", e)
        logger.info(f"Deleted {key}")
        return True

    def exists(self, key: str) -> bool:
        return self._path(key, "exists").is_file()

    def presign(self, key: str, ttl_seconds: int) -> str:
        # Local files have no signing; the plain URL is returned
        if not self.exists(key):
            raise StorageFailure(self.provider_name, "presign", FileNotFoundError(key))
        return self.url_for(key)

    def metadata(self, key: str) -> StorageMetadata:
        path = self._path(key, "metadata")
        try:
            stat = path.stat()
            md5 = hashlib.md5()
            with open(path, "rb") as f:
                for chunk in iter(lambda: f.read(64 * 1024), b""):
                    md5.update(chunk)
        except OSError as e:
            raise StorageFailure(self.provider_name, "metadata", e)

        content_type, _ = mimetypes.guess_type(path.name)
        return StorageMetadata(
            key=key,
            content_type=content_type or "application/octet-stream",
            content_length=stat.st_size,
            etag=md5.hexdigest(),
            last_modified=datetime.utcfromtimestamp(stat.st_mtime),
            storage_class="LOCAL",
        )

    def is_available(self) -> bool:
        return self.root.is_dir() and os.access(self.root, os.W_OK)
