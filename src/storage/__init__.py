"""Storage backends package"""

from .base import StorageMetadata, StorageProvider
from .factory import StorageProviderFactory, UnknownStorageProvider
from .local import LocalFileStorageProvider
from .resilient import ResilientStorageProvider
from .s3 import S3StorageProvider

__all__ = [
    "StorageMetadata",
    "StorageProvider",
    "StorageProviderFactory",
    "UnknownStorageProvider",
    "LocalFileStorageProvider",
    "ResilientStorageProvider",
    "S3StorageProvider",
]
