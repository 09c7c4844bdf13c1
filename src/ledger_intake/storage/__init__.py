"""
File Store Gateway.

Backends:
- LocalFileStore: writes below a local directory
- HttpFileStore: PUTs to an object storage gateway
"""

from .base import (
    MIME_TYPES,
    FileStore,
    StorageAPIError,
    StorageConnectionError,
    StorageError,
    StoredFile,
    build_storage_path,
    classify_storage_error,
    guess_mime_type,
    sanitize_file_name,
)
from .http_store import HttpFileStore
from .local import LocalFileStore

__all__ = [
    "create_file_store",
    "MIME_TYPES",
    "FileStore",
    "HttpFileStore",
    "LocalFileStore",
    "StorageAPIError",
    "StorageConnectionError",
    "StorageError",
    "StoredFile",
    "build_storage_path",
    "classify_storage_error",
    "guess_mime_type",
    "sanitize_file_name",
]


def create_file_store(config) -> FileStore:
    """Build the configured file store backend."""
    storage = config.storage
    if storage.backend == "http":
        return HttpFileStore(
            base_url=storage.base_url,
            token=storage.token,
            bucket=storage.bucket,
            folder=storage.folder,
            timeout=storage.timeout_seconds,
            max_retries=storage.max_retries,
        )
    return LocalFileStore(storage.root_path, folder=storage.folder)
