"""
File store contract and shared helpers.

A file store durably keeps an uploaded binary and returns a stable
reference path. Paths follow one convention for every backend:

    {folder}/{unit_id}/{YYYY}/{MM}/{timestamp_ms}_{token}_{sanitized_name}

The millisecond timestamp plus a random token makes paths collision-free
without any coordination between uploads.
"""

import asyncio
import re
import unicodedata
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Optional

# Accepted upload types, by lowercase extension
MIME_TYPES: dict[str, str] = {
    ".pdf": "application/pdf",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".xml": "application/xml",
}


class StorageError(Exception):
    """Base exception for file store errors.

    `user_message` is safe to show to the back-office user.
    """

    def __init__(self, message: str, user_message: Optional[str] = None):
        self.user_message = user_message or classify_storage_error(message)
        super().__init__(message)


class StorageConnectionError(StorageError):
    """Failed to reach the storage backend."""

    def __init__(self, message: str):
        super().__init__(message, "Could not reach file storage. Check connectivity.")


class StorageAPIError(StorageError):
    """Storage backend returned an error response."""

    def __init__(self, status_code: int, message: str, response_body: Optional[str] = None):
        self.status_code = status_code
        self.response_body = response_body
        detail = f"{message} {response_body or ''}".strip()
        super().__init__(f"Storage API error {status_code}: {detail}")


def classify_storage_error(message: str) -> str:
    """Map a raw storage error message to a user-facing explanation."""
    lowered = message.lower()
    if "not found" in lowered or "bucket" in lowered:
        return "Storage configuration error. Contact the administrator."
    if "mime" in lowered or "type" in lowered:
        return "File type not supported. Use PDF, image or XML."
    if "size" in lowered or "large" in lowered:
        return "File too large. The limit is 10MB."
    if "auth" in lowered or "jwt" in lowered:
        return "Session expired. Sign in again."
    return f"Upload failed: {message}"


def guess_mime_type(file_name: str) -> Optional[str]:
    """MIME type for an accepted extension, None otherwise."""
    return MIME_TYPES.get(PurePosixPath(file_name).suffix.lower())


def sanitize_file_name(file_name: str) -> str:
    """
    Make a file name safe for object storage keys.

    Strips accents, drops everything except ASCII letters, digits, "_",
    "." and "-", turns whitespace runs into "_" and lowercases the extension.

    Examples:
        >>> sanitize_file_name("Nota Fiscal nº 12 São Paulo.PDF")
        'Nota_Fiscal_n_12_Sao_Paulo.pdf'
    """
    last_dot = file_name.rfind(".")
    if last_dot > 0:
        base, ext = file_name[:last_dot], file_name[last_dot:].lower()
    else:
        base, ext = file_name, ""

    decomposed = unicodedata.normalize("NFD", base)
    without_accents = "".join(c for c in decomposed if unicodedata.category(c) != "Mn")
    cleaned = re.sub(r"[^A-Za-z0-9_\s.-]", "", without_accents)
    cleaned = re.sub(r"\s+", "_", cleaned)
    cleaned = re.sub(r"_+", "_", cleaned).strip("_")

    return (cleaned or "file") + ext


def build_storage_path(
    folder: str,
    unit_id: str,
    file_name: str,
    now: Optional[datetime] = None,
    token: Optional[str] = None,
) -> str:
    """Compose the storage path for a new upload."""
    now = now or datetime.now(timezone.utc)
    token = token or uuid.uuid4().hex[:8]
    timestamp_ms = int(now.timestamp() * 1000)
    return (
        f"{folder}/{unit_id}/{now.year:04d}/{now.month:02d}/"
        f"{timestamp_ms}_{token}_{sanitize_file_name(file_name)}"
    )


@dataclass
class StoredFile:
    """Reference to a stored binary."""

    path: str
    size: int
    mime_type: str
    url: Optional[str] = None


class FileStore(ABC):
    """
    Durable binary storage.

    Backends implement the blocking `upload`; the pipeline awaits `store`,
    which runs the upload in a worker thread.
    """

    def __init__(self, folder: str = "contabilidade"):
        self.folder = folder

    @abstractmethod
    def upload(self, path: str, data: bytes, mime_type: str) -> StoredFile:
        """Store data at path. Raises StorageError on failure."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check whether a path has been stored."""

    async def store(self, unit_id: str, file_name: str, data: bytes, mime_type: str) -> StoredFile:
        """Store an uploaded file under a fresh, collision-free path."""
        path = build_storage_path(self.folder, unit_id, file_name)
        return await asyncio.to_thread(self.upload, path, data, mime_type)
