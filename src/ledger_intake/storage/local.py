"""
Local filesystem file store.
"""

import logging
from pathlib import Path

from .base import FileStore, StorageError, StoredFile

logger = logging.getLogger(__name__)


class LocalFileStore(FileStore):
    """Stores files below a root directory, mirroring the storage path."""

    def __init__(self, root: Path | str, folder: str = "contabilidade"):
        super().__init__(folder)
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise StorageError(f"Path escapes storage root: {path}", "Invalid storage path.")
        return target

    def upload(self, path: str, data: bytes, mime_type: str) -> StoredFile:
        target = self._resolve(path)
        if target.exists():
            # Paths are unique by construction; refuse to overwrite
            raise StorageError(
                f"Object already exists: {path}", "Upload failed: file already stored."
            )
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

        logger.debug(f"Stored {len(data)} bytes at {path}")
        return StoredFile(path=path, size=len(data), mime_type=mime_type, url=target.as_uri())

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def read(self, path: str) -> bytes:
        """Read a stored file back."""
        try:
            return self._resolve(path).read_bytes()
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {path}") from e
