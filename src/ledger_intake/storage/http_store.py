"""
Object storage gateway client (HTTP).

Uploads are PUT to {base_url}/object/{bucket}/{path} with a bearer token.
"""

import logging
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .base import FileStore, StorageAPIError, StorageConnectionError, StorageError, StoredFile

logger = logging.getLogger(__name__)


class HttpFileStore(FileStore):
    """
    File store backed by an HTTP object storage gateway.

    Features:
    - Bearer token authentication
    - Automatic retry with backoff on transient failures
    - Never overwrites an existing object (x-upsert: false)
    """

    DEFAULT_TIMEOUT = 30

    def __init__(
        self,
        base_url: str,
        token: str,
        bucket: str = "accounting-documents",
        folder: str = "contabilidade",
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize storage client.

        Args:
            base_url: Storage gateway URL (e.g., "http://localhost:54321/storage/v1")
            token: Bearer token for authentication
            bucket: Target bucket name
            folder: Logical folder prefix of every stored path
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        super().__init__(folder)
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {token}"})

        # Uploads are never replayed; a 5xx on PUT surfaces as a StorageError
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET", "HEAD"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/object/{self.bucket}/{path}"

    def _request(
        self,
        method: str,
        path: str,
        data: Optional[bytes] = None,
        headers: Optional[dict] = None,
    ) -> requests.Response:
        """Make a storage request with error handling."""
        try:
            response = self.session.request(
                method=method,
                url=self._object_url(path),
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise StorageConnectionError(f"Failed to connect to storage at {self.base_url}: {e}")
        except requests.exceptions.Timeout as e:
            raise StorageConnectionError(f"Request to storage timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise StorageError(f"Storage request failed: {e}")
        return response

    def upload(self, path: str, data: bytes, mime_type: str) -> StoredFile:
        response = self._request(
            "PUT",
            path,
            data=data,
            headers={"Content-Type": mime_type, "x-upsert": "false"},
        )
        if not response.ok:
            raise StorageAPIError(
                status_code=response.status_code,
                message=response.reason or "",
                response_body=response.text,
            )

        logger.debug(f"Uploaded {len(data)} bytes to bucket {self.bucket}")
        return StoredFile(
            path=path, size=len(data), mime_type=mime_type, url=self._object_url(path)
        )

    def exists(self, path: str) -> bool:
        response = self._request("HEAD", path)
        if response.status_code == 404:
            return False
        if not response.ok:
            raise StorageAPIError(status_code=response.status_code, message=response.reason or "")
        return True
