"""
Recognition service adapter.

Sends a document to the external recognition service and returns an
ExtractionResult. Binary documents travel base64-encoded; XML fiscal
documents are posted as text to a structured-parsing endpoint.

The adapter never retries. Every failure is raised as a RecognitionError
whose kind is derived from the HTTP status and fixed message substrings;
anything unrecognized becomes UNKNOWN with the original message kept.
"""

import base64
import logging
from enum import Enum
from typing import Optional

import httpx

from ..schemas.extraction import ExtractionResult

logger = logging.getLogger(__name__)

XML_MIME_TYPES = ("application/xml", "text/xml")


class RecognitionErrorKind(str, Enum):
    """Classified recognition failure."""

    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    AUTH_FAILURE = "auth_failure"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


USER_MESSAGES: dict[RecognitionErrorKind, str] = {
    RecognitionErrorKind.RATE_LIMITED: "Recognition service is busy, try again in a few seconds.",
    RecognitionErrorKind.TIMEOUT: (
        "Recognition timed out, the document may be too large or complex."
    ),
    RecognitionErrorKind.AUTH_FAILURE: "Recognition service misconfigured, contact support.",
    RecognitionErrorKind.NETWORK_ERROR: (
        "Could not reach the recognition service, check connectivity."
    ),
}


class RecognitionError(Exception):
    """Recognition call failed."""

    def __init__(
        self,
        kind: RecognitionErrorKind,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.kind = kind
        self.message = message
        self.status_code = status_code
        super().__init__(f"{kind.value}: {message}")

    @property
    def user_message(self) -> str:
        """Explanation shown to the user (raw message for UNKNOWN)."""
        return USER_MESSAGES.get(self.kind, self.message)


def classify_error(status_code: Optional[int], message: str) -> RecognitionErrorKind:
    """
    Classify a failure by status code and message substrings.

    Examples:
        >>> classify_error(429, "")
        <RecognitionErrorKind.RATE_LIMITED: 'rate_limited'>
        >>> classify_error(None, "Rate limit exceeded")
        <RecognitionErrorKind.RATE_LIMITED: 'rate_limited'>
        >>> classify_error(500, "boom")
        <RecognitionErrorKind.UNKNOWN: 'unknown'>
    """
    text = (message or "").lower()

    if status_code == 429 or "429" in text or "rate limit" in text:
        return RecognitionErrorKind.RATE_LIMITED
    if status_code in (408, 504) or "timeout" in text or "timed out" in text:
        return RecognitionErrorKind.TIMEOUT
    if (
        status_code in (401, 402, 403)
        or "unauthorized" in text
        or "jwt" in text
        or "credits" in text
    ):
        return RecognitionErrorKind.AUTH_FAILURE
    if "network" in text or "failed to fetch" in text or "connection" in text:
        return RecognitionErrorKind.NETWORK_ERROR
    return RecognitionErrorKind.UNKNOWN


def is_xml(mime_type: str, file_name: Optional[str] = None) -> bool:
    """Structured fiscal documents go to the XML endpoint."""
    if mime_type in XML_MIME_TYPES:
        return True
    return bool(file_name) and file_name.lower().endswith(".xml")


class RecognitionClient:
    """
    Async client for the recognition service.

    Usage:
        async with RecognitionClient(base_url, token, unit_id="u1") as client:
            result = await client.analyze(data, "application/pdf")
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        unit_id: str = "default",
        document_endpoint: str = "/analyze-accounting-document",
        xml_endpoint: str = "/analyze-accounting-xml",
        timeout_seconds: int = 60,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.unit_id = unit_id
        self.document_endpoint = document_endpoint
        self.xml_endpoint = xml_endpoint
        self.timeout_seconds = timeout_seconds

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        # connect/write/pool are short; read covers the model's inference time
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(timeout_seconds),
                write=30.0,
                pool=10.0,
            ),
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config) -> "RecognitionClient":
        recognition = config.recognition
        return cls(
            base_url=recognition.base_url,
            token=recognition.token,
            unit_id=config.workflow.unit_id,
            document_endpoint=recognition.document_endpoint,
            xml_endpoint=recognition.xml_endpoint,
            timeout_seconds=recognition.timeout_seconds,
        )

    async def __aenter__(self) -> "RecognitionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def analyze(
        self, data: bytes, mime_type: str, file_name: Optional[str] = None
    ) -> ExtractionResult:
        """
        Analyze one document.

        Raises:
            RecognitionError: on any transport, HTTP or service-reported failure
        """
        if is_xml(mime_type, file_name):
            url = f"{self.base_url}{self.xml_endpoint}"
            payload = {"xml": data.decode("utf-8", errors="replace"), "unitId": self.unit_id}
        else:
            url = f"{self.base_url}{self.document_endpoint}"
            payload = {
                "imageBase64": base64.b64encode(data).decode("ascii"),
                "mimeType": mime_type,
                "unitId": self.unit_id,
            }

        logger.debug("Calling recognition service at %s (%d bytes)", url, len(data))

        try:
            response = await self._client.post(url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            logger.warning("Recognition request timed out after %ds", self.timeout_seconds)
            raise RecognitionError(RecognitionErrorKind.TIMEOUT, str(e) or "timed out") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            detail = e.response.text or e.response.reason_phrase
            logger.error("Recognition API error %s: %s", status, detail)
            raise RecognitionError(classify_error(status, detail), detail, status) from e
        except httpx.RequestError as e:
            logger.error("Recognition request failed: %s (URL: %s)", e, url)
            raise RecognitionError(
                RecognitionErrorKind.NETWORK_ERROR, f"Network error: {e}"
            ) from e
        except ValueError as e:
            raise RecognitionError(
                RecognitionErrorKind.UNKNOWN, f"Invalid response from recognition service: {e}"
            ) from e

        if not isinstance(body, dict):
            raise RecognitionError(
                RecognitionErrorKind.UNKNOWN, "Invalid response from recognition service"
            )
        if body.get("error"):
            message = str(body["error"])
            raise RecognitionError(classify_error(None, message), message)

        result = ExtractionResult.from_api_response(body)
        logger.debug(
            "Recognition returned %s/%s (confidence %.2f)",
            result.document_type.value,
            result.classification_hint.value,
            result.confidence,
        )
        return result
