"""
Recognition Service Adapter (OCR/AI extraction over HTTP).
"""

from .client import (
    USER_MESSAGES,
    RecognitionClient,
    RecognitionError,
    RecognitionErrorKind,
    classify_error,
    is_xml,
)

__all__ = [
    "USER_MESSAGES",
    "RecognitionClient",
    "RecognitionError",
    "RecognitionErrorKind",
    "classify_error",
    "is_xml",
]
