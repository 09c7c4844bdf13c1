"""
Per-document lifecycle as an explicit state machine.

    queued -> uploading -> analyzing -> ready -> confirmed
                  |            |          |
                  +-> error <--+          +-> duplicate

Any live document may be discarded. `error`, `confirmed` and `discarded`
are terminal; a failed document is resubmitted as a new queued entry.

transition() is pure: it never mutates its input and raises
InvalidTransition for any (state, event) pair absent from TRANSITIONS.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from ..schemas.extraction import ExtractionResult


class DocumentState(str, Enum):
    """Lifecycle state of a queued document."""

    QUEUED = "queued"
    UPLOADING = "uploading"
    ANALYZING = "analyzing"
    READY = "ready"
    ERROR = "error"
    DUPLICATE = "duplicate"
    CONFIRMED = "confirmed"
    DISCARDED = "discarded"


IN_FLIGHT_STATES = frozenset({DocumentState.UPLOADING, DocumentState.ANALYZING})
TERMINAL_STATES = frozenset(
    {DocumentState.ERROR, DocumentState.CONFIRMED, DocumentState.DISCARDED}
)


class EventKind(str, Enum):
    """Things that happen to a document."""

    ADMIT = "admit"
    UPLOAD_SUCCEEDED = "upload_succeeded"
    UPLOAD_FAILED = "upload_failed"
    ANALYSIS_SUCCEEDED = "analysis_succeeded"
    ANALYSIS_FAILED = "analysis_failed"
    MARK_DUPLICATE = "mark_duplicate"
    COMMIT_FAILED = "commit_failed"
    CONFIRM = "confirm"
    DISCARD = "discard"


TRANSITIONS: dict[tuple[DocumentState, EventKind], DocumentState] = {
    (DocumentState.QUEUED, EventKind.ADMIT): DocumentState.UPLOADING,
    (DocumentState.QUEUED, EventKind.DISCARD): DocumentState.DISCARDED,
    (DocumentState.UPLOADING, EventKind.UPLOAD_SUCCEEDED): DocumentState.ANALYZING,
    (DocumentState.UPLOADING, EventKind.UPLOAD_FAILED): DocumentState.ERROR,
    (DocumentState.UPLOADING, EventKind.DISCARD): DocumentState.DISCARDED,
    (DocumentState.ANALYZING, EventKind.ANALYSIS_SUCCEEDED): DocumentState.READY,
    (DocumentState.ANALYZING, EventKind.ANALYSIS_FAILED): DocumentState.ERROR,
    (DocumentState.ANALYZING, EventKind.DISCARD): DocumentState.DISCARDED,
    (DocumentState.READY, EventKind.MARK_DUPLICATE): DocumentState.DUPLICATE,
    # Commit failures keep the document ready so it can be retried
    (DocumentState.READY, EventKind.COMMIT_FAILED): DocumentState.READY,
    (DocumentState.READY, EventKind.CONFIRM): DocumentState.CONFIRMED,
    (DocumentState.READY, EventKind.DISCARD): DocumentState.DISCARDED,
    (DocumentState.DUPLICATE, EventKind.DISCARD): DocumentState.DISCARDED,
    (DocumentState.ERROR, EventKind.DISCARD): DocumentState.DISCARDED,
}


class InvalidTransition(Exception):
    """Event not allowed in the document's current state."""

    def __init__(self, state: DocumentState, event: EventKind):
        self.state = state
        self.event = event
        super().__init__(f"Cannot apply '{event.value}' to a document in state '{state.value}'")


@dataclass(frozen=True)
class Event:
    """An event plus the data it carries."""

    kind: EventKind
    storage_ref: Optional[str] = None
    extraction: Optional[ExtractionResult] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    duplicate_of: Optional[int] = None


@dataclass(frozen=True)
class QueuedDocument:
    """A submitted file and everything learned about it so far."""

    id: str
    file_name: str
    data: bytes
    mime_type: str
    state: DocumentState = DocumentState.QUEUED
    extraction: Optional[ExtractionResult] = None
    storage_ref: Optional[str] = None
    error_message: Optional[str] = None
    error_kind: Optional[str] = None
    duplicate_of: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def in_flight(self) -> bool:
        return self.state in IN_FLIGHT_STATES

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def __repr__(self) -> str:
        # Keep document bytes out of logs and tracebacks
        return (
            f"QueuedDocument(id={self.id!r}, file_name={self.file_name!r}, "
            f"state={self.state.value!r}, size={self.size})"
        )


def transition(doc: QueuedDocument, event: Event) -> QueuedDocument:
    """
    Apply an event to a document and return the new document.

    Raises:
        InvalidTransition: the event is not allowed in the current state
        ValueError: the event lacks the data its transition requires
    """
    target = TRANSITIONS.get((doc.state, event.kind))
    if target is None:
        raise InvalidTransition(doc.state, event.kind)

    kind = event.kind
    if kind == EventKind.UPLOAD_SUCCEEDED:
        if not event.storage_ref:
            raise ValueError("upload_succeeded requires a storage reference")
        return replace(doc, state=target, storage_ref=event.storage_ref)

    if kind == EventKind.ANALYSIS_SUCCEEDED:
        if event.extraction is None:
            raise ValueError("analysis_succeeded requires an extraction")
        return replace(doc, state=target, extraction=event.extraction)

    if kind in (EventKind.UPLOAD_FAILED, EventKind.ANALYSIS_FAILED, EventKind.COMMIT_FAILED):
        if not event.message:
            raise ValueError(f"{kind.value} requires a message")
        return replace(
            doc, state=target, error_message=event.message, error_kind=event.error_kind
        )

    if kind == EventKind.MARK_DUPLICATE:
        message = event.message or (
            f"Already registered (#{event.duplicate_of})"
            if event.duplicate_of is not None
            else "Already registered"
        )
        return replace(
            doc, state=target, duplicate_of=event.duplicate_of, error_message=message
        )

    if kind == EventKind.CONFIRM:
        return replace(doc, state=target, error_message=None, error_kind=None)

    return replace(doc, state=target)
