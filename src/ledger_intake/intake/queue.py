"""
Intake queue: bounded-concurrency upload and analysis of submitted files.

The queue is an arena: documents live in a dict keyed by id, and a separate
id list keeps enqueue order for FIFO admission. Document state changes only
through state_machine.transition().

At most `max_concurrent` documents are uploading or analyzing at any time.
Whenever a slot frees, admit_next() starts the oldest queued documents.
Failures move one document to `error` and never affect the others.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional, Protocol

from ..config import DEFAULT_ALLOWED_EXTENSIONS
from ..recognition.client import RecognitionError
from ..schemas.extraction import ExtractionResult
from ..services.classification import OwnTaxIdClassifier
from ..storage.base import FileStore, StorageError, guess_mime_type
from .state_machine import (
    DocumentState,
    Event,
    EventKind,
    QueuedDocument,
    transition,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT = 2
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024

STORAGE_ERROR_KIND = "storage"
INTERNAL_ERROR_KIND = "internal"


class Recognizer(Protocol):
    async def analyze(
        self, data: bytes, mime_type: str, file_name: Optional[str] = None
    ) -> ExtractionResult: ...


@dataclass(frozen=True)
class IncomingFile:
    """A file offered to the queue."""

    name: str
    data: bytes
    mime_type: Optional[str] = None

    @classmethod
    def from_path(cls, path: Path) -> "IncomingFile":
        return cls(name=path.name, data=path.read_bytes())


@dataclass
class RejectedFile:
    file_name: str
    reason: str


@dataclass
class EnqueueReport:
    """Which offered files were accepted (by new document id) and which were not."""

    accepted: list[str] = field(default_factory=list)
    rejected: list[RejectedFile] = field(default_factory=list)


class IntakeQueue:
    """
    Owns queued documents and drives them through upload and analysis.

    Must be used from a running event loop: enqueue() and admit_next()
    schedule processing tasks on it.
    """

    def __init__(
        self,
        file_store: FileStore,
        recognizer: Recognizer,
        unit_id: str = "default",
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        allowed_extensions: Iterable[str] = DEFAULT_ALLOWED_EXTENSIONS,
        max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE,
        classifier: Optional[OwnTaxIdClassifier] = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self.file_store = file_store
        self.recognizer = recognizer
        self.unit_id = unit_id
        self.max_concurrent = max_concurrent
        self.allowed_extensions = tuple(ext.lower() for ext in allowed_extensions)
        self.max_file_size_bytes = max_file_size_bytes
        self.classifier = classifier

        self._documents: dict[str, QueuedDocument] = {}
        self._order: list[str] = []
        self._tasks: dict[str, asyncio.Task] = {}
        self._listeners: list[Callable[[QueuedDocument], None]] = []

    @classmethod
    def from_config(cls, config, file_store: FileStore, recognizer: Recognizer) -> "IntakeQueue":
        classifier = OwnTaxIdClassifier(config.workflow.own_tax_ids)
        return cls(
            file_store,
            recognizer,
            unit_id=config.workflow.unit_id,
            max_concurrent=config.intake.max_concurrent,
            allowed_extensions=config.intake.allowed_extensions,
            max_file_size_bytes=config.intake.max_file_size_bytes,
            classifier=classifier if classifier.enabled else None,
        )

    # Lookup

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, doc_id: str) -> bool:
        return doc_id in self._documents

    def get(self, doc_id: str) -> Optional[QueuedDocument]:
        return self._documents.get(doc_id)

    def documents(self) -> list[QueuedDocument]:
        """All tracked documents in enqueue order."""
        return [self._documents[doc_id] for doc_id in self._order]

    def in_state(self, *states: DocumentState) -> list[QueuedDocument]:
        return [doc for doc in self.documents() if doc.state in states]

    def ready_documents(self) -> list[QueuedDocument]:
        return self.in_state(DocumentState.READY)

    def in_flight_count(self) -> int:
        return sum(1 for doc in self._documents.values() if doc.in_flight)

    def subscribe(self, listener: Callable[[QueuedDocument], None]) -> None:
        """Call listener with the new document after every state change."""
        self._listeners.append(listener)

    # Intake

    def _rejection_reason(self, incoming: IncomingFile) -> Optional[str]:
        ext = PurePosixPath(incoming.name).suffix.lower()
        if ext not in self.allowed_extensions:
            allowed = ", ".join(self.allowed_extensions)
            return f"File type not supported ({ext or 'no extension'}). Allowed: {allowed}"
        if len(incoming.data) == 0:
            return "File is empty"
        if len(incoming.data) > self.max_file_size_bytes:
            limit_mb = self.max_file_size_bytes / (1024 * 1024)
            return f"File too large. The limit is {limit_mb:g}MB."
        return None

    def enqueue(self, files: Iterable[IncomingFile]) -> EnqueueReport:
        """
        Accept the valid subset of files and start processing.

        Rejected files are reported with a reason; they never prevent the
        other files from being accepted.
        """
        report = EnqueueReport()
        for incoming in files:
            reason = self._rejection_reason(incoming)
            if reason:
                logger.info("Rejected %s: %s", incoming.name, reason)
                report.rejected.append(RejectedFile(incoming.name, reason))
                continue

            doc = QueuedDocument(
                id=uuid.uuid4().hex[:12],
                file_name=incoming.name,
                data=incoming.data,
                mime_type=(
                    incoming.mime_type
                    or guess_mime_type(incoming.name)
                    or "application/octet-stream"
                ),
            )
            self._documents[doc.id] = doc
            self._order.append(doc.id)
            report.accepted.append(doc.id)
            logger.debug("Queued %s as %s (%d bytes)", doc.file_name, doc.id, doc.size)

        if report.accepted:
            self.admit_next()
        return report

    def admit_next(self) -> list[str]:
        """
        Start queued documents, oldest first, until all slots are taken.

        Returns:
            Ids of the documents admitted by this call.
        """
        free = self.max_concurrent - self.in_flight_count()
        admitted: list[str] = []
        if free <= 0:
            return admitted

        for doc_id in list(self._order):
            if len(admitted) >= free:
                break
            if self._documents[doc_id].state != DocumentState.QUEUED:
                continue
            self._apply(doc_id, Event(EventKind.ADMIT))
            self._tasks[doc_id] = asyncio.get_running_loop().create_task(
                self._process(doc_id), name=f"intake-{doc_id}"
            )
            admitted.append(doc_id)

        if admitted:
            logger.debug("Admitted %s", ", ".join(admitted))
        return admitted

    # Processing

    def _apply(self, doc_id: str, event: Event) -> Optional[QueuedDocument]:
        """Transition a tracked document; None when it is no longer tracked."""
        doc = self._documents.get(doc_id)
        if doc is None:
            logger.debug("Ignoring %s for untracked document %s", event.kind.value, doc_id)
            return None
        updated = transition(doc, event)
        self._documents[doc_id] = updated
        for listener in self._listeners:
            listener(updated)
        return updated

    async def _process(self, doc_id: str) -> None:
        try:
            await self._upload_and_analyze(doc_id)
        except Exception as e:
            logger.exception("Unexpected failure processing %s", doc_id)
            doc = self._documents.get(doc_id)
            if doc is not None and doc.in_flight:
                failed = (
                    EventKind.UPLOAD_FAILED
                    if doc.state == DocumentState.UPLOADING
                    else EventKind.ANALYSIS_FAILED
                )
                self._apply(
                    doc_id,
                    Event(failed, error_kind=INTERNAL_ERROR_KIND, message=f"Unexpected error: {e}"),
                )
        finally:
            self._tasks.pop(doc_id, None)
            self.admit_next()

    async def _upload_and_analyze(self, doc_id: str) -> None:
        doc = self._documents[doc_id]

        try:
            stored = await self.file_store.store(
                self.unit_id, doc.file_name, doc.data, doc.mime_type
            )
        except StorageError as e:
            logger.warning("Upload of %s failed: %s", doc.file_name, e)
            self._apply(
                doc_id,
                Event(
                    EventKind.UPLOAD_FAILED,
                    error_kind=STORAGE_ERROR_KIND,
                    message=e.user_message,
                ),
            )
            return

        if self._apply(doc_id, Event(EventKind.UPLOAD_SUCCEEDED, storage_ref=stored.path)) is None:
            return

        try:
            extraction = await self.recognizer.analyze(doc.data, doc.mime_type, doc.file_name)
        except RecognitionError as e:
            logger.warning("Analysis of %s failed (%s): %s", doc.file_name, e.kind.value, e.message)
            self._apply(
                doc_id,
                Event(EventKind.ANALYSIS_FAILED, error_kind=e.kind.value, message=e.user_message),
            )
            return

        if self.classifier is not None:
            extraction = self.classifier.refine(extraction)
        if self._apply(doc_id, Event(EventKind.ANALYSIS_SUCCEEDED, extraction=extraction)):
            logger.info(
                "%s ready: %s/%s",
                doc.file_name,
                extraction.document_type.value,
                extraction.classification_hint.value,
            )

    async def wait_idle(self) -> None:
        """Wait until no document is uploading or analyzing."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    # Outcomes

    def _drop(self, doc_id: str) -> None:
        self._documents.pop(doc_id, None)
        if doc_id in self._order:
            self._order.remove(doc_id)

    def discard(self, doc_id: str) -> QueuedDocument:
        """
        Stop tracking a document.

        A remote call already dispatched for it keeps running; its response
        is ignored because the id is no longer tracked.

        Raises:
            KeyError: unknown document id
            InvalidTransition: the document cannot be discarded
        """
        doc = self._documents[doc_id]
        discarded = transition(doc, Event(EventKind.DISCARD))
        self._drop(doc_id)
        for listener in self._listeners:
            listener(discarded)
        logger.info("Discarded %s", doc.file_name)
        if doc.in_flight:
            self.admit_next()
        return discarded

    def resubmit(self, doc_id: str) -> str:
        """
        Replace a failed document with a fresh queued entry.

        Returns:
            The new document id.

        Raises:
            KeyError: unknown document id
            ValueError: the document is not in the error state
        """
        doc = self._documents[doc_id]
        if doc.state != DocumentState.ERROR:
            raise ValueError(f"Only failed documents can be resubmitted (state: {doc.state.value})")
        self._drop(doc_id)
        report = self.enqueue([IncomingFile(doc.file_name, doc.data, doc.mime_type)])
        return report.accepted[0]

    def mark_duplicate(
        self, doc_id: str, duplicate_of: Optional[int], message: Optional[str] = None
    ) -> Optional[QueuedDocument]:
        return self._apply(
            doc_id,
            Event(EventKind.MARK_DUPLICATE, duplicate_of=duplicate_of, message=message),
        )

    def mark_commit_failed(self, doc_id: str, message: str) -> Optional[QueuedDocument]:
        return self._apply(
            doc_id, Event(EventKind.COMMIT_FAILED, error_kind="commit", message=message)
        )

    def complete(self, doc_id: str) -> Optional[QueuedDocument]:
        """Confirm a ready document and remove it from the queue."""
        confirmed = self._apply(doc_id, Event(EventKind.CONFIRM))
        self._drop(doc_id)
        return confirmed
