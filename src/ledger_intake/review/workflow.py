"""
Classification and confirmation workflow.

Turns a `ready` queued document into exactly one accounting record:

1. The reviewer fills a ReviewForm (classification, corrected values,
   expense or revenue extras). validate() returns field-level errors.
2. confirm() commits through the CommitService. The commit re-checks for
   duplicates immediately before inserting; that re-check, not precheck(),
   is what prevents double inserts.
3. Created -> the document leaves the queue and a result is recorded.
   Duplicate -> the document is marked duplicate, nothing is persisted.
   Failed -> the document stays ready with a generic error, for retry.

confirm_all_ready() applies step 2-3 to every ready document using the
first auto-classification and reports each document's outcome.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from ..intake.queue import IntakeQueue
from ..intake.state_machine import DocumentState, EventKind, InvalidTransition, QueuedDocument
from ..schemas.audit import MIN_JUSTIFICATION_LENGTH, AuditEdit, edited_fields, justification_error
from ..schemas.dedupe import DuplicateCheckResult, DuplicateLevel
from ..schemas.extraction import Classification, ExtractionResult, parse_decimal
from ..schemas.records import ExpenseKind, NfRequirement, PaymentInstrument
from ..services.commit import (
    CommitContext,
    CommitOutcome,
    CommitService,
    CommitStatus,
    ExpenseExtras,
    RevenueExtras,
    default_expense_kind,
)
from ..services.duplicates import DuplicateDetector

logger = logging.getLogger(__name__)

# Form value keys mapped to ExtractionResult attributes
_EXTRACTION_ATTRIBUTES = {
    "amount": "total_amount",
    "due_date": "due_date",
    "issue_date": "issue_date",
    "linha_digitavel": "linha_digitavel",
    "codigo_barras": "codigo_barras",
    "issuer_name": "issuer_name",
    "issuer_tax_id": "issuer_tax_id",
    "document_number": "document_number",
    "pix_key": "pix_key",
}


class ClassificationLocked(Exception):
    """Tax documents are always expenses; their classification cannot change."""

    def __init__(self, document_type: str):
        self.document_type = document_type
        super().__init__(f"Classification of '{document_type}' documents is fixed to expense")


def initial_classification(extraction: ExtractionResult) -> tuple[Classification, bool]:
    """
    Classification a reviewer starts from.

    Returns (classification, requires_manual_confirmation). Unknown
    documents start as expenses but must be confirmed by a human.
    """
    if extraction.is_tax_document:
        return Classification.EXPENSE, False
    if extraction.classification_hint == Classification.UNKNOWN:
        return Classification.EXPENSE, True
    return extraction.classification_hint, False


def apply_edits(extraction: ExtractionResult, values: dict[str, Any]) -> ExtractionResult:
    """Copy of the extraction with the reviewer's values applied."""
    changes: dict[str, Any] = {}
    for key, value in values.items():
        attribute = _EXTRACTION_ATTRIBUTES.get(key)
        if attribute is None:
            continue
        if key == "amount":
            value = parse_decimal(value)
        elif isinstance(value, str):
            value = value.strip() or None
        changes[attribute] = value
    return replace(extraction, **changes) if changes else extraction


@dataclass
class ReviewForm:
    """Reviewer input for one document."""

    classification: Classification
    classification_locked: bool = False
    requires_manual_confirmation: bool = False

    # Current values of tracked fields; absent keys are unchanged
    values: dict[str, Any] = field(default_factory=dict)
    justification: Optional[str] = None

    # Expense only
    description: Optional[str] = None
    payment_instrument: Optional[PaymentInstrument] = None
    expense_kind: Optional[ExpenseKind] = None
    nf: NfRequirement = field(default_factory=NfRequirement)

    # Revenue only
    needs_bank_reconciliation: bool = True

    @classmethod
    def for_document(cls, doc: QueuedDocument) -> "ReviewForm":
        if doc.extraction is None:
            raise ValueError(f"Document {doc.id} has no extraction to review")
        classification, manual = initial_classification(doc.extraction)
        return cls(
            classification=classification,
            classification_locked=doc.extraction.is_tax_document,
            requires_manual_confirmation=manual,
        )

    def set_classification(self, classification: Classification) -> None:
        """
        Change the revenue/expense axis.

        Raises:
            ClassificationLocked: the document is a tax document
        """
        if self.classification_locked and classification != Classification.EXPENSE:
            raise ClassificationLocked("tax")
        self.classification = classification
        self.requires_manual_confirmation = False


class ConfirmationStatus(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    INVALID = "invalid"
    SKIPPED = "skipped"


@dataclass
class ConfirmationResult:
    """What happened to one document on confirmation."""

    doc_id: str
    file_name: str
    status: ConfirmationStatus
    record_type: Optional[str] = None
    record_id: Optional[int] = None
    duplicate_of: Optional[int] = None
    message: Optional[str] = None
    errors: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_outcome(cls, doc: QueuedDocument, outcome: CommitOutcome) -> "ConfirmationResult":
        return cls(
            doc_id=doc.id,
            file_name=doc.file_name,
            status=ConfirmationStatus(outcome.status.value),
            record_type=outcome.record_type,
            record_id=outcome.record_id,
            duplicate_of=outcome.duplicate_of,
            message=outcome.message,
        )

    def to_dict(self) -> dict:
        return {
            "doc_id": self.doc_id,
            "file_name": self.file_name,
            "status": self.status.value,
            "record_type": self.record_type,
            "record_id": self.record_id,
            "duplicate_of": self.duplicate_of,
            "message": self.message,
            "errors": self.errors,
        }


@dataclass
class BatchReport:
    """Per-document outcome of confirm_all_ready()."""

    created: list[ConfirmationResult] = field(default_factory=list)
    duplicates: list[ConfirmationResult] = field(default_factory=list)
    skipped: list[ConfirmationResult] = field(default_factory=list)
    failed: list[ConfirmationResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.duplicates) + len(self.skipped) + len(self.failed)

    def add(self, result: ConfirmationResult) -> None:
        bucket = {
            ConfirmationStatus.CREATED: self.created,
            ConfirmationStatus.DUPLICATE: self.duplicates,
            ConfirmationStatus.SKIPPED: self.skipped,
        }.get(result.status, self.failed)
        bucket.append(result)

    def to_dict(self) -> dict:
        return {
            "created": [r.to_dict() for r in self.created],
            "duplicates": [r.to_dict() for r in self.duplicates],
            "skipped": [r.to_dict() for r in self.skipped],
            "failed": [r.to_dict() for r in self.failed],
        }


class ConfirmationWorkflow:
    """
    Reviews and confirms documents held by an IntakeQueue.

    Store access is blocking and runs in worker threads.
    """

    def __init__(
        self,
        queue: IntakeQueue,
        commit_service: CommitService,
        unit_id: str = "default",
        min_justification_length: int = MIN_JUSTIFICATION_LENGTH,
        detector: Optional[DuplicateDetector] = None,
        default_payment_instrument: Optional[PaymentInstrument] = None,
    ):
        self.queue = queue
        self.commit = commit_service
        self.detector = detector or commit_service.detector
        self.unit_id = unit_id
        self.min_justification_length = min_justification_length
        self.default_payment_instrument = default_payment_instrument
        self.results: list[ConfirmationResult] = []
        self._confirming: set[str] = set()

    def _ready_document(self, doc_id: str) -> QueuedDocument:
        doc = self.queue.get(doc_id)
        if doc is None:
            raise KeyError(doc_id)
        if doc.state != DocumentState.READY or doc.extraction is None:
            raise InvalidTransition(doc.state, EventKind.CONFIRM)
        return doc

    def form_for(self, doc_id: str) -> ReviewForm:
        """A fresh form for a ready document."""
        return ReviewForm.for_document(self._ready_document(doc_id))

    # Validation

    def validate(self, doc: QueuedDocument, form: ReviewForm) -> dict[str, str]:
        """
        Field-level problems that block confirmation.

        Returns:
            Mapping of form field name to error message (empty if valid).
        """
        errors: dict[str, str] = {}
        extraction = doc.extraction

        amount = form.values.get("amount")
        if amount is not None and str(amount).strip() and parse_decimal(amount) is None:
            errors["amount"] = "Enter a valid amount"

        if edited_fields(extraction, form.values):
            error = justification_error(form.justification, self.min_justification_length)
            if error:
                errors["justification"] = error

        if form.classification == Classification.EXPENSE:
            if form.payment_instrument is None:
                errors["payment_instrument"] = "Select how this expense will be paid"

            kind = form.expense_kind or default_expense_kind(extraction)
            if kind == ExpenseKind.PURCHASE:
                errors.update(self._nf_errors(form.nf))

        return errors

    def _nf_errors(self, nf: NfRequirement) -> dict[str, str]:
        options = nf.satisfied_by()
        if len(options) > 1:
            return {
                "nf_requirement": (
                    "Choose only one: linked invoice, NF in the same document or exemption"
                )
            }
        if not options:
            return {
                "nf_requirement": (
                    "Link the supplier invoice, mark the NF as part of this document "
                    "or justify the exemption"
                )
            }
        if nf.exemption_reason is not None:
            error = justification_error(nf.exemption_reason, self.min_justification_length)
            if error:
                return {"nf_exemption_reason": error}
        return {}

    # Pre-check (advisory)

    async def precheck(
        self, doc_id: str, form: Optional[ReviewForm] = None
    ) -> DuplicateCheckResult:
        """
        Duplicate warning shown before confirmation.

        Advisory only: another confirmation may commit in between, so
        confirm() checks again.
        """
        doc = self._ready_document(doc_id)
        extraction = apply_edits(doc.extraction, form.values) if form else doc.extraction
        classification = form.classification if form else initial_classification(extraction)[0]

        if classification == Classification.REVENUE:
            existing = await asyncio.to_thread(
                self.detector.find_revenue_duplicate,
                extraction.issuer_tax_id,
                extraction.document_number,
            )
            if existing is None:
                return DuplicateCheckResult()
            return DuplicateCheckResult(
                DuplicateLevel.HIGH, "Invoice number already registered for this issuer", existing
            )
        return await asyncio.to_thread(self.detector.check_payable_comprehensive, extraction)

    # Confirmation

    def _commit(
        self,
        doc: QueuedDocument,
        extraction: ExtractionResult,
        classification: Classification,
        audit: Optional[AuditEdit],
        form: Optional[ReviewForm],
    ) -> CommitOutcome:
        context = CommitContext(
            unit_id=self.unit_id,
            file_path=doc.storage_ref,
            file_name=doc.file_name,
            audit=audit,
        )
        if classification == Classification.REVENUE:
            extras = RevenueExtras(
                needs_bank_reconciliation=form.needs_bank_reconciliation if form else True
            )
            return self.commit.create_revenue(extraction, context, extras)

        extras = ExpenseExtras(payment_instrument=self.default_payment_instrument)
        if form is not None:
            extras = ExpenseExtras(
                description=form.description,
                payment_instrument=form.payment_instrument,
                expense_kind=form.expense_kind,
                nf=form.nf,
            )
        return self.commit.create_expense(extraction, context, extras)

    def _record(self, doc: QueuedDocument, outcome: CommitOutcome) -> ConfirmationResult:
        """Apply a commit outcome to the queue."""
        result = ConfirmationResult.from_outcome(doc, outcome)
        if outcome.status == CommitStatus.CREATED:
            self.queue.complete(doc.id)
            self.results.append(result)
        elif outcome.status == CommitStatus.DUPLICATE:
            self.queue.mark_duplicate(doc.id, outcome.duplicate_of, outcome.message)
        else:
            self.queue.mark_commit_failed(doc.id, outcome.message or "Could not save the record")
        return result

    async def confirm(self, doc_id: str, form: ReviewForm) -> ConfirmationResult:
        """
        Confirm one reviewed document.

        Validation problems are returned as an INVALID result carrying
        field-level errors; the document and the form are left untouched.

        Raises:
            KeyError: unknown document id
            InvalidTransition: the document is not ready
            ClassificationLocked: a tax document was classified as revenue
        """
        doc = self._ready_document(doc_id)
        if doc.extraction.is_tax_document and form.classification != Classification.EXPENSE:
            raise ClassificationLocked(doc.extraction.document_type.value)

        errors = self.validate(doc, form)
        if errors:
            logger.info("Confirmation of %s blocked: %s", doc.file_name, ", ".join(errors))
            return ConfirmationResult(
                doc_id=doc.id,
                file_name=doc.file_name,
                status=ConfirmationStatus.INVALID,
                message="Fix the highlighted fields",
                errors=errors,
            )

        if doc_id in self._confirming:
            return ConfirmationResult(
                doc_id=doc.id,
                file_name=doc.file_name,
                status=ConfirmationStatus.SKIPPED,
                message="Confirmation already in progress",
            )

        changes = edited_fields(doc.extraction, form.values)
        audit = AuditEdit(form.justification.strip(), changes) if changes else None
        extraction = apply_edits(doc.extraction, form.values)

        self._confirming.add(doc_id)
        try:
            outcome = await asyncio.to_thread(
                self._commit, doc, extraction, form.classification, audit, form
            )
        finally:
            self._confirming.discard(doc_id)

        result = self._record(doc, outcome)
        logger.info("Confirmed %s: %s", doc.file_name, result.status.value)
        return result

    async def confirm_all_ready(self) -> BatchReport:
        """
        Commit every ready document with its first auto-classification.

        Documents without a storage reference or extraction, and documents
        whose classification still needs a human, are skipped. Expenses
        are paid with `default_payment_instrument`; without one they are
        skipped too. A failure on one document never stops the batch.
        """
        report = BatchReport()
        for doc in self.queue.ready_documents():
            if doc.id in self._confirming:
                continue
            if doc.extraction is None or not doc.storage_ref:
                report.add(
                    ConfirmationResult(
                        doc_id=doc.id,
                        file_name=doc.file_name,
                        status=ConfirmationStatus.SKIPPED,
                        message="Missing stored file or extracted data",
                    )
                )
                continue

            classification, manual = initial_classification(doc.extraction)
            if manual:
                report.add(
                    ConfirmationResult(
                        doc_id=doc.id,
                        file_name=doc.file_name,
                        status=ConfirmationStatus.SKIPPED,
                        message="Classification requires manual confirmation",
                    )
                )
                continue
            if classification == Classification.EXPENSE and self.default_payment_instrument is None:
                report.add(
                    ConfirmationResult(
                        doc_id=doc.id,
                        file_name=doc.file_name,
                        status=ConfirmationStatus.SKIPPED,
                        message="Select how this expense will be paid",
                    )
                )
                continue

            self._confirming.add(doc.id)
            try:
                outcome = await asyncio.to_thread(
                    self._commit, doc, doc.extraction, classification, None, None
                )
                result = self._record(doc, outcome)
            except Exception as e:
                logger.exception("Batch confirmation of %s failed", doc.file_name)
                result = ConfirmationResult(
                    doc_id=doc.id,
                    file_name=doc.file_name,
                    status=ConfirmationStatus.FAILED,
                    message=str(e),
                )
            finally:
                self._confirming.discard(doc.id)
            report.add(result)

        logger.info(
            "Batch confirmation: %d created, %d duplicates, %d skipped, %d failed",
            len(report.created),
            len(report.duplicates),
            len(report.skipped),
            len(report.failed),
        )
        return report
