"""
Commit service: turns a confirmed extraction into exactly one record.

create_revenue() and create_expense() re-check duplicates immediately
before inserting and report one of three outcomes:

- CREATED: one record persisted, its id returned
- DUPLICATE: an equivalent record already exists, its id returned
- FAILED: nothing persisted, message explains why

Check and insert run under one lock per database file, so two concurrent
confirmations of the same bill in this process never both insert. The
database uniqueness constraints on payment codes also hold across
processes; a uniqueness violation raised by the insert is reported as
DUPLICATE.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from ..schemas.audit import MIN_JUSTIFICATION_LENGTH, AuditEdit
from ..schemas.dedupe import normalize_barcode, normalize_key, normalize_tax_id
from ..schemas.extraction import DocumentType, ExtractionResult
from ..schemas.records import (
    ExpenseKind,
    InstallmentData,
    NfLinkStatus,
    NfRequirement,
    Payable,
    PayableStatus,
    PayableType,
    PaymentInstrument,
    PaymentMethod,
    RevenueInvoice,
    SupplierInvoice,
    SupplierInvoiceStatus,
)
from ..state_store import DuplicateRecordError, StateStore
from .duplicates import DuplicateDetector

logger = logging.getLogger(__name__)

UNIDENTIFIED_SUPPLIER = "FORNECEDOR NÃO IDENTIFICADO"
UNIDENTIFIED_CUSTOMER = "CLIENTE NÃO IDENTIFICADO"
MISSING_DOCUMENT_NUMBER = "SEM_NUMERO"

# Collector shown as beneficiary of government levies
TAX_COLLECTORS: dict[DocumentType, str] = {
    DocumentType.DARF: "DARF - Receita Federal",
    DocumentType.INSS_GUIA: "INSS - Receita Federal",
    DocumentType.GPS: "GPS - Previdência Social",
    DocumentType.FGTS: "FGTS - Caixa Econômica Federal",
    DocumentType.DAS: "DAS - Simples Nacional",
}

GENERIC_COMMIT_ERROR = "Could not save the record. Try again."

_commit_locks: dict[str, threading.Lock] = {}
_commit_locks_guard = threading.Lock()


def commit_lock(store: StateStore) -> threading.Lock:
    """Lock serializing duplicate check + insert for one database file."""
    key = str(store.db_path)
    with _commit_locks_guard:
        return _commit_locks.setdefault(key, threading.Lock())


class CommitStatus(str, Enum):
    """Result of a commit attempt."""

    CREATED = "created"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass
class CommitOutcome:
    """Outcome of creating one record."""

    status: CommitStatus
    record_type: str
    record_id: Optional[int] = None
    duplicate_of: Optional[int] = None
    message: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.status == CommitStatus.CREATED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "record_type": self.record_type,
            "record_id": self.record_id,
            "duplicate_of": self.duplicate_of,
            "message": self.message,
        }


@dataclass
class SupplierInvoiceOutcome:
    """
    Invoice and installments are reported separately.

    A failed installment insert does not roll back the invoice; callers
    must surface both outcomes.
    """

    invoice: CommitOutcome
    installments: Optional[CommitOutcome] = None
    installment_ids: list[int] = field(default_factory=list)


@dataclass
class CommitContext:
    """Where the document came from and how it was reviewed."""

    unit_id: str
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    audit: Optional[AuditEdit] = None
    competence_year: Optional[int] = None
    competence_month: Optional[int] = None


@dataclass
class ExpenseExtras:
    """Fields collected from the reviewer for expenses."""

    description: Optional[str] = None
    payment_instrument: Optional[PaymentInstrument] = None
    expense_kind: Optional[ExpenseKind] = None
    nf: NfRequirement = field(default_factory=NfRequirement)


@dataclass
class RevenueExtras:
    """Fields collected from the reviewer for revenue."""

    needs_bank_reconciliation: bool = True


def beneficiary_name(extraction: ExtractionResult) -> str:
    """Beneficiary of a payable; levies are paid to their collector."""
    if extraction.is_tax_document:
        return TAX_COLLECTORS[extraction.document_type]
    return extraction.issuer_name or UNIDENTIFIED_SUPPLIER


def payable_type_for(document_type: DocumentType) -> PayableType:
    if document_type == DocumentType.BOLETO:
        return PayableType.BOLETO
    if document_type == DocumentType.RECIBO:
        return PayableType.RECEIPT
    return PayableType.ONE_OFF


def default_expense_kind(extraction: ExtractionResult) -> ExpenseKind:
    if extraction.is_tax_document:
        return ExpenseKind.TAX
    if extraction.document_type == DocumentType.NFSE:
        return ExpenseKind.SERVICE
    return ExpenseKind.OTHER


def resolve_nf_link(
    kind: ExpenseKind, nf: NfRequirement, min_reason_length: int = MIN_JUSTIFICATION_LENGTH
) -> tuple[NfLinkStatus, Optional[str]]:
    """
    Decide the NF link status of a new payable.

    Returns (status, exemption_reason). A purchase without any option stays
    PENDING; it is never NOT_REQUIRED unless an exemption reason is given.

    Raises:
        ValueError: more than one NF option is set, or the exemption
            reason is too short
    """
    options = nf.satisfied_by()
    if len(options) > 1:
        raise ValueError(f"Conflicting NF requirement options: {', '.join(options)}")

    if nf.supplier_invoice_id is not None or nf.nf_in_same_document:
        return NfLinkStatus.LINKED, None
    if kind == ExpenseKind.PURCHASE:
        if options:
            reason = nf.exemption_reason.strip()
            if len(reason) < min_reason_length:
                raise ValueError(
                    f"NF exemption reason must have at least {min_reason_length} characters"
                )
            return NfLinkStatus.NOT_REQUIRED, reason
        return NfLinkStatus.PENDING, None
    return NfLinkStatus.NOT_REQUIRED, None


class CommitService:
    """Persists revenue invoices, payables and supplier invoices."""

    def __init__(self, store: StateStore, detector: Optional[DuplicateDetector] = None):
        self.store = store
        self.detector = detector or DuplicateDetector(store)
        self._lock = commit_lock(store)

    # Revenue

    def create_revenue(
        self,
        extraction: ExtractionResult,
        context: CommitContext,
        extras: Optional[RevenueExtras] = None,
    ) -> CommitOutcome:
        """Create a revenue invoice unless the same invoice already exists."""
        extras = extras or RevenueExtras()

        try:
            with self._lock:
                existing = self.detector.find_revenue_duplicate(
                    extraction.issuer_tax_id, extraction.document_number
                )
                if existing is None:
                    invoice_id = self.store.insert_revenue_invoice(
                        self.build_revenue_invoice(extraction, context, extras)
                    )
        except Exception as e:
            logger.exception("Failed to create revenue invoice: %s", e)
            return CommitOutcome(CommitStatus.FAILED, "invoice", message=GENERIC_COMMIT_ERROR)

        if existing is not None:
            logger.info("Revenue invoice already exists as #%s", existing)
            return CommitOutcome(
                CommitStatus.DUPLICATE,
                "invoice",
                duplicate_of=existing,
                message=f"Invoice already registered (#{existing})",
            )

        logger.info("Created revenue invoice #%s", invoice_id)
        return CommitOutcome(CommitStatus.CREATED, "invoice", record_id=invoice_id)

    def build_revenue_invoice(
        self,
        extraction: ExtractionResult,
        context: CommitContext,
        extras: RevenueExtras,
    ) -> RevenueInvoice:
        """Map an extraction plus reviewer input to a revenue invoice record."""
        today = date.today()
        total = extraction.total_amount or Decimal("0")
        return RevenueInvoice(
            unit_id=context.unit_id,
            document_number=normalize_key(extraction.document_number)
            or MISSING_DOCUMENT_NUMBER,
            customer_name=extraction.customer_name or UNIDENTIFIED_CUSTOMER,
            customer_tax_id=normalize_tax_id(extraction.customer_tax_id),
            issuer_name=extraction.issuer_name,
            issuer_tax_id=normalize_tax_id(extraction.issuer_tax_id),
            issue_date=extraction.issue_date or today.isoformat(),
            service_value=total,
            net_value=extraction.net_amount or total,
            description=extraction.description,
            competence_year=extraction.competence_year
            or context.competence_year
            or today.year,
            competence_month=extraction.competence_month
            or context.competence_month
            or today.month,
            needs_bank_reconciliation=extras.needs_bank_reconciliation,
            file_path=context.file_path,
            file_name=context.file_name,
            ocr_confidence=round(extraction.confidence, 3),
            ocr_edit_audit=context.audit.to_dict() if context.audit else None,
        )

    # Expense

    def build_payable(
        self,
        extraction: ExtractionResult,
        context: CommitContext,
        extras: ExpenseExtras,
    ) -> Payable:
        """Map an extraction plus reviewer input to a payable record."""
        kind = extras.expense_kind or default_expense_kind(extraction)
        nf_status, exemption = resolve_nf_link(kind, extras.nf)
        number = normalize_key(extraction.document_number)
        description = (
            normalize_key(extras.description)
            or extraction.description
            or f"Documento {number or ''}".strip()
        )

        return Payable(
            unit_id=context.unit_id,
            beneficiary_name=beneficiary_name(extraction),
            beneficiary_tax_id=normalize_tax_id(extraction.issuer_tax_id),
            amount=extraction.total_amount or Decimal("0"),
            due_date=extraction.effective_due_date or date.today().isoformat(),
            document_number=number,
            linha_digitavel=normalize_barcode(extraction.linha_digitavel),
            codigo_barras=normalize_barcode(extraction.codigo_barras),
            pix_key=normalize_key(extraction.pix_key),
            pix_key_type=extraction.pix_key_type.value if extraction.pix_key_type else None,
            description=description,
            payable_type=payable_type_for(extraction.document_type),
            expense_kind=kind,
            status=PayableStatus.PENDING,
            nf_link_status=nf_status,
            nf_exemption_reason=exemption,
            nf_in_same_document=extras.nf.nf_in_same_document,
            supplier_invoice_id=extras.nf.supplier_invoice_id,
            intended_payment_method=extras.payment_instrument,
            file_path=context.file_path,
            file_name=context.file_name,
            ocr_confidence=round(extraction.confidence, 3),
            ocr_edit_audit=context.audit.to_dict() if context.audit else None,
        )

    def create_expense(
        self,
        extraction: ExtractionResult,
        context: CommitContext,
        extras: Optional[ExpenseExtras] = None,
    ) -> CommitOutcome:
        """Create a payable unless the same bill is already recorded."""
        extras = extras or ExpenseExtras()

        try:
            with self._lock:
                existing = self._find_existing_payable(extraction)
                if existing is None:
                    payable = self.build_payable(extraction, context, extras)
                    payable_id = self.store.insert_payable(payable)
        except DuplicateRecordError as e:
            # Lost the race against a concurrent confirmation
            logger.info("Payable rejected by uniqueness constraint: %s", e)
            existing = self.detector.find_payable_by_codigo_barras(
                extraction.codigo_barras
            ) or self.detector.find_payable_by_linha_digitavel(extraction.linha_digitavel)
            return CommitOutcome(
                CommitStatus.DUPLICATE,
                "payable",
                duplicate_of=existing,
                message="Barcode or digit line already registered",
            )
        except ValueError as e:
            logger.warning("Rejected payable: %s", e)
            return CommitOutcome(CommitStatus.FAILED, "payable", message=str(e))
        except Exception as e:
            logger.exception("Failed to create payable: %s", e)
            return CommitOutcome(CommitStatus.FAILED, "payable", message=GENERIC_COMMIT_ERROR)

        if existing is not None:
            logger.info("Payable already exists as #%s", existing)
            return CommitOutcome(
                CommitStatus.DUPLICATE,
                "payable",
                duplicate_of=existing,
                message=f"Bill already registered (#{existing})",
            )

        if payable.supplier_invoice_id is not None:
            # The payable is already committed
            try:
                self.store.transition_supplier_invoice_status(
                    payable.supplier_invoice_id,
                    SupplierInvoiceStatus.AWAITING_BOLETO,
                    SupplierInvoiceStatus.PENDING,
                )
            except Exception as e:
                logger.exception(
                    "Payable #%s created but supplier invoice #%s not updated: %s",
                    payable_id,
                    payable.supplier_invoice_id,
                    e,
                )

        logger.info("Created payable #%s (%s)", payable_id, payable.nf_link_status.value)
        return CommitOutcome(CommitStatus.CREATED, "payable", record_id=payable_id)

    def _find_existing_payable(self, extraction: ExtractionResult) -> Optional[int]:
        existing = self.detector.find_expense_duplicate(
            extraction.issuer_tax_id,
            extraction.document_number,
            extraction.total_amount,
            extraction.effective_due_date,
        )
        if existing is None:
            existing = self.detector.find_payable_by_codigo_barras(extraction.codigo_barras)
        if existing is None:
            existing = self.detector.find_payable_by_linha_digitavel(extraction.linha_digitavel)
        return existing

    # Supplier invoice + installments

    def create_supplier_invoice(
        self,
        invoice: SupplierInvoice,
        installments: Optional[list[InstallmentData]] = None,
    ) -> SupplierInvoiceOutcome:
        """
        Create a supplier invoice and one boleto payable per installment.

        Without installments, an invoice settled by boleto waits for its
        boleto (status awaiting_boleto). Installment payables are inserted
        in one transaction; if that fails the invoice stays.
        """
        installments = installments if installments is not None else invoice.installments

        if self.detector.supplier_invoice_exists(
            invoice.document_number, invoice.supplier_tax_id, invoice.issue_date
        ):
            existing = self.store.find_supplier_invoice_id(
                invoice.document_number.strip(),
                normalize_tax_id(invoice.supplier_tax_id),
                invoice.issue_date.strip(),
            )
            return SupplierInvoiceOutcome(
                invoice=CommitOutcome(
                    CommitStatus.DUPLICATE,
                    "supplier_invoice",
                    duplicate_of=existing,
                    message=f"Supplier invoice already registered (#{existing})",
                )
            )

        if (
            not installments
            and invoice.payment_method == PaymentMethod.BOLETO
            and invoice.status == SupplierInvoiceStatus.PENDING
        ):
            invoice.status = SupplierInvoiceStatus.AWAITING_BOLETO
        invoice.supplier_tax_id = normalize_tax_id(invoice.supplier_tax_id)
        invoice.installments_count = max(len(installments), 1)

        try:
            invoice_id = self.store.insert_supplier_invoice(invoice)
        except DuplicateRecordError as e:
            logger.info("Supplier invoice rejected by uniqueness constraint: %s", e)
            return SupplierInvoiceOutcome(
                invoice=CommitOutcome(
                    CommitStatus.DUPLICATE,
                    "supplier_invoice",
                    message="Supplier invoice already registered",
                )
            )
        except Exception as e:
            logger.exception("Failed to create supplier invoice: %s", e)
            return SupplierInvoiceOutcome(
                invoice=CommitOutcome(
                    CommitStatus.FAILED, "supplier_invoice", message=GENERIC_COMMIT_ERROR
                )
            )

        invoice.id = invoice_id
        outcome = SupplierInvoiceOutcome(
            invoice=CommitOutcome(CommitStatus.CREATED, "supplier_invoice", record_id=invoice_id)
        )
        if not installments:
            return outcome

        payables = [
            Payable(
                unit_id=invoice.unit_id,
                beneficiary_name=invoice.supplier_name,
                beneficiary_tax_id=invoice.supplier_tax_id,
                amount=item.amount,
                due_date=item.due_date,
                document_number=invoice.document_number,
                linha_digitavel=normalize_barcode(item.linha_digitavel),
                description=invoice.description,
                payable_type=PayableType.BOLETO,
                expense_kind=ExpenseKind.PURCHASE,
                nf_link_status=NfLinkStatus.LINKED,
                supplier_invoice_id=invoice_id,
                installment_number=item.number,
                installment_total=len(installments),
            )
            for item in installments
        ]
        try:
            outcome.installment_ids = self.store.insert_payables(payables)
        except DuplicateRecordError as e:
            logger.warning("Installments of supplier invoice #%s rejected: %s", invoice_id, e)
            outcome.installments = CommitOutcome(
                CommitStatus.DUPLICATE,
                "payable",
                message="An installment digit line is already registered",
            )
            return outcome
        except Exception as e:
            logger.exception("Failed to create installments of supplier invoice #%s", invoice_id)
            outcome.installments = CommitOutcome(
                CommitStatus.FAILED,
                "payable",
                message=f"Invoice saved, but installments failed: {e}",
            )
            return outcome

        outcome.installments = CommitOutcome(CommitStatus.CREATED, "payable")
        logger.info(
            "Created supplier invoice #%s with %d installments", invoice_id, len(payables)
        )
        return outcome
