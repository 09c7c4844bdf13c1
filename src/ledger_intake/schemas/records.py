"""
Persisted accounting records.

Payables (expenses), revenue invoices, supplier invoices and their
installments. These are the durable records created exactly once per
confirmed document; the state store maps them to and from sqlite rows.
"""

import json
import sqlite3
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional


class PayableStatus(str, Enum):
    """Lifecycle of a payable."""

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"


class PayableType(str, Enum):
    """Physical origin of a payable."""

    BOLETO = "boleto"
    INSTALLMENT = "parcela"
    ONE_OFF = "avulso"
    RECEIPT = "recibo"


class ExpenseKind(str, Enum):
    """What an expense pays for. Purchases need a supplier invoice (NF)."""

    PURCHASE = "purchase"
    SERVICE = "service"
    TAX = "tax"
    OTHER = "other"


class NfLinkStatus(str, Enum):
    """Supplier invoice (NF) linkage state of a payable."""

    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    LINKED = "linked"


class SupplierInvoiceStatus(str, Enum):
    """Lifecycle of a supplier invoice."""

    PENDING = "pending"
    PARTIAL = "partial"
    AWAITING_BOLETO = "awaiting_boleto"
    PAID = "paid"
    CANCELLED = "cancelled"


# Statuses that make a supplier invoice a boleto matching candidate
OPEN_SUPPLIER_INVOICE_STATUSES = (
    SupplierInvoiceStatus.PENDING,
    SupplierInvoiceStatus.PARTIAL,
    SupplierInvoiceStatus.AWAITING_BOLETO,
)


class PaymentMethod(str, Enum):
    """How a supplier invoice is settled."""

    BOLETO = "boleto"
    PIX = "pix"
    TRANSFER = "transfer"
    CASH = "cash"


class PaymentInstrument(str, Enum):
    """How the back office intends to pay an expense."""

    CASH_ON_HAND = "cash_on_hand"
    PIX = "pix"
    BANK_TRANSFER = "bank_transfer"


@dataclass
class NfRequirement:
    """
    How a purchase payable satisfies its supplier invoice requirement.

    Exactly one of the three must be set for purchases:
    a linked supplier invoice, the NF embedded in the same document,
    or a written exemption reason.
    """

    supplier_invoice_id: Optional[int] = None
    nf_in_same_document: bool = False
    exemption_reason: Optional[str] = None

    def satisfied_by(self) -> list[str]:
        """Names of the options that are set."""
        options = []
        if self.supplier_invoice_id is not None:
            options.append("supplier_invoice_id")
        if self.nf_in_same_document:
            options.append("nf_in_same_document")
        if self.exemption_reason and self.exemption_reason.strip():
            options.append("exemption_reason")
        return options


@dataclass
class Payable:
    """Persisted expense record (conta a pagar)."""

    beneficiary_name: str
    amount: Decimal
    due_date: str
    id: Optional[int] = None
    unit_id: Optional[str] = None
    beneficiary_tax_id: Optional[str] = None
    document_number: Optional[str] = None
    linha_digitavel: Optional[str] = None
    codigo_barras: Optional[str] = None
    pix_key: Optional[str] = None
    pix_key_type: Optional[str] = None
    description: Optional[str] = None
    payable_type: PayableType = PayableType.ONE_OFF
    expense_kind: ExpenseKind = ExpenseKind.OTHER
    status: PayableStatus = PayableStatus.PENDING
    nf_link_status: NfLinkStatus = NfLinkStatus.NOT_REQUIRED
    nf_exemption_reason: Optional[str] = None
    nf_in_same_document: bool = False
    supplier_invoice_id: Optional[int] = None
    intended_payment_method: Optional[PaymentInstrument] = None
    installment_number: Optional[int] = None
    installment_total: Optional[int] = None
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    ocr_confidence: Optional[float] = None
    # JSON-serializable audit payload: {"justification": ..., "fields": {...}}
    ocr_edit_audit: Optional[dict] = None
    deleted: bool = False
    created_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Payable":
        """Create from database row."""
        method = row["intended_payment_method"]
        return cls(
            id=row["id"],
            unit_id=row["unit_id"],
            beneficiary_name=row["beneficiary_name"],
            beneficiary_tax_id=row["beneficiary_tax_id"],
            amount=Decimal(row["amount"]),
            due_date=row["due_date"],
            document_number=row["document_number"],
            linha_digitavel=row["linha_digitavel"],
            codigo_barras=row["codigo_barras"],
            pix_key=row["pix_key"],
            pix_key_type=row["pix_key_type"],
            description=row["description"],
            payable_type=PayableType(row["payable_type"]),
            expense_kind=ExpenseKind(row["expense_kind"]),
            status=PayableStatus(row["status"]),
            nf_link_status=NfLinkStatus(row["nf_link_status"]),
            nf_exemption_reason=row["nf_exemption_reason"],
            nf_in_same_document=bool(row["nf_in_same_document"]),
            supplier_invoice_id=row["supplier_invoice_id"],
            intended_payment_method=PaymentInstrument(method) if method else None,
            installment_number=row["installment_number"],
            installment_total=row["installment_total"],
            file_path=row["file_path"],
            file_name=row["file_name"],
            ocr_confidence=row["ocr_confidence"],
            ocr_edit_audit=json.loads(row["ocr_edit_audit"]) if row["ocr_edit_audit"] else None,
            deleted=bool(row["deleted"]),
            created_at=row["created_at"],
        )


@dataclass
class RevenueInvoice:
    """Persisted revenue record (issued invoice)."""

    document_number: str
    customer_name: str
    issue_date: str
    service_value: Decimal
    id: Optional[int] = None
    unit_id: Optional[str] = None
    customer_tax_id: Optional[str] = None
    issuer_name: Optional[str] = None
    issuer_tax_id: Optional[str] = None
    net_value: Optional[Decimal] = None
    description: Optional[str] = None
    competence_year: Optional[int] = None
    competence_month: Optional[int] = None
    needs_bank_reconciliation: bool = True
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    ocr_confidence: Optional[float] = None
    ocr_edit_audit: Optional[dict] = None
    status: str = "pending"
    created_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "RevenueInvoice":
        """Create from database row."""
        return cls(
            id=row["id"],
            unit_id=row["unit_id"],
            document_number=row["document_number"],
            customer_name=row["customer_name"],
            customer_tax_id=row["customer_tax_id"],
            issuer_name=row["issuer_name"],
            issuer_tax_id=row["issuer_tax_id"],
            issue_date=row["issue_date"],
            service_value=Decimal(row["service_value"]),
            net_value=Decimal(row["net_value"]) if row["net_value"] is not None else None,
            description=row["description"],
            competence_year=row["competence_year"],
            competence_month=row["competence_month"],
            needs_bank_reconciliation=bool(row["needs_bank_reconciliation"]),
            file_path=row["file_path"],
            file_name=row["file_name"],
            ocr_confidence=row["ocr_confidence"],
            ocr_edit_audit=json.loads(row["ocr_edit_audit"]) if row["ocr_edit_audit"] else None,
            status=row["status"],
            created_at=row["created_at"],
        )


@dataclass
class InstallmentData:
    """One installment of a supplier invoice (becomes a payable)."""

    number: int
    amount: Decimal
    due_date: str
    linha_digitavel: Optional[str] = None


@dataclass
class SupplierInvoice:
    """Persisted supplier invoice (NF de compra)."""

    document_number: str
    supplier_name: str
    issue_date: str
    total_value: Decimal
    id: Optional[int] = None
    unit_id: Optional[str] = None
    document_series: Optional[str] = None
    supplier_tax_id: Optional[str] = None
    due_date: Optional[str] = None
    description: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.BOLETO
    status: SupplierInvoiceStatus = SupplierInvoiceStatus.PENDING
    installments_count: int = 1
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    ocr_confidence: Optional[float] = None
    created_at: str = ""
    installments: list[InstallmentData] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "SupplierInvoice":
        """Create from database row (installments are not loaded)."""
        return cls(
            id=row["id"],
            unit_id=row["unit_id"],
            document_number=row["document_number"],
            document_series=row["document_series"],
            supplier_name=row["supplier_name"],
            supplier_tax_id=row["supplier_tax_id"],
            issue_date=row["issue_date"],
            due_date=row["due_date"],
            total_value=Decimal(row["total_value"]),
            description=row["description"],
            payment_method=PaymentMethod(row["payment_method"]),
            status=SupplierInvoiceStatus(row["status"]),
            installments_count=row["installments_count"],
            file_path=row["file_path"],
            file_name=row["file_name"],
            ocr_confidence=row["ocr_confidence"],
            created_at=row["created_at"],
        )
