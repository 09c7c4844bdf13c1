"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .audit import (
    TRACKED_FIELDS,
    AuditEdit,
    EditedFieldRecord,
    edited_fields,
    field_differs,
    has_any_field_edited,
    justification_error,
)
from .dedupe import (
    DuplicateCheckResult,
    DuplicateLevel,
    name_similarity,
    normalize_barcode,
    normalize_key,
    normalize_tax_id,
)
from .extraction import (
    TAX_DOCUMENT_TYPES,
    Classification,
    DocumentType,
    ExtractionResult,
    PixKeyType,
    infer_pix_key_type,
    is_tax_document,
    parse_decimal,
)
from .records import (
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

__all__ = [
    # Audit
    "TRACKED_FIELDS",
    "AuditEdit",
    "EditedFieldRecord",
    "edited_fields",
    "field_differs",
    "has_any_field_edited",
    "justification_error",
    # Dedupe
    "DuplicateCheckResult",
    "DuplicateLevel",
    "name_similarity",
    "normalize_barcode",
    "normalize_key",
    "normalize_tax_id",
    # Extraction
    "TAX_DOCUMENT_TYPES",
    "Classification",
    "DocumentType",
    "ExtractionResult",
    "PixKeyType",
    "infer_pix_key_type",
    "is_tax_document",
    "parse_decimal",
    # Records
    "ExpenseKind",
    "InstallmentData",
    "NfLinkStatus",
    "NfRequirement",
    "Payable",
    "PayableStatus",
    "PayableType",
    "PaymentInstrument",
    "PaymentMethod",
    "RevenueInvoice",
    "SupplierInvoice",
    "SupplierInvoiceStatus",
]
