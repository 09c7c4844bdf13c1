"""
Audit trail for human corrections of extracted values.

When a reviewer changes any tracked field before confirming a document,
the record must carry an AuditEdit: the original/edited pair of every
changed field plus a free-text justification.

Comparison rules per field:
- amount: numeric, differences up to 0.01 are not edits
- issuer_name: case-insensitive
- everything else: exact string comparison (None and "" are equal)
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

from .extraction import ExtractionResult, parse_decimal

# Fields whose edits require a justification
TRACKED_FIELDS: tuple[str, ...] = (
    "amount",
    "due_date",
    "issue_date",
    "linha_digitavel",
    "codigo_barras",
    "issuer_name",
    "issuer_tax_id",
    "document_number",
    "pix_key",
)

AMOUNT_TOLERANCE = Decimal("0.01")

MIN_JUSTIFICATION_LENGTH = 10


@dataclass(frozen=True)
class EditedFieldRecord:
    """Original and edited value of a single field."""

    original: Any
    edited: Any

    def to_dict(self) -> dict:
        return {"original": _serialize(self.original), "edited": _serialize(self.edited)}


@dataclass
class AuditEdit:
    """All edited fields plus the justification that explains them."""

    justification: str
    fields: dict[str, EditedFieldRecord] = field(default_factory=dict)

    def to_dict(self) -> dict:
        """Payload persisted in the record's ocr_edit_audit column."""
        return {
            "justification": self.justification,
            "fields": {name: record.to_dict() for name, record in self.fields.items()},
        }


def _serialize(value: Any) -> Any:
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return value


def _blank(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def original_values(extraction: ExtractionResult) -> dict[str, Any]:
    """Tracked field values as extracted by the recognition service."""
    return {
        "amount": extraction.total_amount,
        "due_date": extraction.due_date,
        "issue_date": extraction.issue_date,
        "linha_digitavel": extraction.linha_digitavel,
        "codigo_barras": extraction.codigo_barras,
        "issuer_name": extraction.issuer_name,
        "issuer_tax_id": extraction.issuer_tax_id,
        "document_number": extraction.document_number,
        "pix_key": extraction.pix_key,
    }


def field_differs(name: str, original: Any, edited: Any) -> bool:
    """
    Compare one tracked field using its comparison rule.

    Examples:
        >>> field_differs("amount", Decimal("100.00"), Decimal("100.005"))
        False
        >>> field_differs("issuer_name", "ACME Ltda", "acme ltda")
        False
    """
    if name == "amount":
        a = parse_decimal(original)
        b = parse_decimal(edited)
        if a is None or b is None:
            return a is not b
        return abs(a - b) > AMOUNT_TOLERANCE

    a_text = _blank(original)
    b_text = _blank(edited)
    if name == "issuer_name":
        a_text = a_text.lower() if a_text else None
        b_text = b_text.lower() if b_text else None
    return a_text != b_text


def edited_fields(
    extraction: ExtractionResult, values: dict[str, Any]
) -> dict[str, EditedFieldRecord]:
    """
    Collect tracked fields whose current value differs from the extraction.

    Fields absent from `values` are considered unchanged.
    """
    originals = original_values(extraction)
    changes: dict[str, EditedFieldRecord] = {}
    for name in TRACKED_FIELDS:
        if name not in values:
            continue
        if field_differs(name, originals[name], values[name]):
            changes[name] = EditedFieldRecord(original=originals[name], edited=values[name])
    return changes


def has_any_field_edited(extraction: ExtractionResult, values: dict[str, Any]) -> bool:
    """True iff at least one tracked field differs from the extraction."""
    return bool(edited_fields(extraction, values))


def justification_error(
    text: Optional[str], min_length: int = MIN_JUSTIFICATION_LENGTH
) -> Optional[str]:
    """Return a user-facing error when a justification is missing or too short."""
    stripped = (text or "").strip()
    if not stripped:
        return "A justification is required"
    if len(stripped) < min_length:
        return f"Justification must have at least {min_length} characters"
    return None
