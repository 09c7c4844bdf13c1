"""
Canonical extraction result (SSOT).

This is THE single source of truth for data returned by the recognition
service. Every module of the pipeline reads extracted values from
ExtractionResult; nothing else invents another extraction schema.

The result is immutable: human corrections never mutate it, they are
tracked separately (see schemas.audit) so the original values remain
available for the audit payload.
"""

import re
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional


class Classification(str, Enum):
    """Revenue/expense axis of a document."""

    REVENUE = "revenue"
    EXPENSE = "expense"
    UNKNOWN = "unknown"


class DocumentType(str, Enum):
    """Document-type tag assigned by the recognition service."""

    NFSE = "nfse"
    NF_PRODUTO = "nf_produto"
    BOLETO = "boleto"
    RECIBO = "recibo"
    EXTRATO = "extrato"
    DARF = "darf"
    GPS = "gps"
    DAS = "das"
    FGTS = "fgts"
    INSS_GUIA = "inss_guia"
    OUTRO = "outro"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DocumentType":
        """Parse a tag, falling back to OUTRO for unknown values."""
        if not value:
            return cls.OUTRO
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.OUTRO


class PixKeyType(str, Enum):
    """Kind of PIX key (recipient identifier)."""

    CPF = "cpf"
    CNPJ = "cnpj"
    EMAIL = "email"
    PHONE = "telefone"
    RANDOM = "aleatoria"


# Government levies: always an expense, classification axis locked
TAX_DOCUMENT_TYPES = frozenset(
    {
        DocumentType.DARF,
        DocumentType.GPS,
        DocumentType.DAS,
        DocumentType.FGTS,
        DocumentType.INSS_GUIA,
    }
)

# Display labels (used in generated descriptions)
DOCUMENT_TYPE_LABELS: dict[DocumentType, str] = {
    DocumentType.NFSE: "NFS-e",
    DocumentType.NF_PRODUTO: "NF Produto",
    DocumentType.BOLETO: "Boleto",
    DocumentType.RECIBO: "Recibo",
    DocumentType.EXTRATO: "Extrato",
    DocumentType.DARF: "DARF",
    DocumentType.GPS: "GPS",
    DocumentType.DAS: "DAS",
    DocumentType.FGTS: "FGTS",
    DocumentType.INSS_GUIA: "INSS",
    DocumentType.OUTRO: "Outro",
}

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


def is_tax_document(document_type: DocumentType | str) -> bool:
    """Check whether a document type is a government levy."""
    if isinstance(document_type, str):
        document_type = DocumentType.parse(document_type)
    return document_type in TAX_DOCUMENT_TYPES


def infer_pix_key_type(key: Optional[str]) -> Optional[PixKeyType]:
    """
    Infer the PIX key type from its shape.

    Rules (first match wins):
    - contains "@" -> email
    - random keys are UUIDs
    - phone keys start with "+" (E.164)
    - 11 digits -> CPF, 14 digits -> CNPJ
    - anything else -> random
    """
    if not key or not key.strip():
        return None

    key = key.strip()
    if "@" in key:
        return PixKeyType.EMAIL
    if _UUID_RE.match(key):
        return PixKeyType.RANDOM
    if key.startswith("+"):
        return PixKeyType.PHONE

    digits = re.sub(r"\D", "", key)
    if len(digits) == 11 and len(digits) == len(re.sub(r"[.\-/\s]", "", key)):
        return PixKeyType.CPF
    if len(digits) == 14 and len(digits) == len(re.sub(r"[.\-/\s]", "", key)):
        return PixKeyType.CNPJ
    return PixKeyType.RANDOM


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Parse an amount into Decimal.

    Accepts numbers and strings in either "1234.56" or Brazilian
    "1.234,56" notation. Returns None for empty, unparseable or
    non-finite values (NaN, Infinity).
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        text = str(value).strip().replace("R$", "").replace(" ", "")
        if "," in text:
            # Brazilian notation: dots are thousand separators
            text = text.replace(".", "").replace(",", ".")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
    return amount if amount.is_finite() else None


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class ExtractionResult:
    """
    Immutable snapshot returned by the recognition service.

    Amounts are Decimal; dates are ISO strings (YYYY-MM-DD).
    """

    classification_hint: Classification = Classification.UNKNOWN
    document_type: DocumentType = DocumentType.OUTRO

    # Issuer (supplier for expenses, ourselves for revenue)
    issuer_name: Optional[str] = None
    issuer_tax_id: Optional[str] = None
    # Counterparty
    customer_name: Optional[str] = None
    customer_tax_id: Optional[str] = None

    document_number: Optional[str] = None
    series: Optional[str] = None

    total_amount: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None

    issue_date: Optional[str] = None
    due_date: Optional[str] = None

    # Payment instrument
    linha_digitavel: Optional[str] = None
    codigo_barras: Optional[str] = None
    pix_key: Optional[str] = None
    pix_key_type: Optional[PixKeyType] = None

    description: Optional[str] = None
    competence_year: Optional[int] = None
    competence_month: Optional[int] = None

    confidence: float = 0.0
    classification_reason: str = ""

    @property
    def is_tax_document(self) -> bool:
        """True for government levies (DARF, GPS, DAS, FGTS, INSS)."""
        return is_tax_document(self.document_type)

    @property
    def effective_due_date(self) -> Optional[str]:
        """Due date, falling back to the issue date."""
        return self.due_date or self.issue_date

    def with_classification(
        self, classification: Classification, reason: str
    ) -> "ExtractionResult":
        """Return a copy with a different classification hint."""
        return replace(self, classification_hint=classification, classification_reason=reason)

    @classmethod
    def from_api_response(cls, data: dict) -> "ExtractionResult":
        """Create from a recognition service JSON response (camelCase keys)."""
        confidence = data.get("confidence") or 0
        try:
            confidence = float(confidence)
        except (TypeError, ValueError):
            confidence = 0.0
        confidence = min(max(confidence, 0.0), 1.0)

        try:
            hint = Classification(str(data.get("type") or "unknown").lower())
        except ValueError:
            hint = Classification.UNKNOWN

        pix_key = _optional_str(data.get("pixKey"))
        pix_type_raw = _optional_str(data.get("pixTipo"))
        pix_key_type: Optional[PixKeyType] = None
        if pix_type_raw:
            try:
                pix_key_type = PixKeyType(pix_type_raw.lower())
            except ValueError:
                pix_key_type = None
        if pix_key and pix_key_type is None:
            pix_key_type = infer_pix_key_type(pix_key)

        def _int(value: Any) -> Optional[int]:
            try:
                return int(value) if value not in (None, "") else None
            except (TypeError, ValueError):
                return None

        return cls(
            classification_hint=hint,
            document_type=DocumentType.parse(data.get("documentType")),
            issuer_name=_optional_str(data.get("issuerName")),
            issuer_tax_id=_optional_str(data.get("issuerCnpj")),
            customer_name=_optional_str(data.get("customerName")),
            customer_tax_id=_optional_str(data.get("customerCnpj")),
            document_number=_optional_str(data.get("documentNumber")),
            series=_optional_str(data.get("series")),
            total_amount=parse_decimal(data.get("totalValue")),
            net_amount=parse_decimal(data.get("netValue")),
            issue_date=_optional_str(data.get("issueDate")),
            due_date=_optional_str(data.get("dueDate")),
            linha_digitavel=_optional_str(data.get("linhaDigitavel")),
            codigo_barras=_optional_str(data.get("codigoBarras")),
            pix_key=pix_key,
            pix_key_type=pix_key_type,
            description=_optional_str(data.get("description")),
            competence_year=_int(data.get("competenceYear")),
            competence_month=_int(data.get("competenceMonth")),
            confidence=confidence,
            classification_reason=str(data.get("classificationReason") or ""),
        )

    def to_dict(self) -> dict:
        """Serialize to dictionary for JSON storage."""
        return {
            "classification_hint": self.classification_hint.value,
            "document_type": self.document_type.value,
            "issuer_name": self.issuer_name,
            "issuer_tax_id": self.issuer_tax_id,
            "customer_name": self.customer_name,
            "customer_tax_id": self.customer_tax_id,
            "document_number": self.document_number,
            "series": self.series,
            "total_amount": str(self.total_amount) if self.total_amount is not None else None,
            "net_amount": str(self.net_amount) if self.net_amount is not None else None,
            "issue_date": self.issue_date,
            "due_date": self.due_date,
            "linha_digitavel": self.linha_digitavel,
            "codigo_barras": self.codigo_barras,
            "pix_key": self.pix_key,
            "pix_key_type": self.pix_key_type.value if self.pix_key_type else None,
            "description": self.description,
            "competence_year": self.competence_year,
            "competence_month": self.competence_month,
            "confidence": self.confidence,
            "classification_reason": self.classification_reason,
        }
