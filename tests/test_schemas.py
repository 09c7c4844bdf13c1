"""Tests for extraction parsing, audit rules and dedupe normalization."""

from decimal import Decimal

import pytest

from ledger_intake.schemas import (
    AuditEdit,
    Classification,
    DocumentType,
    EditedFieldRecord,
    ExtractionResult,
    PixKeyType,
    edited_fields,
    field_differs,
    has_any_field_edited,
    infer_pix_key_type,
    is_tax_document,
    justification_error,
    name_similarity,
    normalize_barcode,
    normalize_tax_id,
    parse_decimal,
)
from ledger_intake.schemas.dedupe import amounts_near, dates_near
from ledger_intake.schemas.records import NfRequirement


class TestExtractionParsing:
    """Tests for ExtractionResult.from_api_response()."""

    def test_boleto_response(self, boleto_extraction):
        assert boleto_extraction.classification_hint == Classification.EXPENSE
        assert boleto_extraction.document_type == DocumentType.BOLETO
        assert boleto_extraction.total_amount == Decimal("1000.0")
        assert boleto_extraction.effective_due_date == "2026-09-20"
        assert boleto_extraction.confidence == pytest.approx(0.93)
        assert not boleto_extraction.is_tax_document

    def test_brazilian_amounts(self, nfse_extraction):
        assert nfse_extraction.total_amount == Decimal("2500.00")
        assert nfse_extraction.net_amount == Decimal("2350.00")
        assert nfse_extraction.competence_month == 9

    def test_unknown_values_fall_back(self):
        result = ExtractionResult.from_api_response(
            {"type": "gift", "documentType": "cheque", "confidence": 7, "issuerName": "  "}
        )
        assert result.classification_hint == Classification.UNKNOWN
        assert result.document_type == DocumentType.OUTRO
        assert result.confidence == 1.0
        assert result.issuer_name is None

    def test_pix_key_type_inferred(self):
        result = ExtractionResult.from_api_response({"pixKey": "financeiro@alfa.com.br"})
        assert result.pix_key_type == PixKeyType.EMAIL

    def test_pix_key_type_given(self):
        result = ExtractionResult.from_api_response({"pixKey": "12345678901", "pixTipo": "CPF"})
        assert result.pix_key_type == PixKeyType.CPF

    def test_due_date_falls_back_to_issue_date(self):
        result = ExtractionResult.from_api_response({"issueDate": "2026-09-01"})
        assert result.effective_due_date == "2026-09-01"

    def test_tax_documents(self, darf_extraction):
        assert darf_extraction.is_tax_document
        assert is_tax_document("FGTS")
        assert not is_tax_document("nfse")

    def test_to_dict(self, boleto_extraction):
        data = boleto_extraction.to_dict()
        assert data["total_amount"] == "1000.0"
        assert data["document_type"] == "boleto"
        assert data["pix_key_type"] is None


class TestParseDecimal:
    """Tests for parse_decimal()."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("1.234,56", Decimal("1234.56")),
            ("1234.56", Decimal("1234.56")),
            ("R$ 99,90", Decimal("99.90")),
            (150, Decimal("150")),
            (12.5, Decimal("12.5")),
        ],
    )
    def test_parses(self, value, expected):
        assert parse_decimal(value) == expected

    @pytest.mark.parametrize(
        "value", [None, "", "abc", True, "NaN", "-Infinity", float("nan"), Decimal("Infinity")]
    )
    def test_unparseable(self, value):
        assert parse_decimal(value) is None


class TestPixKeyType:
    """Tests for infer_pix_key_type()."""

    @pytest.mark.parametrize(
        "key,expected",
        [
            ("contato@clinica.com", PixKeyType.EMAIL),
            ("123.456.789-01", PixKeyType.CPF),
            ("12.345.678/0001-90", PixKeyType.CNPJ),
            ("+5511999998888", PixKeyType.PHONE),
            ("7d9f4c1e-2b3a-4c5d-8e9f-0a1b2c3d4e5f", PixKeyType.RANDOM),
        ],
    )
    def test_shapes(self, key, expected):
        assert infer_pix_key_type(key) == expected

    def test_blank(self):
        assert infer_pix_key_type("   ") is None


class TestAuditRules:
    """Tests for edit detection and justification rules."""

    def test_amount_tolerance(self):
        assert not field_differs("amount", Decimal("100.00"), "100.01")
        assert field_differs("amount", Decimal("100.00"), "100.02")
        assert field_differs("amount", None, "1")

    def test_issuer_name_case_insensitive(self):
        assert not field_differs("issuer_name", "Alfa Ltda", "ALFA LTDA")

    def test_blank_equals_none(self):
        assert not field_differs("document_number", None, "  ")

    def test_untouched_fields_are_not_edits(self, boleto_extraction):
        assert not has_any_field_edited(boleto_extraction, {})
        assert not has_any_field_edited(
            boleto_extraction, {"document_number": "4521", "due_date": "2026-09-20"}
        )

    def test_edited_fields(self, boleto_extraction):
        changes = edited_fields(
            boleto_extraction, {"due_date": "2026-09-25", "amount": "1000.00"}
        )
        assert list(changes) == ["due_date"]
        assert changes["due_date"] == EditedFieldRecord("2026-09-20", "2026-09-25")

    def test_audit_payload(self):
        audit = AuditEdit(
            "Valor errado",
            {"amount": EditedFieldRecord(Decimal("100"), Decimal("150"))},
        )
        assert audit.to_dict() == {
            "justification": "Valor errado",
            "fields": {"amount": {"original": "100.00", "edited": "150.00"}},
        }

    def test_justification_error(self):
        assert justification_error(None) == "A justification is required"
        assert justification_error("   ") == "A justification is required"
        assert justification_error("  abcde  ") == (
            "Justification must have at least 10 characters"
        )
        assert justification_error("Valor errado") is None
        assert justification_error("abc", min_length=3) is None


class TestDedupeNormalization:
    """Tests for key normalization and fuzzy comparisons."""

    def test_normalize_tax_id(self):
        assert normalize_tax_id("12.345.678/0001-90") == "12345678000190"
        assert normalize_tax_id("") is None
        assert normalize_tax_id("--") is None

    def test_normalize_barcode(self):
        assert normalize_barcode("23793.38128 60000.000003") == "237933812860000000003"
        assert normalize_barcode(None) is None

    def test_name_similarity(self):
        assert name_similarity("Distribuidora Alfa Ltda", "DISTRIBUIDORA ALFA LTDA") == 1.0
        assert name_similarity("Alfa", "Distribuidora Alfa Ltda") == 0.8
        assert name_similarity("Distribuidora Alfa Ltda", "Comercial Alfa Ltda") == pytest.approx(
            4 / 6
        )
        assert name_similarity("São João", "Sao Joao") == 1.0
        assert name_similarity("", "Alfa") == 0.0

    def test_amounts_near(self):
        assert amounts_near(Decimal("100"), Decimal("100.99"))
        assert not amounts_near(Decimal("100"), Decimal("102"))
        assert not amounts_near(Decimal("100"), None)

    def test_dates_near(self):
        assert dates_near("2026-09-20", "2026-09-25")
        assert not dates_near("2026-09-20", "2026-09-26")
        assert not dates_near("2026-09-20", "not a date")


class TestNfRequirement:
    """Tests for NfRequirement.satisfied_by()."""

    def test_options(self):
        assert NfRequirement().satisfied_by() == []
        assert NfRequirement(exemption_reason="   ").satisfied_by() == []
        assert NfRequirement(supplier_invoice_id=1, nf_in_same_document=True).satisfied_by() == [
            "supplier_invoice_id",
            "nf_in_same_document",
        ]
