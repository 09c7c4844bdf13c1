"""Tests for duplicate detection and local classification."""

from dataclasses import replace
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from conftest import OWN_CNPJ, SUPPLIER_CNPJ

from ledger_intake.schemas.dedupe import DuplicateLevel
from ledger_intake.schemas.extraction import Classification, DocumentType, ExtractionResult
from ledger_intake.schemas.records import Payable, SupplierInvoice
from ledger_intake.services import DuplicateDetector, OwnTaxIdClassifier


def _store_payable(store, **kwargs) -> int:
    defaults = dict(
        beneficiary_name="Distribuidora Alfa Ltda",
        beneficiary_tax_id="12345678000190",
        amount=Decimal("1000.00"),
        due_date="2026-09-20",
    )
    defaults.update(kwargs)
    return store.insert_payable(Payable(**defaults))


class TestEmptyKeys:
    """Blank keys never match and never reach the store."""

    @pytest.fixture
    def detector(self):
        return DuplicateDetector(MagicMock())

    @pytest.mark.parametrize("value", [None, "", "   ", "..-"])
    def test_blank_codes(self, detector, value):
        assert not detector.payable_exists_by_codigo_barras(value)
        assert not detector.payable_exists_by_linha_digitavel(value)
        detector.store.find_payable_id_by_code.assert_not_called()

    def test_blank_revenue_keys(self, detector):
        assert detector.find_revenue_duplicate("", "123") is None
        assert detector.find_revenue_duplicate(OWN_CNPJ, "  ") is None
        detector.store.find_revenue_invoice_id.assert_not_called()

    def test_blank_expense_tax_id(self, detector):
        assert detector.find_expense_duplicate(None, "4521", Decimal("10"), "2026-09-20") is None
        detector.store.find_payable_id_by_document.assert_not_called()
        detector.store.find_payable_id_by_amount.assert_not_called()

    def test_blank_supplier_invoice_key(self, detector):
        assert not detector.supplier_invoice_exists("", SUPPLIER_CNPJ, "2026-09-01")
        assert not detector.supplier_invoice_exists("4521", SUPPLIER_CNPJ, None)
        detector.store.find_supplier_invoice_id.assert_not_called()

    def test_two_blank_barcodes_are_not_duplicates(self, store):
        _store_payable(store)
        detector = DuplicateDetector(store)
        assert not detector.payable_exists_by_codigo_barras("")


class TestPaymentCodes:
    """Tests for barcode and digit line lookups."""

    def test_formatted_code_matches_normalized(self, store):
        payable_id = _store_payable(store, linha_digitavel="23793381286000000000300000000400")
        detector = DuplicateDetector(store)
        assert (
            detector.find_payable_by_linha_digitavel("23793.38128 60000.000003 00000.000400")
            == payable_id
        )

    def test_exclude_id(self, store):
        payable_id = _store_payable(store, codigo_barras="123456")
        detector = DuplicateDetector(store)
        assert detector.payable_exists_by_codigo_barras("123456")
        assert not detector.payable_exists_by_codigo_barras("123456", exclude_id=payable_id)


class TestComprehensiveCheck:
    """Tests for the graded duplicate pre-check."""

    def test_no_records(self, store, boleto_extraction):
        result = DuplicateDetector(store).check_payable_comprehensive(boleto_extraction)
        assert result.level == DuplicateLevel.NONE
        assert not result.is_duplicate

    def test_shared_barcode_is_blocked(self, store, boleto_extraction):
        payable_id = _store_payable(
            store,
            beneficiary_tax_id="99999999000199",
            codigo_barras="23791954700001000003381286000000000000000040",
        )
        result = DuplicateDetector(store).check_payable_comprehensive(boleto_extraction)
        assert result.level == DuplicateLevel.BLOCKED
        assert result.existing_id == payable_id
        assert result.to_dict()["level"] == "blocked"

    def test_tax_id_and_number_is_high(self, store, boleto_extraction):
        payable_id = _store_payable(store, document_number="4521", amount=Decimal("5"))
        result = DuplicateDetector(store).check_payable_comprehensive(boleto_extraction)
        assert result.level == DuplicateLevel.HIGH
        assert result.existing_id == payable_id
        assert result.level.allow_continue

    def test_tax_id_amount_and_date_is_medium(self, store, boleto_extraction):
        _store_payable(store, document_number="OTHER")
        result = DuplicateDetector(store).check_payable_comprehensive(boleto_extraction)
        assert result.level == DuplicateLevel.MEDIUM

    def test_similar_name_is_low(self, store, boleto_extraction):
        _store_payable(
            store,
            beneficiary_name="DISTRIBUIDORA ALFA",
            beneficiary_tax_id=None,
            amount=Decimal("1005.00"),
            due_date="2026-09-23",
        )
        result = DuplicateDetector(store).check_payable_comprehensive(boleto_extraction)
        assert result.level == DuplicateLevel.LOW

    def test_dissimilar_name_is_none(self, store, boleto_extraction):
        _store_payable(
            store,
            beneficiary_name="Padaria Central",
            beneficiary_tax_id=None,
            amount=Decimal("1000.00"),
        )
        result = DuplicateDetector(store).check_payable_comprehensive(boleto_extraction)
        assert result.level == DuplicateLevel.NONE


class TestCommitTimeChecks:
    """Tests for the checks run immediately before inserting."""

    def test_expense_by_document(self, store):
        payable_id = _store_payable(store, document_number="4521")
        detector = DuplicateDetector(store)
        assert detector.find_expense_duplicate(SUPPLIER_CNPJ, "4521", None, None) == payable_id

    def test_expense_by_amount_and_date(self, store):
        payable_id = _store_payable(store)
        detector = DuplicateDetector(store)
        assert (
            detector.find_expense_duplicate(SUPPLIER_CNPJ, None, Decimal("1000"), "2026-09-20")
            == payable_id
        )
        assert detector.find_expense_duplicate(SUPPLIER_CNPJ, None, Decimal("1000"), None) is None

    def test_supplier_invoice_exists(self, store):
        store.insert_supplier_invoice(
            SupplierInvoice(
                document_number="4521",
                supplier_name="Distribuidora Alfa Ltda",
                supplier_tax_id="12345678000190",
                issue_date="2026-09-01",
                total_value=Decimal("1000"),
            )
        )
        detector = DuplicateDetector(store)
        assert detector.supplier_invoice_exists("4521", SUPPLIER_CNPJ, "2026-09-01")
        assert detector.supplier_invoice_exists(" 4521 ", None, "2026-09-01")
        assert not detector.supplier_invoice_exists("4521", SUPPLIER_CNPJ, "2026-09-02")


class TestOwnTaxIdClassifier:
    """Tests for local revenue/expense classification."""

    @pytest.fixture
    def classifier(self):
        return OwnTaxIdClassifier([OWN_CNPJ, ""])

    def test_issued_by_us_is_revenue(self, classifier):
        extraction = ExtractionResult(issuer_tax_id=OWN_CNPJ, customer_tax_id=SUPPLIER_CNPJ)
        assert classifier.classify(extraction) == (Classification.REVENUE, "Issued by us")

    def test_addressed_to_us_is_expense(self, classifier, boleto_extraction):
        assert classifier.classify(boleto_extraction)[0] == Classification.EXPENSE

    def test_tax_document_always_expense(self, classifier):
        extraction = ExtractionResult(document_type=DocumentType.DAS, issuer_tax_id=OWN_CNPJ)
        assert classifier.classify(extraction)[0] == Classification.EXPENSE

    def test_between_own_units_stays_unknown(self, classifier):
        extraction = ExtractionResult(issuer_tax_id=OWN_CNPJ, customer_tax_id=OWN_CNPJ)
        assert classifier.refine(extraction) is extraction

    def test_refine_keeps_known_hint(self, classifier, nfse_extraction):
        assert classifier.refine(nfse_extraction) is nfse_extraction

    def test_refine_unknown(self, classifier, boleto_extraction):
        unknown = replace(boleto_extraction, classification_hint=Classification.UNKNOWN)
        refined = classifier.refine(unknown)
        assert refined.classification_hint == Classification.EXPENSE
        assert refined.classification_reason == "Addressed to us"

    def test_disabled_without_tax_ids(self):
        assert not OwnTaxIdClassifier([]).enabled
