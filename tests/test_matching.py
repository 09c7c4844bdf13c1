"""Tests for boleto to supplier invoice matching."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from conftest import SUPPLIER_CNPJ

from ledger_intake.config import MatchingConfig
from ledger_intake.matching import BoletoMatchingEngine, MatchCandidate, SuggestionSearch
from ledger_intake.schemas.records import (
    NfLinkStatus,
    Payable,
    PaymentMethod,
    SupplierInvoice,
    SupplierInvoiceStatus,
)

TODAY = date(2026, 10, 18)


def _invoice(**kwargs) -> SupplierInvoice:
    defaults = dict(
        document_number="4521",
        supplier_name="Distribuidora Alfa Ltda",
        supplier_tax_id="12345678000190",
        issue_date="2026-10-01",
        total_value=Decimal("1000.00"),
    )
    defaults.update(kwargs)
    return SupplierInvoice(**defaults)


@pytest.fixture
def engine(store):
    return BoletoMatchingEngine.from_config(store, MatchingConfig())


class TestScoring:
    """Tests for the additive score."""

    def test_all_signals(self, engine):
        candidate = engine.score(
            _invoice(status=SupplierInvoiceStatus.AWAITING_BOLETO),
            SUPPLIER_CNPJ,
            Decimal("1000.00"),
        )
        assert candidate.score == 120
        assert candidate.reasons == ["Awaiting boleto", "Tax id matches", "Exact amount"]

    def test_approximate_amount(self, engine):
        candidate = engine.score(_invoice(), None, Decimal("1030.00"))
        assert candidate.score == 40
        assert candidate.reasons == ["Approximate amount (3.0% difference)"]

    def test_amount_outside_tolerance(self, engine):
        candidate = engine.score(_invoice(), None, Decimal("1060.00"))
        assert candidate.score == 0

    def test_blank_tax_id_never_matches(self, engine):
        candidate = engine.score(_invoice(supplier_tax_id=None), "", None)
        assert candidate.score == 0

    def test_adding_a_signal_never_lowers_the_score(self, engine):
        base = engine.score(_invoice(), None, None).score
        with_tax_id = engine.score(_invoice(), SUPPLIER_CNPJ, None).score
        with_both = engine.score(_invoice(), SUPPLIER_CNPJ, Decimal("1000")).score
        assert base <= with_tax_id <= with_both

    def test_to_dict(self, engine):
        candidate = engine.score(_invoice(id=7), SUPPLIER_CNPJ, None)
        data = candidate.to_dict()
        assert data["invoice_ref"] == 7
        assert data["total_value"] == "1000.00"
        assert data["reasons"] == ["Tax id matches"]


class TestRanking:
    """Tests for filtering and ordering."""

    def test_status_bonus_alone_is_dropped(self, engine):
        ranked = engine.rank(
            [_invoice(status=SupplierInvoiceStatus.AWAITING_BOLETO)], "99.999.999/0001-99", None
        )
        assert ranked == []

    def test_sorted_by_score(self, engine):
        low = _invoice(id=1)
        high = _invoice(id=2, status=SupplierInvoiceStatus.AWAITING_BOLETO)
        ranked = engine.rank([low, high], SUPPLIER_CNPJ, None)
        assert [c.invoice.id for c in ranked] == [2, 1]
        assert [c.score for c in ranked] == [80, 50]

    def test_ties_keep_input_order(self, engine):
        invoices = [_invoice(id=i) for i in (3, 1, 2)]
        ranked = engine.rank(invoices, SUPPLIER_CNPJ, None)
        assert [c.invoice.id for c in ranked] == [3, 1, 2]


class TestFindCandidates:
    """Tests for the store-backed search."""

    def test_filters_pool(self, store, engine):
        awaiting = store.insert_supplier_invoice(
            _invoice(document_number="1", status=SupplierInvoiceStatus.AWAITING_BOLETO)
        )
        pending = store.insert_supplier_invoice(_invoice(document_number="2"))
        store.insert_supplier_invoice(
            _invoice(document_number="3", status=SupplierInvoiceStatus.PAID)
        )
        store.insert_supplier_invoice(
            _invoice(document_number="4", payment_method=PaymentMethod.TRANSFER)
        )
        # Outside the 90 day window
        store.insert_supplier_invoice(_invoice(document_number="5", issue_date="2026-06-01"))

        candidates = engine.find_candidates(SUPPLIER_CNPJ, Decimal("1000.00"), today=TODAY)

        assert [c.invoice.id for c in candidates] == [awaiting, pending]
        assert [c.score for c in candidates] == [120, 90]

    def test_empty_store(self, engine):
        assert engine.find_candidates(SUPPLIER_CNPJ, Decimal("1"), today=TODAY) == []

    def test_candidate_limit(self, store):
        engine = BoletoMatchingEngine(store, candidate_limit=2)
        for number in range(4):
            store.insert_supplier_invoice(_invoice(document_number=str(number)))
        assert len(engine.find_candidates(SUPPLIER_CNPJ, None, today=TODAY)) == 2


class TestLink:
    """Tests for linking a boleto to an invoice."""

    def test_awaiting_becomes_pending_once(self, store, engine):
        invoice_id = store.insert_supplier_invoice(
            _invoice(status=SupplierInvoiceStatus.AWAITING_BOLETO)
        )

        assert engine.link(invoice_id)
        assert not engine.link(invoice_id)
        assert store.get_supplier_invoice(invoice_id).status == SupplierInvoiceStatus.PENDING

    def test_other_status_untouched(self, store, engine):
        invoice_id = store.insert_supplier_invoice(_invoice(status=SupplierInvoiceStatus.PARTIAL))
        assert not engine.link(invoice_id)
        assert store.get_supplier_invoice(invoice_id).status == SupplierInvoiceStatus.PARTIAL

    def test_links_payable(self, store, engine):
        invoice_id = store.insert_supplier_invoice(
            _invoice(status=SupplierInvoiceStatus.AWAITING_BOLETO)
        )
        payable_id = store.insert_payable(
            Payable(
                beneficiary_name="Distribuidora Alfa Ltda",
                amount=Decimal("1000.00"),
                due_date="2026-10-20",
            )
        )

        engine.link(invoice_id, payable_id)

        payable = store.get_payable(payable_id)
        assert payable.supplier_invoice_id == invoice_id
        assert payable.nf_link_status == NfLinkStatus.LINKED


class TestSuggestionSearch:
    """Only the newest search may publish its results."""

    def test_stale_results_dropped(self):
        first_result = [MatchCandidate(invoice=_invoice(id=1), score=50)]
        second_result = [MatchCandidate(invoice=_invoice(id=2), score=90)]

        async def fake_search(tax_id, amount):
            if amount == Decimal("1"):
                await asyncio.sleep(0.05)
                return first_result
            return second_result

        async def run():
            search = SuggestionSearch(fake_search)
            slow = asyncio.create_task(search.search(SUPPLIER_CNPJ, Decimal("1")))
            await asyncio.sleep(0)
            fast = await search.search(SUPPLIER_CNPJ, Decimal("2"))
            return search, await slow, fast

        search, slow, fast = asyncio.run(run())

        assert slow is None
        assert fast == second_result
        assert search.suggestions == second_result
        assert search.generation == 2

    def test_invalidate(self):
        async def fake_search(tax_id, amount):
            await asyncio.sleep(0.01)
            return [MatchCandidate(invoice=_invoice(id=1), score=50)]

        async def run():
            search = SuggestionSearch(fake_search)
            task = asyncio.create_task(search.search(None, None))
            await asyncio.sleep(0)
            search.invalidate()
            return search, await task

        search, result = asyncio.run(run())
        assert result is None
        assert search.suggestions == []

    def test_for_engine(self, store, engine):
        store.insert_supplier_invoice(_invoice(issue_date=date.today().isoformat()))
        search = SuggestionSearch.for_engine(engine)

        results = asyncio.run(search.search(SUPPLIER_CNPJ, Decimal("1000.00")))

        assert len(results) == 1
        assert results[0].score == 90
