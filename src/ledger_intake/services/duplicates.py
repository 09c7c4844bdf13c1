"""
Duplicate detection against persisted records.

Two kinds of checks exist and both are needed:

- check_payable_comprehensive(): graded pre-check shown to the user before
  confirmation. Advisory only; it runs while other documents may still be
  committing, so it cannot guarantee anything.
- find_revenue_duplicate() / find_expense_duplicate(): the commit-time
  re-check run inside confirm(). Together with the database uniqueness
  constraints this is what prevents double inserts.

Empty or absent keys never match: every lookup returns "not a duplicate"
without querying the store when its key is blank.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from ..schemas.dedupe import (
    SIMILAR_AMOUNT_TOLERANCE,
    SIMILAR_DATE_WINDOW_DAYS,
    SIMILAR_NAME_THRESHOLD,
    DuplicateCheckResult,
    DuplicateLevel,
    amounts_near,
    dates_near,
    name_similarity,
    normalize_barcode,
    normalize_key,
    normalize_tax_id,
)
from ..schemas.extraction import ExtractionResult
from ..state_store import StateStore

logger = logging.getLogger(__name__)

# Candidates examined by the similar-record heuristic
SIMILAR_CANDIDATE_LIMIT = 10


class DuplicateDetector:
    """Lookups for existing payables, revenue invoices and supplier invoices."""

    def __init__(self, store: StateStore):
        self.store = store

    # Payment code lookups

    def find_payable_by_codigo_barras(
        self, code: Optional[str], exclude_id: Optional[int] = None
    ) -> Optional[int]:
        """ID of the active payable using this barcode, if any."""
        normalized = normalize_barcode(code)
        if not normalized:
            return None
        return self.store.find_payable_id_by_code("codigo_barras", normalized, exclude_id)

    def find_payable_by_linha_digitavel(
        self, line: Optional[str], exclude_id: Optional[int] = None
    ) -> Optional[int]:
        """ID of the active payable using this digit line, if any."""
        normalized = normalize_barcode(line)
        if not normalized:
            return None
        return self.store.find_payable_id_by_code("linha_digitavel", normalized, exclude_id)

    def payable_exists_by_codigo_barras(
        self, code: Optional[str], exclude_id: Optional[int] = None
    ) -> bool:
        return self.find_payable_by_codigo_barras(code, exclude_id) is not None

    def payable_exists_by_linha_digitavel(
        self, line: Optional[str], exclude_id: Optional[int] = None
    ) -> bool:
        return self.find_payable_by_linha_digitavel(line, exclude_id) is not None

    def supplier_invoice_exists(
        self,
        document_number: Optional[str],
        supplier_tax_id: Optional[str],
        issue_date: Optional[str],
    ) -> bool:
        """Check the supplier invoice natural key; tax id filters only when present."""
        number = normalize_key(document_number)
        issued = normalize_key(issue_date)
        if not number or not issued:
            return False
        found = self.store.find_supplier_invoice_id(
            number, normalize_tax_id(supplier_tax_id), issued
        )
        return found is not None

    # Commit-time checks

    def find_revenue_duplicate(
        self, tax_id: Optional[str], document_number: Optional[str]
    ) -> Optional[int]:
        """Existing revenue invoice with the same issuer tax id and number."""
        normalized_tax_id = normalize_tax_id(tax_id)
        number = normalize_key(document_number)
        if not normalized_tax_id or not number:
            return None
        return self.store.find_revenue_invoice_id(normalized_tax_id, number)

    def find_expense_duplicate(
        self,
        tax_id: Optional[str],
        document_number: Optional[str],
        amount: Optional[Decimal],
        due_date: Optional[str],
    ) -> Optional[int]:
        """
        Existing payable for the same bill.

        Primary: beneficiary tax id + document number.
        Fallback: beneficiary tax id + amount + due date.
        """
        normalized_tax_id = normalize_tax_id(tax_id)
        if not normalized_tax_id:
            return None

        number = normalize_key(document_number)
        if number:
            existing = self.store.find_payable_id_by_document(normalized_tax_id, number)
            if existing is not None:
                return existing

        due = normalize_key(due_date)
        if amount and due:
            return self.store.find_payable_id_by_amount(normalized_tax_id, amount, due)
        return None

    # Graded pre-check

    def check_payable_comprehensive(self, extraction: ExtractionResult) -> DuplicateCheckResult:
        """
        Graded duplicate pre-check for an expense, strongest signal first.

        BLOCKED: barcode or digit line already used
        HIGH: same tax id and document number
        MEDIUM: same tax id, amount and due date
        LOW: similar beneficiary with amount within 1% and due date within 5 days
        """
        existing = self.find_payable_by_codigo_barras(extraction.codigo_barras)
        if existing is not None:
            return DuplicateCheckResult(
                DuplicateLevel.BLOCKED, "Barcode already registered", existing
            )

        existing = self.find_payable_by_linha_digitavel(extraction.linha_digitavel)
        if existing is not None:
            return DuplicateCheckResult(
                DuplicateLevel.BLOCKED, "Digit line already registered", existing
            )

        tax_id = normalize_tax_id(extraction.issuer_tax_id)
        number = normalize_key(extraction.document_number)
        if tax_id and number:
            existing = self.store.find_payable_id_by_document(tax_id, number)
            if existing is not None:
                return DuplicateCheckResult(
                    DuplicateLevel.HIGH,
                    "Tax id and document number match an existing record",
                    existing,
                )

        due = extraction.effective_due_date
        if tax_id and extraction.total_amount and due:
            existing = self.store.find_payable_id_by_amount(tax_id, extraction.total_amount, due)
            if existing is not None:
                return DuplicateCheckResult(
                    DuplicateLevel.MEDIUM,
                    "Tax id, amount and due date match an existing record",
                    existing,
                )

        similar = self._find_similar(extraction)
        if similar is not None:
            return DuplicateCheckResult(
                DuplicateLevel.LOW,
                "Found a record with similar beneficiary, amount and date",
                similar,
            )

        return DuplicateCheckResult()

    def _find_similar(self, extraction: ExtractionResult) -> Optional[int]:
        amount = extraction.total_amount
        due = extraction.effective_due_date
        if not extraction.issuer_name or not amount or not due:
            return None
        try:
            due_day = date.fromisoformat(due[:10])
        except ValueError:
            logger.debug("Skipping similarity check, unparseable due date %r", due)
            return None

        window = timedelta(days=SIMILAR_DATE_WINDOW_DAYS)
        candidates = self.store.find_payables_in_range(
            min_amount=amount * (1 - SIMILAR_AMOUNT_TOLERANCE),
            max_amount=amount * (1 + SIMILAR_AMOUNT_TOLERANCE),
            date_from=(due_day - window).isoformat(),
            date_to=(due_day + window).isoformat(),
            limit=SIMILAR_CANDIDATE_LIMIT,
        )
        # The range query is a prefilter; these comparisons decide
        for payable in candidates:
            if (
                amounts_near(amount, payable.amount)
                and dates_near(due, payable.due_date)
                and name_similarity(extraction.issuer_name, payable.beneficiary_name)
                >= SIMILAR_NAME_THRESHOLD
            ):
                return payable.id
        return None
