"""Matching engine for linking boletos to open supplier invoices.

Given a boleto's issuer tax id and amount, rank the open supplier invoices
it most likely settles. Scoring is additive and every signal explains
itself through a reason string:

- invoice is awaiting its boleto: +30
- supplier tax id equals the boleto issuer's (digits only): +50
- amount within tolerance_percent of the invoice total: +40

Candidates below min_score (40) are dropped, so the status bonus alone
never produces a suggestion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from ..schemas.dedupe import normalize_tax_id
from ..schemas.records import SupplierInvoice, SupplierInvoiceStatus

if TYPE_CHECKING:
    from ..config import MatchingConfig
    from ..state_store import StateStore

logger = logging.getLogger(__name__)


@dataclass
class MatchCandidate:
    """A ranked, explainable supplier invoice suggestion."""

    invoice: SupplierInvoice
    score: int
    reasons: list[str] = field(default_factory=list)

    @property
    def invoice_ref(self) -> int | None:
        return self.invoice.id

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "invoice_ref": self.invoice_ref,
            "document_number": self.invoice.document_number,
            "supplier_name": self.invoice.supplier_name,
            "total_value": str(self.invoice.total_value),
            "status": self.invoice.status.value,
            "score": self.score,
            "reasons": self.reasons,
        }


class BoletoMatchingEngine:
    """Ranks open supplier invoices for a presented boleto."""

    SCORE_AWAITING_BOLETO = 30
    SCORE_TAX_ID = 50
    SCORE_AMOUNT = 40

    def __init__(
        self,
        state_store: StateStore,
        tolerance_percent: float = 5.0,
        window_days: int = 90,
        candidate_limit: int = 100,
        min_score: int = 40,
    ) -> None:
        """Initialize the matching engine.

        Args:
            state_store: Store holding supplier invoices.
            tolerance_percent: Amount band, percent of the invoice total.
            window_days: Only invoices issued in this many days are candidates.
            candidate_limit: Maximum invoices scored per search.
            min_score: Candidates scoring below this are excluded.
        """
        self.store = state_store
        self.tolerance_percent = Decimal(str(tolerance_percent))
        self.window_days = window_days
        self.candidate_limit = candidate_limit
        self.min_score = min_score

    @classmethod
    def from_config(cls, state_store: StateStore, config: MatchingConfig) -> BoletoMatchingEngine:
        return cls(
            state_store,
            tolerance_percent=config.tolerance_percent,
            window_days=config.window_days,
            candidate_limit=config.candidate_limit,
            min_score=config.min_score,
        )

    def score(
        self,
        invoice: SupplierInvoice,
        tax_id: str | None,
        amount: Decimal | None,
    ) -> MatchCandidate:
        """Score one invoice against a boleto's tax id and amount."""
        score = 0
        reasons: list[str] = []

        if invoice.status == SupplierInvoiceStatus.AWAITING_BOLETO:
            score += self.SCORE_AWAITING_BOLETO
            reasons.append("Awaiting boleto")

        boleto_tax_id = normalize_tax_id(tax_id)
        if boleto_tax_id and boleto_tax_id == normalize_tax_id(invoice.supplier_tax_id):
            score += self.SCORE_TAX_ID
            reasons.append("Tax id matches")

        if amount is not None and invoice.total_value is not None:
            diff = abs(amount - invoice.total_value)
            tolerance = abs(invoice.total_value) * self.tolerance_percent / 100
            if diff == 0:
                score += self.SCORE_AMOUNT
                reasons.append("Exact amount")
            elif diff <= tolerance:
                score += self.SCORE_AMOUNT
                percent = diff / abs(invoice.total_value) * 100
                reasons.append(f"Approximate amount ({percent:.1f}% difference)")

        return MatchCandidate(invoice=invoice, score=score, reasons=reasons)

    def rank(
        self,
        invoices: list[SupplierInvoice],
        tax_id: str | None,
        amount: Decimal | None,
    ) -> list[MatchCandidate]:
        """
        Score, filter and sort candidates.

        The sort is stable: equal scores keep input order, which prefers
        more recently issued invoices since the pool comes newest first.
        """
        scored = [self.score(invoice, tax_id, amount) for invoice in invoices]
        kept = [c for c in scored if c.score >= self.min_score]
        return sorted(kept, key=lambda c: c.score, reverse=True)

    def find_candidates(
        self,
        tax_id: str | None,
        amount: Decimal | None,
        today: date | None = None,
    ) -> list[MatchCandidate]:
        """Suggest open supplier invoices for a boleto."""
        today = today or date.today()
        since = (today - timedelta(days=self.window_days)).isoformat()
        pool = self.store.get_boleto_candidates(since, limit=self.candidate_limit)
        if not pool:
            logger.debug("No open boleto invoices issued since %s", since)
            return []

        candidates = self.rank(pool, tax_id, amount)
        logger.debug("Scored %d invoices, %d suggestions", len(pool), len(candidates))
        return candidates

    def link(self, invoice_id: int, payable_id: int | None = None) -> bool:
        """
        Link a boleto to a supplier invoice.

        An invoice awaiting its boleto becomes pending; any other status is
        left untouched, so repeated links are no-ops. When a payable is
        given it is linked to the invoice.

        Returns:
            True if the invoice status changed.
        """
        changed = self.store.transition_supplier_invoice_status(
            invoice_id,
            SupplierInvoiceStatus.AWAITING_BOLETO,
            SupplierInvoiceStatus.PENDING,
        )
        if payable_id is not None:
            if not self.store.link_payable_to_supplier_invoice(payable_id, invoice_id):
                logger.warning(
                    "Payable %s not found, link to invoice %s skipped", payable_id, invoice_id
                )
        logger.info("Linked invoice %s (status changed: %s)", invoice_id, changed)
        return changed
