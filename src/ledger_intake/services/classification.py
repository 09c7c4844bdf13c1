"""
Local revenue/expense classification.

Used when the recognition service returns an `unknown` hint. The
organization's own tax ids decide the axis: a document we issued to
someone else is revenue; one issued to us is an expense.
"""

import logging
from collections.abc import Iterable

from ..schemas.dedupe import normalize_tax_id
from ..schemas.extraction import Classification, ExtractionResult

logger = logging.getLogger(__name__)


class OwnTaxIdClassifier:
    """Classifies documents by comparing tax ids with our own."""

    def __init__(self, own_tax_ids: Iterable[str]):
        self.own_tax_ids = {t for t in (normalize_tax_id(x) for x in own_tax_ids) if t}

    @property
    def enabled(self) -> bool:
        return bool(self.own_tax_ids)

    def classify(self, extraction: ExtractionResult) -> tuple[Classification, str]:
        """
        Decide the classification and a human-readable reason.

        Tax documents are always expenses, whatever the tax ids say.
        """
        if extraction.is_tax_document:
            return Classification.EXPENSE, "Tax document (government levy)"

        issuer = normalize_tax_id(extraction.issuer_tax_id)
        customer = normalize_tax_id(extraction.customer_tax_id)
        issuer_is_ours = issuer in self.own_tax_ids if issuer else False
        customer_is_ours = customer in self.own_tax_ids if customer else False

        if issuer_is_ours and customer_is_ours:
            return Classification.UNKNOWN, "Document between our own units"
        if issuer_is_ours:
            return Classification.REVENUE, "Issued by us"
        if customer_is_ours:
            return Classification.EXPENSE, "Addressed to us"
        return Classification.UNKNOWN, "Could not determine"

    def refine(self, extraction: ExtractionResult) -> ExtractionResult:
        """Replace an unknown hint with a local decision when possible."""
        if extraction.classification_hint != Classification.UNKNOWN or not self.enabled:
            return extraction
        classification, reason = self.classify(extraction)
        if classification == Classification.UNKNOWN:
            return extraction
        logger.debug("Locally classified unknown document as %s (%s)", classification.value, reason)
        return extraction.with_classification(classification, reason)
