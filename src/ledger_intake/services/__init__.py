"""Duplicate detection, local classification and record commit services."""

from ledger_intake.services.classification import OwnTaxIdClassifier
from ledger_intake.services.commit import (
    CommitContext,
    CommitOutcome,
    CommitService,
    CommitStatus,
    ExpenseExtras,
    RevenueExtras,
    SupplierInvoiceOutcome,
    resolve_nf_link,
)
from ledger_intake.services.duplicates import DuplicateDetector

__all__ = [
    "CommitContext",
    "CommitOutcome",
    "CommitService",
    "CommitStatus",
    "DuplicateDetector",
    "ExpenseExtras",
    "OwnTaxIdClassifier",
    "RevenueExtras",
    "SupplierInvoiceOutcome",
    "resolve_nf_link",
]
