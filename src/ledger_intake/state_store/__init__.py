"""
State Store (SQLite-based).

Persistent tables for the accounting records created by the pipeline:
- payables (expenses)
- invoices (revenue)
- supplier_invoices

Enforces uniqueness of payment codes and supplier invoice keys.
"""

from .sqlite_store import DuplicateRecordError, StateStore

__all__ = [
    "StateStore",
    "DuplicateRecordError",
]
