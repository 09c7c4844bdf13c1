"""
Migration 002: Indexes for duplicate lookups and boleto matching.
"""

import sqlite3

VERSION = 2
NAME = "lookup_indexes"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create lookup indexes."""
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_payables_tax_id_document "
        "ON payables(beneficiary_tax_id, document_number)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_payables_supplier_invoice_id "
        "ON payables(supplier_invoice_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_invoices_issuer_document "
        "ON invoices(issuer_tax_id, document_number)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_supplier_invoices_matching "
        "ON supplier_invoices(payment_method, status, issue_date)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop lookup indexes."""
    conn.execute("DROP INDEX IF EXISTS idx_supplier_invoices_matching")
    conn.execute("DROP INDEX IF EXISTS idx_invoices_issuer_document")
    conn.execute("DROP INDEX IF EXISTS idx_payables_supplier_invoice_id")
    conn.execute("DROP INDEX IF EXISTS idx_payables_tax_id_document")
