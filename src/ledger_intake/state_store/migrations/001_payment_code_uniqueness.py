"""
Migration 001: Unique payment codes among active payables.

A boleto's barcode and digit line identify exactly one bill. Two
concurrent confirmations of the same boleto must not both insert, so the
uniqueness lives in the database. Soft-deleted payables release their
codes; NULL codes never collide.
"""

import sqlite3

VERSION = 1
NAME = "payment_code_uniqueness"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create partial unique indexes on codigo_barras and linha_digitavel."""
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_payables_codigo_barras
        ON payables(codigo_barras)
        WHERE deleted = 0 AND codigo_barras IS NOT NULL
        """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS uq_payables_linha_digitavel
        ON payables(linha_digitavel)
        WHERE deleted = 0 AND linha_digitavel IS NOT NULL
        """
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Drop the unique indexes."""
    conn.execute("DROP INDEX IF EXISTS uq_payables_linha_digitavel")
    conn.execute("DROP INDEX IF EXISTS uq_payables_codigo_barras")
