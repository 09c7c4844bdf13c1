"""
SQLite-based state store implementation.

Tables:
- payables: Expense records (contas a pagar)
- invoices: Revenue records (issued invoices)
- supplier_invoices: Supplier invoices (NF de compra)

Uniqueness is enforced at the data layer, not only by lookups:
- payables.codigo_barras and payables.linha_digitavel are unique among
  non-deleted payables (partial indexes, see migration 001)
- supplier_invoices is unique per (document_number, supplier_tax_id, issue_date)
- a payable carries at most one NF requirement option (CHECK constraint)
"""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

from ..schemas.dedupe import normalize_amount
from ..schemas.records import (
    OPEN_SUPPLIER_INVOICE_STATUSES,
    NfLinkStatus,
    Payable,
    PaymentMethod,
    RevenueInvoice,
    SupplierInvoice,
    SupplierInvoiceStatus,
)


class DuplicateRecordError(Exception):
    """Raised when an insert violates a uniqueness constraint."""

    def __init__(self, table: str, message: str):
        self.table = table
        super().__init__(f"Duplicate {table} record: {message}")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _amount_text(amount: Decimal | None) -> str | None:
    return normalize_amount(amount) if amount is not None else None


class StateStore:
    """
    SQLite-based store for accounting records.

    Every public method opens its own connection, so instances may be
    shared with worker threads (asyncio.to_thread).
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS supplier_invoices (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    unit_id TEXT,
                    document_number TEXT NOT NULL,
                    document_series TEXT,
                    supplier_name TEXT NOT NULL,
                    supplier_tax_id TEXT,
                    issue_date TEXT NOT NULL,
                    due_date TEXT,
                    total_value TEXT NOT NULL,
                    description TEXT,
                    payment_method TEXT NOT NULL DEFAULT 'boleto',
                    status TEXT NOT NULL DEFAULT 'pending',
                    installments_count INTEGER NOT NULL DEFAULT 1,
                    file_path TEXT,
                    file_name TEXT,
                    ocr_confidence REAL,
                    created_at TEXT NOT NULL,
                    UNIQUE(document_number, supplier_tax_id, issue_date)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS payables (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    unit_id TEXT,
                    beneficiary_name TEXT NOT NULL,
                    beneficiary_tax_id TEXT,
                    amount TEXT NOT NULL,
                    due_date TEXT NOT NULL,
                    document_number TEXT,
                    linha_digitavel TEXT,
                    codigo_barras TEXT,
                    pix_key TEXT,
                    pix_key_type TEXT,
                    description TEXT,
                    payable_type TEXT NOT NULL DEFAULT 'avulso',
                    expense_kind TEXT NOT NULL DEFAULT 'other',
                    status TEXT NOT NULL DEFAULT 'pending',
                    nf_link_status TEXT NOT NULL DEFAULT 'not_required',
                    nf_exemption_reason TEXT,
                    nf_in_same_document INTEGER NOT NULL DEFAULT 0,
                    supplier_invoice_id INTEGER,
                    intended_payment_method TEXT,
                    installment_number INTEGER,
                    installment_total INTEGER,
                    file_path TEXT,
                    file_name TEXT,
                    ocr_confidence REAL,
                    ocr_edit_audit TEXT,  -- JSON object
                    deleted INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (supplier_invoice_id) REFERENCES supplier_invoices(id),
                    -- At most one NF requirement option
                    CHECK (
                        (supplier_invoice_id IS NOT NULL)
                        + (nf_in_same_document = 1)
                        + (nf_exemption_reason IS NOT NULL) <= 1
                    ),
                    -- A purchase is only "not required" when exempted
                    CHECK (
                        expense_kind != 'purchase'
                        OR nf_link_status != 'not_required'
                        OR nf_exemption_reason IS NOT NULL
                    )
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS invoices (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    unit_id TEXT,
                    document_number TEXT NOT NULL,
                    customer_name TEXT NOT NULL,
                    customer_tax_id TEXT,
                    issuer_name TEXT,
                    issuer_tax_id TEXT,
                    issue_date TEXT NOT NULL,
                    service_value TEXT NOT NULL,
                    net_value TEXT,
                    description TEXT,
                    competence_year INTEGER,
                    competence_month INTEGER,
                    needs_bank_reconciliation INTEGER NOT NULL DEFAULT 1,
                    file_path TEXT,
                    file_name TEXT,
                    ocr_confidence REAL,
                    ocr_edit_audit TEXT,  -- JSON object
                    status TEXT NOT NULL DEFAULT 'pending',
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_payables_due_date ON payables(due_date)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_supplier_invoices_status "
                "ON supplier_invoices(status)"
            )

            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Payable methods

    @staticmethod
    def _insert_payable_row(conn: sqlite3.Connection, payable: Payable, now: str) -> int:
        audit_json = json.dumps(payable.ocr_edit_audit) if payable.ocr_edit_audit else None
        method = payable.intended_payment_method
        cursor = conn.execute(
            """
            INSERT INTO payables
            (unit_id, beneficiary_name, beneficiary_tax_id, amount, due_date,
             document_number, linha_digitavel, codigo_barras, pix_key, pix_key_type,
             description, payable_type, expense_kind, status, nf_link_status,
             nf_exemption_reason, nf_in_same_document, supplier_invoice_id,
             intended_payment_method, installment_number, installment_total,
             file_path, file_name, ocr_confidence, ocr_edit_audit, deleted, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                    ?, ?, ?, ?, 0, ?)
        """,
            (
                payable.unit_id,
                payable.beneficiary_name,
                payable.beneficiary_tax_id,
                _amount_text(payable.amount),
                payable.due_date,
                payable.document_number,
                payable.linha_digitavel,
                payable.codigo_barras,
                payable.pix_key,
                payable.pix_key_type,
                payable.description,
                payable.payable_type.value,
                payable.expense_kind.value,
                payable.status.value,
                payable.nf_link_status.value,
                payable.nf_exemption_reason,
                int(payable.nf_in_same_document),
                payable.supplier_invoice_id,
                method.value if method else None,
                payable.installment_number,
                payable.installment_total,
                payable.file_path,
                payable.file_name,
                payable.ocr_confidence,
                audit_json,
                now,
            ),
        )
        return cursor.lastrowid or 0

    def insert_payable(self, payable: Payable) -> int:
        """
        Insert a payable. Returns the new payable ID.

        Raises:
            DuplicateRecordError: barcode or digit line already used by a
                non-deleted payable
        """
        return self.insert_payables([payable])[0]

    def insert_payables(self, payables: list[Payable]) -> list[int]:
        """
        Insert several payables in one transaction (all or nothing).

        Raises:
            DuplicateRecordError: a barcode or digit line is already in use
        """
        now = _utc_now()
        try:
            with self._transaction() as conn:
                return [self._insert_payable_row(conn, payable, now) for payable in payables]
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateRecordError("payables", str(e)) from e
            raise

    def get_payable(self, payable_id: int) -> Payable | None:
        """Get a payable by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM payables WHERE id = ?", (payable_id,)).fetchone()
            return Payable.from_row(row) if row else None

    def list_payables(self, include_deleted: bool = False) -> list[Payable]:
        """List payables, oldest first."""
        query = "SELECT * FROM payables"
        if not include_deleted:
            query += " WHERE deleted = 0"
        query += " ORDER BY id"
        with self._transaction() as conn:
            return [Payable.from_row(row) for row in conn.execute(query).fetchall()]

    def soft_delete_payable(self, payable_id: int) -> bool:
        """Mark a payable as deleted. Frees its barcode and digit line."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE payables SET deleted = 1 WHERE id = ? AND deleted = 0", (payable_id,)
            )
            return cursor.rowcount > 0

    def find_payable_id_by_code(
        self, column: str, value: str, exclude_id: int | None = None
    ) -> int | None:
        """
        Find a non-deleted payable by exact barcode or digit line.

        Args:
            column: "codigo_barras" or "linha_digitavel"
            value: Normalized code (callers guarantee it is non-empty)
            exclude_id: Payable ID to ignore (edit flows)
        """
        if column not in ("codigo_barras", "linha_digitavel"):
            raise ValueError(f"Unsupported payable code column: {column}")

        query = f"SELECT id FROM payables WHERE {column} = ? AND deleted = 0"
        params: list[Any] = [value]
        if exclude_id is not None:
            query += " AND id != ?"
            params.append(exclude_id)
        query += " LIMIT 1"

        with self._transaction() as conn:
            row = conn.execute(query, params).fetchone()
            return row["id"] if row else None

    def find_payable_id_by_document(self, tax_id: str, document_number: str) -> int | None:
        """Find a non-deleted payable by beneficiary tax id and document number."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT id FROM payables
                WHERE beneficiary_tax_id = ? AND document_number = ? AND deleted = 0
                ORDER BY id LIMIT 1
            """,
                (tax_id, document_number),
            ).fetchone()
            return row["id"] if row else None

    def find_payable_id_by_amount(
        self, tax_id: str, amount: Decimal, due_date: str
    ) -> int | None:
        """Find a non-deleted payable by beneficiary tax id, amount and due date."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT id FROM payables
                WHERE beneficiary_tax_id = ? AND amount = ? AND due_date = ? AND deleted = 0
                ORDER BY id LIMIT 1
            """,
                (tax_id, normalize_amount(amount), due_date),
            ).fetchone()
            return row["id"] if row else None

    def find_payables_in_range(
        self,
        min_amount: Decimal,
        max_amount: Decimal,
        date_from: str,
        date_to: str,
        limit: int = 10,
    ) -> list[Payable]:
        """Non-deleted payables with amount and due date inside the given bounds."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT * FROM payables
                WHERE deleted = 0
                  AND CAST(amount AS REAL) BETWEEN ? AND ?
                  AND due_date BETWEEN ? AND ?
                ORDER BY due_date
                LIMIT ?
            """,
                (float(min_amount), float(max_amount), date_from, date_to, limit),
            ).fetchall()
            return [Payable.from_row(row) for row in rows]

    def link_payable_to_supplier_invoice(self, payable_id: int, invoice_id: int) -> bool:
        """
        Link a payable to a supplier invoice.

        The link replaces any other NF requirement option of the payable.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE payables
                SET supplier_invoice_id = ?, nf_link_status = ?,
                    nf_in_same_document = 0, nf_exemption_reason = NULL
                WHERE id = ? AND deleted = 0
            """,
                (invoice_id, NfLinkStatus.LINKED.value, payable_id),
            )
            return cursor.rowcount > 0

    # Revenue invoice methods

    def insert_revenue_invoice(self, invoice: RevenueInvoice) -> int:
        """Insert a revenue invoice. Returns the new invoice ID."""
        now = _utc_now()
        audit_json = json.dumps(invoice.ocr_edit_audit) if invoice.ocr_edit_audit else None

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO invoices
                (unit_id, document_number, customer_name, customer_tax_id, issuer_name,
                 issuer_tax_id, issue_date, service_value, net_value, description,
                 competence_year, competence_month, needs_bank_reconciliation,
                 file_path, file_name, ocr_confidence, ocr_edit_audit, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    invoice.unit_id,
                    invoice.document_number,
                    invoice.customer_name,
                    invoice.customer_tax_id,
                    invoice.issuer_name,
                    invoice.issuer_tax_id,
                    invoice.issue_date,
                    _amount_text(invoice.service_value),
                    _amount_text(invoice.net_value),
                    invoice.description,
                    invoice.competence_year,
                    invoice.competence_month,
                    int(invoice.needs_bank_reconciliation),
                    invoice.file_path,
                    invoice.file_name,
                    invoice.ocr_confidence,
                    audit_json,
                    invoice.status,
                    now,
                ),
            )
            return cursor.lastrowid or 0

    def get_revenue_invoice(self, invoice_id: int) -> RevenueInvoice | None:
        """Get a revenue invoice by ID."""
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,)).fetchone()
            return RevenueInvoice.from_row(row) if row else None

    def list_revenue_invoices(self) -> list[RevenueInvoice]:
        """List revenue invoices, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute("SELECT * FROM invoices ORDER BY id").fetchall()
            return [RevenueInvoice.from_row(row) for row in rows]

    def find_revenue_invoice_id(self, issuer_tax_id: str, document_number: str) -> int | None:
        """Find a revenue invoice by issuer tax id and document number."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT id FROM invoices
                WHERE issuer_tax_id = ? AND document_number = ?
                ORDER BY id LIMIT 1
            """,
                (issuer_tax_id, document_number),
            ).fetchone()
            return row["id"] if row else None

    # Supplier invoice methods

    def insert_supplier_invoice(self, invoice: SupplierInvoice) -> int:
        """
        Insert a supplier invoice. Returns the new invoice ID.

        Raises:
            DuplicateRecordError: same (document_number, supplier_tax_id, issue_date)
        """
        now = _utc_now()
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    INSERT INTO supplier_invoices
                    (unit_id, document_number, document_series, supplier_name, supplier_tax_id,
                     issue_date, due_date, total_value, description, payment_method, status,
                     installments_count, file_path, file_name, ocr_confidence, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                    (
                        invoice.unit_id,
                        invoice.document_number,
                        invoice.document_series,
                        invoice.supplier_name,
                        invoice.supplier_tax_id,
                        invoice.issue_date,
                        invoice.due_date,
                        _amount_text(invoice.total_value),
                        invoice.description,
                        invoice.payment_method.value,
                        invoice.status.value,
                        invoice.installments_count,
                        invoice.file_path,
                        invoice.file_name,
                        invoice.ocr_confidence,
                        now,
                    ),
                )
                return cursor.lastrowid or 0
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                raise DuplicateRecordError("supplier_invoices", str(e)) from e
            raise

    def get_supplier_invoice(self, invoice_id: int) -> SupplierInvoice | None:
        """Get a supplier invoice by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM supplier_invoices WHERE id = ?", (invoice_id,)
            ).fetchone()
            return SupplierInvoice.from_row(row) if row else None

    def find_supplier_invoice_id(
        self, document_number: str, supplier_tax_id: str | None, issue_date: str
    ) -> int | None:
        """
        Find a supplier invoice by its natural key.

        The tax id is part of the filter only when present.
        """
        query = "SELECT id FROM supplier_invoices WHERE document_number = ? AND issue_date = ?"
        params: list[Any] = [document_number, issue_date]
        if supplier_tax_id:
            query += " AND supplier_tax_id = ?"
            params.append(supplier_tax_id)
        query += " ORDER BY id LIMIT 1"

        with self._transaction() as conn:
            row = conn.execute(query, params).fetchone()
            return row["id"] if row else None

    def get_boleto_candidates(self, issued_since: str, limit: int = 100) -> list[SupplierInvoice]:
        """
        Open supplier invoices payable by boleto, newest first.

        Args:
            issued_since: ISO date; older invoices are excluded
            limit: Maximum number of candidates
        """
        statuses = [s.value for s in OPEN_SUPPLIER_INVOICE_STATUSES]
        placeholders = ", ".join("?" for _ in statuses)
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM supplier_invoices
                WHERE payment_method = ?
                  AND status IN ({placeholders})
                  AND issue_date >= ?
                ORDER BY issue_date DESC, id DESC
                LIMIT ?
            """,
                [PaymentMethod.BOLETO.value, *statuses, issued_since, limit],
            ).fetchall()
            return [SupplierInvoice.from_row(row) for row in rows]

    def transition_supplier_invoice_status(
        self,
        invoice_id: int,
        from_status: SupplierInvoiceStatus,
        to_status: SupplierInvoiceStatus,
    ) -> bool:
        """
        Change an invoice's status only if it currently has from_status.

        Returns True if the row changed. Repeated calls are no-ops.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE supplier_invoices SET status = ? WHERE id = ? AND status = ?",
                (to_status.value, invoice_id, from_status.value),
            )
            return cursor.rowcount > 0

    # Statistics

    def get_stats(self) -> dict[str, Any]:
        """Get record counts for the status command."""
        with self._transaction() as conn:
            stats: dict[str, Any] = {}
            stats["payables"] = conn.execute(
                "SELECT COUNT(*) FROM payables WHERE deleted = 0"
            ).fetchone()[0]
            stats["revenue_invoices"] = conn.execute("SELECT COUNT(*) FROM invoices").fetchone()[0]
            stats["supplier_invoices"] = conn.execute(
                "SELECT COUNT(*) FROM supplier_invoices"
            ).fetchone()[0]

            rows = conn.execute(
                "SELECT nf_link_status, COUNT(*) AS n FROM payables "
                "WHERE deleted = 0 GROUP BY nf_link_status"
            ).fetchall()
            stats["payables_by_nf_link_status"] = {row["nf_link_status"]: row["n"] for row in rows}

            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM supplier_invoices GROUP BY status"
            ).fetchall()
            stats["supplier_invoices_by_status"] = {row["status"]: row["n"] for row in rows}

            return stats
