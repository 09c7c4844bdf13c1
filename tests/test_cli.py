"""Tests for CLI commands."""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import httpx
import pytest
import yaml
from conftest import SAMPLE_BOLETO_RESPONSE, SUPPLIER_CNPJ

from ledger_intake.recognition import RecognitionClient
from ledger_intake.runner.main import create_cli, main
from ledger_intake.schemas.records import PaymentInstrument, SupplierInvoice, SupplierInvoiceStatus
from ledger_intake.state_store import StateStore


@pytest.fixture
def config_path(tmp_path):
    """Config file pointing every path into tmp_path."""
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "state_db_path": str(tmp_path / "state.db"),
                "storage": {"backend": "local", "root_path": str(tmp_path / "documents")},
                "workflow": {"default_payment_instrument": "bank_transfer"},
            }
        )
    )
    return path


def _run(config_path, *args) -> int:
    return main(["-c", str(config_path), *args])


def _awaiting_invoice(config_path) -> int:
    store = StateStore(config_path.parent / "state.db")
    return store.insert_supplier_invoice(
        SupplierInvoice(
            document_number="4521",
            supplier_name="Distribuidora Alfa Ltda",
            supplier_tax_id="12345678000190",
            issue_date=date.today().isoformat(),
            total_value=Decimal("1000.00"),
            status=SupplierInvoiceStatus.AWAITING_BOLETO,
        )
    )


class TestCLICommandRegistry:
    """Tests for CLI command registration."""

    def test_all_commands_registered(self):
        parser = create_cli()
        for command in ("init-config", "status", "match"):
            assert parser.parse_args([command]).command == command
        assert parser.parse_args(["process", "a.pdf"]).files[0].name == "a.pdf"
        assert parser.parse_args(["link", "3", "--payable-id", "9"]).payable_id == 9

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out


class TestInitConfig:
    """Tests for init-config."""

    def test_writes_template(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        assert _run(path, "init-config") == 0
        assert path.exists()
        assert "Wrote default configuration" in capsys.readouterr().out

    def test_refuses_to_overwrite(self, config_path, capsys):
        original = config_path.read_text()
        assert _run(config_path, "init-config") == 1
        assert "already exists" in capsys.readouterr().out
        assert config_path.read_text() == original

    def test_force(self, config_path):
        assert _run(config_path, "init-config", "--force") == 0
        assert "recognition:" in config_path.read_text()


class TestStatus:
    """Tests for status."""

    def test_empty_ledger(self, config_path, capsys):
        assert _run(config_path, "status") == 0
        out = capsys.readouterr().out
        assert "Ledger Status" in out
        assert "Payables:               0" in out


class TestMatch:
    """Tests for match."""

    def test_invalid_amount(self, config_path, capsys):
        assert _run(config_path, "match", "--amount", "abc") == 1
        assert "Invalid amount: abc" in capsys.readouterr().out

    def test_no_candidates(self, config_path, capsys):
        assert _run(config_path, "match", "--tax-id", SUPPLIER_CNPJ) == 0
        assert "No matching supplier invoices" in capsys.readouterr().out

    def test_ranked_candidates(self, config_path, capsys):
        invoice_id = _awaiting_invoice(config_path)

        assert _run(config_path, "match", "--tax-id", SUPPLIER_CNPJ, "--amount", "1000,00") == 0

        out = capsys.readouterr().out
        assert f"[{invoice_id}] NF 4521" in out
        assert "Score 120: Awaiting boleto, Tax id matches, Exact amount" in out


class TestLink:
    """Tests for link."""

    def test_unknown_invoice(self, config_path, capsys):
        assert _run(config_path, "link", "99") == 1
        assert "Supplier invoice 99 not found" in capsys.readouterr().out

    def test_awaiting_becomes_pending(self, config_path, capsys):
        invoice_id = _awaiting_invoice(config_path)

        assert _run(config_path, "link", str(invoice_id)) == 0
        assert f"Invoice {invoice_id} is now pending" in capsys.readouterr().out

        assert _run(config_path, "link", str(invoice_id)) == 0
        assert "status unchanged" in capsys.readouterr().out


class TestProcess:
    """Tests for process."""

    def test_invalid_config(self, tmp_path, capsys):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"storage": {"backend": "ftp"}}))
        document = tmp_path / "boleto.pdf"
        document.write_bytes(b"%PDF")

        assert _run(path, "process", str(document)) == 1
        assert "Invalid configuration" in capsys.readouterr().out

    def test_auto_confirm(self, config_path, tmp_path, capsys):
        document = tmp_path / "boleto.pdf"
        document.write_bytes(b"%PDF-1.4")
        skipped = tmp_path / "notes.docx"
        skipped.write_bytes(b"PK")
        recognizer = RecognitionClient(
            "http://recognition.test",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json=SAMPLE_BOLETO_RESPONSE)
            ),
        )

        with patch.object(RecognitionClient, "from_config", return_value=recognizer):
            code = _run(config_path, "process", str(document), str(skipped), "--auto-confirm")

        assert code == 0
        out = capsys.readouterr().out
        assert "notes.docx" in out
        assert "Created: 1" in out
        store = StateStore(tmp_path / "state.db")
        payables = store.list_payables()
        assert [p.beneficiary_name for p in payables] == ["Distribuidora Alfa Ltda"]
        assert payables[0].intended_payment_method == PaymentInstrument.BANK_TRANSFER
        assert any((tmp_path / "documents").rglob("*_boleto.pdf"))
