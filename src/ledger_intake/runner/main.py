"""
CLI main entry point.
"""

import argparse
import asyncio
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..intake import DocumentState, IncomingFile, IntakeQueue
from ..matching import BoletoMatchingEngine
from ..recognition import RecognitionClient
from ..review import ConfirmationWorkflow
from ..schemas.records import PaymentInstrument
from ..services import CommitService
from ..state_store import StateStore
from ..storage import create_file_store

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ledger-intake",
        description="Recognize, deduplicate and record financial documents",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file",
    )

    # process command
    process_parser = subparsers.add_parser(
        "process", help="Upload and analyze documents, optionally recording them"
    )
    process_parser.add_argument("files", nargs="+", type=Path, help="Documents to process")
    process_parser.add_argument(
        "--auto-confirm",
        action="store_true",
        help="Record every successfully analyzed document using its automatic classification",
    )

    # match command
    match_parser = subparsers.add_parser(
        "match", help="Suggest open supplier invoices for a boleto"
    )
    match_parser.add_argument("--tax-id", type=str, help="Boleto issuer tax id (CNPJ)")
    match_parser.add_argument("--amount", type=str, help="Boleto amount (e.g. 1000.00)")

    # link command
    link_parser = subparsers.add_parser(
        "link", help="Link a boleto payable to a supplier invoice"
    )
    link_parser.add_argument("invoice_id", type=int, help="Supplier invoice id")
    link_parser.add_argument("--payable-id", type=int, help="Payable created for the boleto")

    # status command
    subparsers.add_parser("status", help="Show record counts")

    return parser


def cmd_init_config(config_path: Path, force: bool) -> int:
    """Write the default configuration template."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default configuration to {config_path}")
    return 0


async def _process(config: Config, files: list[Path], auto_confirm: bool) -> int:
    store = StateStore(config.state_db_path)
    file_store = create_file_store(config)

    incoming = []
    for path in files:
        if not path.is_file():
            print(f"  ⏭ {path}: not a file")
            continue
        incoming.append(IncomingFile.from_path(path))

    async with RecognitionClient.from_config(config) as recognizer:
        queue = IntakeQueue.from_config(config, file_store, recognizer)
        report = queue.enqueue(incoming)
        for rejected in report.rejected:
            print(f"  ⏭ {rejected.file_name}: {rejected.reason}")
        if not report.accepted:
            print("No documents to process")
            return 0

        print(f"📄 Processing {len(report.accepted)} document(s)...")
        await queue.wait_idle()

    workflow = ConfirmationWorkflow(
        queue,
        CommitService(store),
        unit_id=config.workflow.unit_id,
        min_justification_length=config.workflow.min_justification_length,
        default_payment_instrument=(
            PaymentInstrument(config.workflow.default_payment_instrument)
            if config.workflow.default_payment_instrument
            else None
        ),
    )

    for doc in queue.documents():
        if doc.state == DocumentState.ERROR:
            print(f"  ❌ {doc.file_name}: {doc.error_message}")
            continue
        extraction = doc.extraction
        print(f"  📄 {doc.file_name}")
        print(
            f"     → {extraction.document_type.value} / {extraction.classification_hint.value}"
            f" (confidence {extraction.confidence:.0%})"
        )
        issuer = f"{extraction.issuer_name or '-'} ({extraction.issuer_tax_id or '-'})"
        print(f"     → Issuer: {issuer}")
        print(f"     → Amount: {extraction.total_amount} due {extraction.effective_due_date}")
        check = await workflow.precheck(doc.id)
        if check.is_duplicate:
            print(f"     ⚠ Possible duplicate ({check.level.value}): {check.reason}")

    failed = len(queue.in_state(DocumentState.ERROR))
    if not auto_confirm:
        print(f"\n✓ Ready: {len(queue.ready_documents())}, Failed: {failed}")
        return 1 if failed else 0

    batch = await workflow.confirm_all_ready()
    for result in batch.created:
        print(f"  ✓ {result.file_name}: {result.record_type} #{result.record_id}")
    for result in batch.duplicates:
        print(f"  ⚠ {result.file_name}: {result.message}")
    for result in batch.skipped:
        print(f"  ⏭ {result.file_name}: {result.message}")
    for result in batch.failed:
        print(f"  ❌ {result.file_name}: {result.message}")

    print(
        f"\n✓ Created: {len(batch.created)}, Duplicates: {len(batch.duplicates)}, "
        f"Skipped: {len(batch.skipped)}, Failed: {len(batch.failed) + failed}"
    )
    return 1 if batch.failed or failed else 0


def cmd_process(config: Config, files: list[Path], auto_confirm: bool) -> int:
    """Upload, analyze and optionally record documents."""
    try:
        config.ensure_valid()
    except ConfigValidationError as e:
        print(f"❌ Invalid configuration: {e}")
        return 1
    return asyncio.run(_process(config, files, auto_confirm))


def cmd_match(config: Config, tax_id: str | None, amount_text: str | None) -> int:
    """Print ranked supplier invoice suggestions for a boleto."""
    amount = None
    if amount_text:
        try:
            amount = Decimal(amount_text.replace(",", "."))
        except InvalidOperation:
            print(f"❌ Invalid amount: {amount_text}")
            return 1

    store = StateStore(config.state_db_path)
    engine = BoletoMatchingEngine.from_config(store, config.matching)
    candidates = engine.find_candidates(tax_id, amount)

    if not candidates:
        print("No matching supplier invoices")
        return 0

    for candidate in candidates:
        invoice = candidate.invoice
        print(
            f"  [{invoice.id}] NF {invoice.document_number} - {invoice.supplier_name} "
            f"{invoice.total_value} ({invoice.status.value})"
        )
        print(f"     → Score {candidate.score}: {', '.join(candidate.reasons)}")
    return 0


def cmd_link(config: Config, invoice_id: int, payable_id: int | None) -> int:
    """Link a boleto to a supplier invoice."""
    store = StateStore(config.state_db_path)
    if store.get_supplier_invoice(invoice_id) is None:
        print(f"❌ Supplier invoice {invoice_id} not found")
        return 1

    engine = BoletoMatchingEngine.from_config(store, config.matching)
    changed = engine.link(invoice_id, payable_id)
    if changed:
        print(f"✓ Invoice {invoice_id} is now pending")
    else:
        print(f"✓ Invoice {invoice_id} linked (status unchanged)")
    return 0


def cmd_status(config: Config) -> int:
    """Show record counts."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Ledger Status")
    print("=" * 40)
    print(f"  Payables:               {stats['payables']}")
    for status, count in sorted(stats["payables_by_nf_link_status"].items()):
        print(f"    NF {status:<19} {count}")
    print(f"  Revenue invoices:       {stats['revenue_invoices']}")
    print(f"  Supplier invoices:      {stats['supplier_invoices']}")
    for status, count in sorted(stats["supplier_invoices_by_status"].items()):
        print(f"    {status:<22} {count}")
    print()

    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "process":
        return cmd_process(config, parsed.files, parsed.auto_confirm)
    elif parsed.command == "match":
        return cmd_match(config, parsed.tax_id, parsed.amount)
    elif parsed.command == "link":
        return cmd_link(config, parsed.invoice_id, parsed.payable_id)
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
