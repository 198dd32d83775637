"""
Command-line interface for the GST document engine.

Provides subcommands for tax splits, jurisdiction lookup, bulk document
generation from an order file, and customer import validation.
"""

from __future__ import annotations

import argparse
import json
import sys
from decimal import Decimal
from pathlib import Path
from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from gst_engine.batch import BatchOptions, BatchOrchestrator, BatchResult, ItemSuccess
from gst_engine.calculator import LineItem, TaxCalculator
from gst_engine.codec import CUSTOMER_SCHEMA, TabularCodec, export_customers
from gst_engine.config import Settings, configure_logging, get_settings
from gst_engine.documents import (
    DocumentAssembler,
    DocumentKind,
    SourceRecord,
    TenantSettings,
)
from gst_engine.errors import DocumentEngineError
from gst_engine.jurisdictions import JurisdictionRegistry
from gst_engine.report_generator import ReportGenerator
from gst_engine.sequence import SequenceAllocator
from gst_engine.store import InMemoryStore

console = Console()


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    sys.exit(1)


def _parse_item(text: str) -> LineItem:
    """
    Parse ``description:quantity:price[:discount[:rate]]``.
    """
    parts = text.split(":")
    if len(parts) < 3:
        raise ValueError(f"Item needs description:quantity:price, got {text!r}")
    description, quantity, price, *rest = parts
    return LineItem(
        description=description,
        quantity=Decimal(quantity),
        unit_price=Decimal(price),
        discount=Decimal(rest[0]) if len(rest) > 0 and rest[0] else Decimal("0"),
        tax_rate=Decimal(rest[1]) if len(rest) > 1 and rest[1] else None,
    )


def build_orchestrator(
    store: InMemoryStore, settings: Optional[Settings] = None
) -> BatchOrchestrator:
    settings = settings or get_settings()
    calculator = TaxCalculator(settings=settings)
    allocator = SequenceAllocator(store, settings)
    assembler = DocumentAssembler(calculator, allocator, store, settings)
    return BatchOrchestrator(store, store, assembler, settings=settings)


def _load_order_file(path: str) -> tuple[TenantSettings, list[SourceRecord]]:
    """
    Load tenant settings and orders from JSON.

    Expected shape: {"tenant": {...}, "orders": [{...}, ...]}
    """
    file_path = Path(path)
    if not file_path.exists():
        _fail(f"File not found: {path}")
    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
        tenant = TenantSettings.from_dict(data["tenant"])
        records = [
            SourceRecord.from_dict(order, tenant_id=tenant.tenant_id)
            for order in data.get("orders", [])
        ]
    except json.JSONDecodeError as e:
        _fail(f"{path} is not valid JSON: {e}")
    except KeyError as e:
        _fail(f"{path} is missing required key {e}")
    except (TypeError, ValueError, ArithmeticError, DocumentEngineError) as e:
        _fail(f"{path} has an invalid order or tenant entry: {e}")
    return tenant, records


# -----------------------------------------------------------------------
# Subcommand: split
# -----------------------------------------------------------------------


def cmd_split(args: argparse.Namespace) -> None:
    """Compute the GST split for a set of items."""
    settings = get_settings()
    try:
        if args.rate:
            settings = Settings(
                **{**settings.model_dump(), "default_tax_rate": Decimal(args.rate)}
            )
        calc = TaxCalculator(settings=settings)
        items = [_parse_item(item) for item in args.item]
        result = calc.compute_split(args.seller, args.buyer, items)
    except (ValueError, ArithmeticError, DocumentEngineError) as e:
        _fail(f"Invalid input: {e}")
        return

    table = Table(title="GST Split", box=box.ROUNDED, show_lines=True)
    table.add_column("Item")
    table.add_column("Taxable", justify="right")
    table.add_column("Rate", justify="right")
    table.add_column("CGST", justify="right")
    table.add_column("SGST", justify="right")
    table.add_column("IGST", justify="right")
    table.add_column("Total", justify="right", style="bold")

    for item, split in zip(items, result.per_item):
        table.add_row(
            item.description,
            f"₹{split.taxable_value:,.2f}",
            f"{split.rate}%",
            f"₹{split.cgst:,.2f}",
            f"₹{split.sgst:,.2f}",
            f"₹{split.igst:,.2f}",
            f"₹{split.total:,.2f}",
        )
    console.print(table)

    totals = result.totals
    console.print(
        Panel(
            f"[bold]Seller:[/bold] {result.seller.code}-{result.seller.name}\n"
            f"[bold]Buyer:[/bold] {result.buyer.code}-{result.buyer.name}\n"
            f"[bold]Supply:[/bold] {'Inter-state (IGST)' if result.inter_state else 'Intra-state (CGST+SGST)'}\n"
            f"[bold]Taxable Value:[/bold] ₹{totals.taxable_value:,.2f}\n"
            f"[bold]Tax:[/bold] ₹{totals.tax_amount:,.2f}\n"
            f"[bold]Total:[/bold] ₹{totals.total:,.2f}",
            title="Totals",
            border_style="blue",
        )
    )


# -----------------------------------------------------------------------
# Subcommand: jurisdictions
# -----------------------------------------------------------------------


def cmd_jurisdictions(args: argparse.Namespace) -> None:
    """List GST state codes."""
    registry = JurisdictionRegistry()

    if args.lookup:
        jurisdiction = registry.get(args.lookup)
        if jurisdiction is None:
            _fail(f"Unknown jurisdiction: {args.lookup}")
            return
        console.print(
            f"{jurisdiction.code}  {jurisdiction.name} ({jurisdiction.abbreviation})"
        )
        return

    table = Table(title="GST Jurisdictions", box=box.ROUNDED)
    table.add_column("Code", style="bold")
    table.add_column("Name")
    table.add_column("Abbr.")
    table.add_column("UT", justify="center")
    for j in registry.all_jurisdictions():
        table.add_row(j.code, j.name, j.abbreviation, "Y" if j.is_union_territory else "")
    console.print(table)


# -----------------------------------------------------------------------
# Subcommand: bulk
# -----------------------------------------------------------------------


def _print_batch(result: BatchResult) -> None:
    table = Table(
        title=f"Bulk {result.kind} generation",
        box=box.ROUNDED,
        show_lines=True,
    )
    table.add_column("#", style="dim", justify="right")
    table.add_column("Order")
    table.add_column("Result")
    table.add_column("Document / Error")

    for outcome in result.outcomes:
        if isinstance(outcome, ItemSuccess):
            table.add_row(
                str(outcome.index + 1),
                outcome.source_record_id,
                "[green]created[/green]",
                outcome.document_number,
            )
        else:
            table.add_row(
                str(outcome.index + 1),
                outcome.source_record_id,
                f"[red]{outcome.error_kind}[/red]",
                outcome.message,
            )
    console.print(table)

    color = "green" if result.failure_count == 0 else "yellow"
    console.print(
        Panel(
            f"[bold]Requested:[/bold] {result.total_requested}\n"
            f"[bold]Created:[/bold] {result.success_count}\n"
            f"[bold]Failed:[/bold] {result.failure_count}\n"
            f"[bold]Duration:[/bold] {result.duration_seconds:.2f}s",
            title="Batch Summary",
            border_style=color,
        )
    )


def cmd_bulk(args: argparse.Namespace) -> None:
    """Generate invoices or labels for the orders in a JSON file."""
    settings = get_settings()
    tenant, records = _load_order_file(args.file)

    store = InMemoryStore()
    store.add_tenant(tenant)
    store.add_records(records)
    orchestrator = build_orchestrator(store, settings)

    ids = args.ids.split(",") if args.ids else [r.id for r in records]
    options = BatchOptions(max_workers=args.workers)

    try:
        result = orchestrator.run(tenant.tenant_id, ids, args.kind, options)
    except DocumentEngineError as e:
        _fail(str(e))
        return

    _print_batch(result)

    rg = ReportGenerator(args.output_dir or "reports")
    if args.export_csv:
        rg.batch_to_csv(result, args.export_csv)
        console.print(f"[green]CSV exported to {args.export_csv}[/green]")
    if args.export_json:
        documents = store.list_documents(tenant.tenant_id, DocumentKind.parse(args.kind))
        rg.to_json(
            {
                "batch": rg.batch_report(result),
                "gst": rg.gst_summary_report(documents),
            },
            args.export_json,
        )
        console.print(f"[green]JSON exported to {args.export_json}[/green]")


# -----------------------------------------------------------------------
# Subcommand: import
# -----------------------------------------------------------------------


def cmd_import(args: argparse.Namespace) -> None:
    """Validate a customer CSV file."""
    path = Path(args.file)
    if not path.exists():
        _fail(f"File not found: {args.file}")
        return

    codec = TabularCodec(delimiter=args.delimiter)
    try:
        result = codec.decode(
            path.read_text(encoding="utf-8"),
            CUSTOMER_SCHEMA,
            allow_duplicates=args.allow_duplicates,
        )
    except ValueError as e:
        _fail(str(e))
        return

    console.print(
        f"[bold]{len(result.records)}[/bold] of {result.total_rows} rows accepted"
    )
    if result.errors:
        table = Table(title="Rejected Rows", box=box.ROUNDED, border_style="yellow")
        table.add_column("Row", justify="right")
        table.add_column("Reason")
        table.add_column("Content", style="dim")
        for err in result.errors:
            table.add_row(str(err.row_number), err.reason, err.raw[:60])
        console.print(table)

    if args.export_csv:
        out_dir = Path(args.output_dir or "reports")
        out_dir.mkdir(parents=True, exist_ok=True)
        (out_dir / args.export_csv).write_text(
            export_customers(result.records, codec), encoding="utf-8"
        )
        console.print(f"[green]Accepted rows exported to {args.export_csv}[/green]")


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gst-engine",
        description="GST document engine - tax splits, document numbering and bulk invoice/label generation",
    )
    parser.add_argument("--log-level", help="Override GST_ENGINE_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # split
    split_p = subparsers.add_parser("split", help="Compute a GST split")
    split_p.add_argument("--seller", required=True, help="Seller state (code, name or abbreviation)")
    split_p.add_argument("--buyer", help="Buyer state; omitted means unknown (inter-state)")
    split_p.add_argument(
        "--item",
        action="append",
        required=True,
        help="description:quantity:price[:discount[:rate]] (repeatable)",
    )
    split_p.add_argument("--rate", help="Default GST rate in percent")
    split_p.set_defaults(func=cmd_split)

    # jurisdictions
    jur_p = subparsers.add_parser("jurisdictions", help="List GST state codes")
    jur_p.add_argument("--lookup", "-l", help="Resolve one code, name or abbreviation")
    jur_p.set_defaults(func=cmd_jurisdictions)

    # bulk
    bulk_p = subparsers.add_parser("bulk", help="Bulk-generate invoices or labels")
    bulk_p.add_argument("--file", "-f", required=True, help="JSON file with tenant and orders")
    bulk_p.add_argument(
        "--kind", choices=[k.value for k in DocumentKind], default="invoice"
    )
    bulk_p.add_argument("--ids", help="Comma-separated order ids (default: all)")
    bulk_p.add_argument("--workers", type=int, help="Worker threads")
    bulk_p.add_argument("--export-csv", help="Export per-item results to CSV")
    bulk_p.add_argument("--export-json", help="Export batch and GST summary to JSON")
    bulk_p.add_argument("--output-dir", help="Output directory for exports")
    bulk_p.set_defaults(func=cmd_bulk)

    # import
    import_p = subparsers.add_parser("import", help="Validate a customer CSV import")
    import_p.add_argument("--file", "-f", required=True, help="CSV file with customers")
    import_p.add_argument("--delimiter", default=",", help="Field delimiter")
    import_p.add_argument(
        "--allow-duplicates", action="store_true", help="Accept duplicate email/phone"
    )
    import_p.add_argument("--export-csv", help="Export accepted rows to CSV")
    import_p.add_argument("--output-dir", help="Output directory")
    import_p.set_defaults(func=cmd_import)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level or get_settings().log_level)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    args.func(args)
