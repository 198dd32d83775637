#!/usr/bin/env python3
"""
Quick Start Example
===================

Splits GST for a Maharashtra seller shipping to Delhi, then bulk-generates
invoices for three orders (one of which does not exist) and prints the
batch summary.

Usage:
    python examples/quick_start.py
"""

from decimal import Decimal

from gst_engine.calculator import LineItem, TaxCalculator
from gst_engine.cli import build_orchestrator
from gst_engine.documents import Address, SourceRecord, TenantSettings
from gst_engine.report_generator import ReportGenerator
from gst_engine.store import InMemoryStore


def main() -> None:
    calculator = TaxCalculator()

    # Intra-state: Maharashtra -> Maharashtra
    items = [LineItem("Cotton shirt", Decimal("2"), Decimal("500.00"))]
    result = calculator.compute_split("27", "Maharashtra", items)
    print(f"Intra-state:    CGST ₹{result.totals.cgst}  SGST ₹{result.totals.sgst}")

    # Inter-state: Maharashtra -> Delhi
    result = calculator.compute_split("27", "DL", items)
    print(f"Inter-state:    IGST ₹{result.totals.igst}")
    print(f"Total w/ Tax:   ₹{result.totals.total}")

    # Bulk invoice generation
    print("\n--- Bulk Invoices ---")
    store = InMemoryStore()
    store.add_tenant(
        TenantSettings(
            tenant_id="shop-1",
            seller_name="Acme Retail",
            seller_jurisdiction="27",
            seller_tax_id="27AAPFU0939F1ZV",
            invoice_prefix="INV",
        )
    )
    store.add_records(
        SourceRecord(
            id=str(n),
            tenant_id="shop-1",
            items=items,
            billing_address=Address(province=state),
        )
        for n, state in ((1001, "Maharashtra"), (1002, "Karnataka"))
    )

    batch = build_orchestrator(store).run("shop-1", ["1001", "1002", "1003"], "invoice")
    for outcome in batch.outcomes:
        print(f"  {outcome}")

    rg = ReportGenerator()
    print(rg.format_text(rg.batch_report(batch)))
    print(rg.format_text(rg.gst_summary_report(store.list_documents("shop-1"))))


if __name__ == "__main__":
    main()
