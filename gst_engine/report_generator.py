"""
Batch and GST summary reports.

Produces:
- Batch run summaries (counts, failures by error kind)
- GST liability summaries by place of supply
- Bulk operation statistics over a date range
- JSON and delimited-text export
"""

from __future__ import annotations

import json
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Sequence

import pandas as pd

from gst_engine.batch import BatchResult
from gst_engine.codec import TabularCodec, export_batch_result
from gst_engine.collaborators import BatchLogEntry
from gst_engine.documents import Document

_MONEY_COLUMNS = ["taxable_value", "cgst", "sgst", "igst", "tax", "total"]


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date objects."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, (date, datetime)):
            return o.isoformat()
        return super().default(o)


def _money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"))


def _decimal_sum(series: pd.Series) -> Decimal:
    # object columns of Decimal; keep exact paise instead of float sums
    return sum(series, Decimal("0.00"))


def documents_frame(documents: Sequence[Document]) -> pd.DataFrame:
    """One row per document with its GST figures."""
    rows = [
        {
            "document_id": d.id,
            "number": d.number,
            "kind": d.kind.value,
            "place_of_supply": d.jurisdiction.place_of_supply,
            "inter_state": d.jurisdiction.inter_state,
            "taxable_value": d.totals.taxable_value,
            "cgst": d.totals.cgst,
            "sgst": d.totals.sgst,
            "igst": d.totals.igst,
            "tax": d.totals.tax_amount,
            "total": d.totals.total,
        }
        for d in documents
    ]
    frame = pd.DataFrame(
        rows,
        columns=[
            "document_id", "number", "kind", "place_of_supply", "inter_state",
            *_MONEY_COLUMNS,
        ],
    )
    return frame


class ReportGenerator:
    """
    Builds structured report dicts from batch results, documents and
    batch logs, with JSON and CSV export.
    """

    def __init__(self, output_dir: Optional[str] = None) -> None:
        self.output_dir = Path(output_dir) if output_dir else Path("reports")

    def _write(self, filename: str, content: str) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        (self.output_dir / filename).write_text(content, encoding="utf-8")

    # ------------------------------------------------------------------
    # Batch summary
    # ------------------------------------------------------------------

    def batch_report(self, result: BatchResult) -> dict[str, Any]:
        """Summarise one batch run."""
        by_kind: dict[str, int] = {}
        for failure in result.failures:
            by_kind[failure.error_kind] = by_kind.get(failure.error_kind, 0) + 1

        warnings = [
            f"{s.document_number}: {w}" for s in result.successes for w in s.warnings
        ]

        return {
            "report_type": "batch_summary",
            "generated_date": date.today().isoformat(),
            "period": f"{result.started_at.isoformat()} to {result.completed_at.isoformat()}",
            "summary": {
                "operation": result.operation,
                "kind": result.kind,
                "total_requested": result.total_requested,
                "success_count": result.success_count,
                "failure_count": result.failure_count,
                "duration_seconds": round(result.duration_seconds, 3),
            },
            "failures_by_kind": dict(sorted(by_kind.items())),
            "failures": [
                {
                    "row": f.index + 1,
                    "source_record_id": f.source_record_id,
                    "error_kind": f.error_kind,
                    "message": f.message,
                }
                for f in result.failures
            ],
            "documents": [
                {
                    "row": s.index + 1,
                    "source_record_id": s.source_record_id,
                    "document_id": s.document_id,
                    "document_number": s.document_number,
                }
                for s in result.successes
            ],
            "warnings": warnings,
        }

    # ------------------------------------------------------------------
    # GST liability summary
    # ------------------------------------------------------------------

    def gst_summary_report(
        self, documents: Sequence[Document], period_label: str = ""
    ) -> dict[str, Any]:
        """GST totals overall and by place of supply."""
        frame = documents_frame(documents)

        breakdown: list[dict[str, Any]] = []
        if not frame.empty:
            grouped = (
                frame.groupby("place_of_supply", sort=True)
                .agg(
                    document_count=("document_id", "count"),
                    taxable_value=("taxable_value", _decimal_sum),
                    cgst=("cgst", _decimal_sum),
                    sgst=("sgst", _decimal_sum),
                    igst=("igst", _decimal_sum),
                    total=("total", _decimal_sum),
                )
                .reset_index()
            )
            for row in grouped.to_dict(orient="records"):
                breakdown.append(
                    {
                        "place_of_supply": row["place_of_supply"],
                        "document_count": int(row["document_count"]),
                        "taxable_value": _money(row["taxable_value"]),
                        "cgst": _money(row["cgst"]),
                        "sgst": _money(row["sgst"]),
                        "igst": _money(row["igst"]),
                        "total": _money(row["total"]),
                    }
                )

        def _total(column: str) -> Decimal:
            return sum((d.get(column, Decimal("0")) for d in breakdown), Decimal("0.00"))

        return {
            "report_type": "gst_summary",
            "period": period_label,
            "generated_date": date.today().isoformat(),
            "summary": {
                "total_documents": len(documents),
                "inter_state_documents": int(frame["inter_state"].sum()) if not frame.empty else 0,
                "taxable_value": _total("taxable_value"),
                "cgst": _total("cgst"),
                "sgst": _total("sgst"),
                "igst": _total("igst"),
                "total": _total("total"),
            },
            "state_breakdown": breakdown,
        }

    # ------------------------------------------------------------------
    # Bulk operation statistics
    # ------------------------------------------------------------------

    def operation_stats(
        self,
        logs: Sequence[BatchLogEntry],
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> dict[str, dict[str, int]]:
        """Per-operation run and item counts for logs completed in range."""
        selected = [
            e
            for e in logs
            if (date_from is None or e.completed_at >= date_from)
            and (date_to is None or e.completed_at <= date_to)
        ]
        if not selected:
            return {}

        frame = pd.DataFrame(
            [
                {
                    "operation": e.operation,
                    "total_requested": e.total_requested,
                    "success_count": e.success_count,
                    "failure_count": e.failure_count,
                }
                for e in selected
            ]
        )
        grouped = frame.groupby("operation").agg(
            operations=("operation", "count"),
            total_items=("total_requested", "sum"),
            success_count=("success_count", "sum"),
            failure_count=("failure_count", "sum"),
        )
        return {
            str(operation): {k: int(v) for k, v in row.items()}
            for operation, row in grouped.to_dict(orient="index").items()
        }

    # ------------------------------------------------------------------
    # Export methods
    # ------------------------------------------------------------------

    def to_json(
        self,
        report: dict[str, Any],
        filename: Optional[str] = None,
    ) -> str:
        """Export a report to JSON. Returns the JSON string."""
        json_str = json.dumps(report, indent=2, cls=_DecimalEncoder)
        if filename:
            self._write(filename, json_str)
        return json_str

    def batch_to_csv(
        self,
        result: BatchResult,
        filename: Optional[str] = None,
        codec: Optional[TabularCodec] = None,
    ) -> str:
        """Export per-item batch outcomes as delimited text."""
        csv_str = export_batch_result(result, codec)
        if filename:
            self._write(filename, csv_str)
        return csv_str

    # ------------------------------------------------------------------
    # Console-formatted text output
    # ------------------------------------------------------------------

    def format_text(self, report: dict[str, Any]) -> str:
        """Format a report as human-readable text for console output."""
        lines: list[str] = []
        report_type = report.get("report_type", "report").replace("_", " ").title()
        lines.append(f"{'=' * 60}")
        lines.append(f"  {report_type}")
        lines.append(f"  Generated: {report.get('generated_date', '')}")
        if report.get("period"):
            lines.append(f"  Period: {report['period']}")
        lines.append(f"{'=' * 60}")
        lines.append("")

        summary = report.get("summary", {})
        if summary:
            lines.append("SUMMARY")
            lines.append("-" * 40)
            for key, value in summary.items():
                label = key.replace("_", " ").title()
                if isinstance(value, Decimal):
                    lines.append(f"  {label}: ₹{value:,.2f}")
                else:
                    lines.append(f"  {label}: {value}")
            lines.append("")

        breakdown = report.get("state_breakdown", [])
        if breakdown:
            lines.append("PLACE OF SUPPLY")
            lines.append("-" * 40)
            for row in breakdown:
                lines.append(
                    f"  {row['place_of_supply']}: ₹{row['taxable_value']:>12,.2f} taxable | "
                    f"₹{row['cgst'] + row['sgst'] + row['igst']:>10,.2f} tax | "
                    f"{row['document_count']} docs"
                )
            lines.append("")

        failures = report.get("failures", [])
        if failures:
            lines.append("FAILURES")
            lines.append("-" * 40)
            for f in failures:
                lines.append(
                    f"  #{f['row']} {f['source_record_id']}: [{f['error_kind']}] {f['message']}"
                )
            lines.append("")

        warnings = report.get("warnings", [])
        if warnings:
            lines.append("WARNINGS")
            lines.append("-" * 40)
            for w in warnings:
                lines.append(f"  * {w}")
            lines.append("")

        return "\n".join(lines)
