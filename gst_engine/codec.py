"""
Delimited text import and export.

Export writes entity collections with a fixed column order per entity
kind. Import decodes delimited text into validated records; a bad row
is reported with its content and reason and never stops the import.
"""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from gst_engine.batch import BatchResult, ItemSuccess
from gst_engine.documents import Document, DocumentKind, SourceRecord
from gst_engine.errors import ImportRowInvalid
from gst_engine.jurisdictions import is_valid_gstin


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


# ---------------------------------------------------------------------------
# Import schema
# ---------------------------------------------------------------------------

Validator = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class ImportSchema:
    """
    Row rules for an import.

    duplicate_keys names at most two fields; a row whose value in
    either field was already seen is a duplicate.
    """

    fields: tuple[str, ...]
    required: tuple[str, ...] = ()
    duplicate_keys: tuple[str, ...] = ()
    validators: Mapping[str, Validator] = field(default_factory=dict)
    defaults: Mapping[str, str] = field(default_factory=dict)
    allow_duplicates: bool = False

    def __post_init__(self) -> None:
        if len(self.duplicate_keys) > 2:
            raise ValueError("At most two duplicate keys are supported")
        unknown = [
            f for f in (*self.required, *self.duplicate_keys) if f not in self.fields
        ]
        if unknown:
            raise ValueError(f"Schema references unknown fields: {', '.join(unknown)}")


@dataclass(frozen=True)
class RowError:
    row_number: int  # 1-based, header excluded
    raw: str
    reason: str
    error_kind: str = ImportRowInvalid.error_kind


@dataclass
class DecodeResult:
    records: list[dict[str, str]] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    headers: list[str] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.records) + len(self.errors)


class TabularCodec:
    """CSV-style encoder/decoder with minimal quoting."""

    def __init__(self, delimiter: str = ",", quotechar: str = '"') -> None:
        if len(delimiter) != 1 or len(quotechar) != 1:
            raise ValueError("delimiter and quotechar must be single characters")
        if delimiter == quotechar:
            raise ValueError("delimiter and quotechar must differ")
        self.delimiter = delimiter
        self.quotechar = quotechar

    def _writer(self, output: io.StringIO):
        return csv.writer(
            output,
            delimiter=self.delimiter,
            quotechar=self.quotechar,
            doublequote=True,
            quoting=csv.QUOTE_MINIMAL,
            lineterminator="\r\n",
        )

    def encode(self, headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
        """
        Encode a header row and data rows.

        Fields containing the delimiter, the quote character or a line
        break are quoted, with embedded quotes doubled.
        """
        output = io.StringIO()
        writer = self._writer(output)
        writer.writerow([_cell(h) for h in headers])
        for position, row in enumerate(rows, start=1):
            values = list(row)
            if len(values) != len(headers):
                raise ValueError(
                    f"Row {position} has {len(values)} fields, expected {len(headers)}"
                )
            writer.writerow([_cell(v) for v in values])
        return output.getvalue()

    def _raw(self, row: Sequence[str]) -> str:
        output = io.StringIO()
        self._writer(output).writerow(row)
        return output.getvalue().rstrip("\r\n")

    def _reader(self, text: str):
        return csv.reader(
            io.StringIO(text, newline=""),
            delimiter=self.delimiter,
            quotechar=self.quotechar,
            doublequote=True,
            strict=True,
        )

    def decode_rows(self, text: str) -> tuple[list[str], list[list[str]]]:
        """Split text into a header row and data rows with no validation."""
        rows = [row for row in self._reader(text) if row]
        if not rows:
            return [], []
        return rows[0], rows[1:]

    def _validate(
        self,
        record: dict[str, str],
        schema: ImportSchema,
        seen: set[tuple[str, str]],
        allow_duplicates: bool,
    ) -> None:
        missing = [f for f in schema.required if not record.get(f)]
        if missing:
            raise ImportRowInvalid(f"Missing required field(s): {', '.join(missing)}")

        for name, validator in schema.validators.items():
            value = record.get(name)
            if value:
                problem = validator(value)
                if problem:
                    raise ImportRowInvalid(f"{name}: {problem}")

        if not allow_duplicates:
            for key in schema.duplicate_keys:
                value = record.get(key)
                if value and (key, value.lower()) in seen:
                    raise ImportRowInvalid(f"Duplicate {key}: {value}")

    def decode(
        self,
        text: str,
        schema: Optional[ImportSchema] = None,
        existing: Iterable[Mapping[str, Any]] = (),
        allow_duplicates: Optional[bool] = None,
    ) -> DecodeResult:
        """
        Decode text into records, validating each row independently.

        ``existing`` holds already-stored entities checked for
        duplicates alongside the rows of this import.
        """
        result = DecodeResult()
        reader = self._reader(text)

        headers: Optional[list[str]] = None
        for header_row in reader:
            if header_row:
                headers = [h.strip() for h in header_row]
                break
        if headers is None:
            return result
        result.headers = headers

        if schema is not None:
            absent = [f for f in schema.required if f not in headers]
            if absent:
                raise ValueError(f"Missing required column(s): {', '.join(absent)}")
            if allow_duplicates is None:
                allow_duplicates = schema.allow_duplicates

        seen: set[tuple[str, str]] = set()
        if schema is not None:
            for entity in existing:
                for key in schema.duplicate_keys:
                    value = entity.get(key)
                    if value:
                        seen.add((key, str(value).lower()))

        lines = [
            line.rstrip("\r\n") for line in io.StringIO(text, newline="").readlines()
        ]
        row_number = 0
        while True:
            first_line = reader.line_num
            try:
                row = next(reader)
            except StopIteration:
                break
            except csv.Error as e:
                row_number += 1
                raw = "\n".join(lines[first_line:reader.line_num])
                result.errors.append(
                    RowError(row_number, raw, f"Malformed row near line {reader.line_num}: {e}")
                )
                continue
            if not row:
                continue
            row_number += 1

            if len(row) != len(headers):
                result.errors.append(
                    RowError(
                        row_number,
                        self._raw(row),
                        f"Expected {len(headers)} fields, got {len(row)}",
                    )
                )
                continue

            if schema is None:
                result.records.append(dict(zip(headers, row)))
                continue

            record = {h: v.strip() for h, v in zip(headers, row)}
            for name, default in schema.defaults.items():
                if not record.get(name):
                    record[name] = default
            try:
                self._validate(record, schema, seen, bool(allow_duplicates))
            except ImportRowInvalid as e:
                result.errors.append(RowError(row_number, self._raw(row), str(e)))
                continue

            for key in schema.duplicate_keys:
                if record.get(key):
                    seen.add((key, record[key].lower()))
            result.records.append(record)

        return result


# ---------------------------------------------------------------------------
# Customer import
# ---------------------------------------------------------------------------

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PHONE_PATTERN = re.compile(r"^\+?[0-9][0-9 \-]{8,14}$")
_PINCODE_PATTERN = re.compile(r"^[1-9][0-9]{5}$")


def _check_email(value: str) -> Optional[str]:
    return None if _EMAIL_PATTERN.match(value) else "invalid email address"


def _check_phone(value: str) -> Optional[str]:
    return None if _PHONE_PATTERN.match(value) else "invalid phone number"


def _check_pincode(value: str) -> Optional[str]:
    return None if _PINCODE_PATTERN.match(value) else "PIN code must be 6 digits"


def _check_gstin(value: str) -> Optional[str]:
    return None if is_valid_gstin(value) else "invalid GSTIN format"


CUSTOMER_SCHEMA = ImportSchema(
    fields=(
        "name",
        "email",
        "phone",
        "address",
        "city",
        "state",
        "pincode",
        "country",
        "gstin",
        "notes",
        "status",
    ),
    required=("name", "email"),
    duplicate_keys=("email", "phone"),
    validators={
        "email": _check_email,
        "phone": _check_phone,
        "pincode": _check_pincode,
        "gstin": _check_gstin,
    },
    defaults={"country": "India", "status": "ACTIVE"},
)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


class ExportKind(Enum):
    INVOICES = "invoices"
    LABELS = "labels"
    CUSTOMERS = "customers"
    ORDERS = "orders"
    BATCH = "batch"


# Column orders are part of the export contract; append, never reorder.
EXPORT_COLUMNS: dict[ExportKind, tuple[str, ...]] = {
    ExportKind.CUSTOMERS: (
        "ID", "Name", "Email", "Phone", "City", "State", "GSTIN", "Status", "Created At",
    ),
    ExportKind.INVOICES: (
        "ID", "Invoice Number", "Customer", "Date", "Due Date", "Amount", "Tax", "Status",
        "Created At",
    ),
    ExportKind.ORDERS: (
        "ID", "Order ID", "Customer", "Date", "Amount", "Items", "Status", "Created At",
    ),
    ExportKind.LABELS: (
        "ID", "Tracking ID", "Customer", "Courier", "Service", "Weight", "Cost", "Status",
        "Created At",
    ),
    ExportKind.BATCH: (
        "Row", "Source Record ID", "Outcome", "Document ID", "Document Number",
        "Error Kind", "Message",
    ),
}


def _invoice_row(doc: Document) -> list[Any]:
    return [
        doc.id,
        doc.number,
        doc.customer.name,
        doc.issue_date,
        doc.due_date,
        doc.totals.total,
        doc.totals.tax_amount,
        doc.status,
        doc.created_at,
    ]


def _label_row(doc: Document) -> list[Any]:
    shipment = doc.shipment
    return [
        doc.id,
        shipment.tracking_id if shipment else "",
        doc.customer.name,
        shipment.courier_service if shipment else "",
        shipment.service_type if shipment else "",
        shipment.weight_kg if shipment else "",
        shipment.shipping_cost if shipment else "",
        doc.status,
        doc.created_at,
    ]


def _order_row(record: SourceRecord) -> list[Any]:
    amount = sum(
        (
            Decimal(str(i.unit_price)) * Decimal(str(i.quantity)) - Decimal(str(i.discount))
            for i in record.items
        ),
        Decimal("0"),
    )
    return [
        record.id,
        record.order_name,
        record.customer.name,
        record.order_date,
        amount,
        len(record.items),
        record.status,
        record.created_at,
    ]


def _customer_row(customer: Mapping[str, Any]) -> list[Any]:
    return [
        customer.get("id", ""),
        customer.get("name", ""),
        customer.get("email", ""),
        customer.get("phone", ""),
        customer.get("city", ""),
        customer.get("state", ""),
        customer.get("gstin", ""),
        customer.get("status", ""),
        customer.get("created_at", ""),
    ]


def export_documents(
    documents: Sequence[Document], codec: Optional[TabularCodec] = None
) -> str:
    """Export invoices or labels; all documents must share one kind."""
    codec = codec or TabularCodec()
    kinds = {d.kind for d in documents}
    if len(kinds) > 1:
        raise ValueError("Cannot export invoices and labels together")
    if kinds == {DocumentKind.LABEL}:
        return codec.encode(
            EXPORT_COLUMNS[ExportKind.LABELS], [_label_row(d) for d in documents]
        )
    return codec.encode(
        EXPORT_COLUMNS[ExportKind.INVOICES], [_invoice_row(d) for d in documents]
    )


def export_orders(
    records: Sequence[SourceRecord], codec: Optional[TabularCodec] = None
) -> str:
    codec = codec or TabularCodec()
    return codec.encode(EXPORT_COLUMNS[ExportKind.ORDERS], [_order_row(r) for r in records])


def export_customers(
    customers: Sequence[Mapping[str, Any]], codec: Optional[TabularCodec] = None
) -> str:
    codec = codec or TabularCodec()
    return codec.encode(
        EXPORT_COLUMNS[ExportKind.CUSTOMERS], [_customer_row(c) for c in customers]
    )


def export_batch_result(
    result: BatchResult, codec: Optional[TabularCodec] = None
) -> str:
    """One row per requested item, in input order."""
    codec = codec or TabularCodec()
    rows = []
    for outcome in result.outcomes:
        if isinstance(outcome, ItemSuccess):
            rows.append([
                outcome.index + 1,
                outcome.source_record_id,
                "success",
                outcome.document_id,
                outcome.document_number,
                "",
                "; ".join(outcome.warnings),
            ])
        else:
            rows.append([
                outcome.index + 1,
                outcome.source_record_id,
                "failure",
                "",
                "",
                outcome.error_kind,
                outcome.message,
            ])
    return codec.encode(EXPORT_COLUMNS[ExportKind.BATCH], rows)
