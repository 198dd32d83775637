"""
Billing document and shipping label assembly.

Turns a source order plus tenant seller settings into a numbered,
tax-split Document and hands it to persistence.

Ordering inside assemble():
1. Tenant settings are checked (no number is consumed if they are missing)
2. Buyer jurisdiction is derived and the tax split computed
3. A number is allocated
4. The document is persisted; a failure here leaves a logged gap
"""

from __future__ import annotations

import logging
import re
import secrets
import string
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Protocol

from gst_engine.calculator import LineItem, TaxCalculator, TaxSplit, TaxTotals
from gst_engine.config import Settings, get_settings
from gst_engine.errors import (
    AssemblyFailed,
    InvalidLineItem,
    RecordNotFound,
    TenantNotConfigured,
)
from gst_engine.jurisdictions import (
    Jurisdiction,
    default_hsn_code,
    gstin_state_code,
    is_valid_gstin,
    place_of_supply,
)
from gst_engine.sequence import SequenceAllocator

logger = logging.getLogger(__name__)


class DocumentKind(Enum):
    INVOICE = "invoice"
    LABEL = "label"

    @classmethod
    def parse(cls, value: "DocumentKind | str") -> "DocumentKind":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        # accept the plural forms used by export and bulk endpoints
        if text.endswith("s"):
            text = text[:-1]
        return cls(text)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass
class Address:
    address1: str = ""
    address2: str = ""
    city: str = ""
    province: str = ""
    zip: str = ""
    country: str = "India"

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["Address"]:
        if not data:
            return None
        return cls(
            address1=data.get("address1", "") or "",
            address2=data.get("address2", "") or "",
            city=data.get("city", "") or "",
            province=data.get("province") or data.get("state") or "",
            zip=str(data.get("zip") or data.get("pincode") or ""),
            country=data.get("country") or "India",
        )

    def formatted(self) -> str:
        parts = [
            self.address1,
            self.address2,
            self.city,
            self.province,
            self.country,
            self.zip,
        ]
        return ", ".join(p for p in parts if p)


@dataclass
class Customer:
    name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    gstin: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Customer":
        data = data or {}
        return cls(
            name=data.get("name", "") or "",
            email=data.get("email"),
            phone=data.get("phone"),
            gstin=data.get("gstin"),
        )


@dataclass
class SourceRecord:
    """An e-commerce order that documents are generated from."""

    id: str
    tenant_id: str
    items: list[LineItem] = field(default_factory=list)
    order_name: str = ""
    customer: Customer = field(default_factory=Customer)
    billing_address: Optional[Address] = None
    shipping_address: Optional[Address] = None
    order_date: Optional[date] = None
    status: str = "PENDING"
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict, tenant_id: Optional[str] = None) -> "SourceRecord":
        order_date = data.get("order_date")
        created_at = data.get("created_at")
        return cls(
            id=str(data["id"]),
            tenant_id=tenant_id or str(data["tenant_id"]),
            items=[LineItem.from_dict(i) for i in data.get("items", [])],
            order_name=data.get("order_name", "") or "",
            customer=Customer.from_dict(data.get("customer")),
            billing_address=Address.from_dict(data.get("billing_address")),
            shipping_address=Address.from_dict(data.get("shipping_address")),
            order_date=(
                date.fromisoformat(order_date)
                if isinstance(order_date, str)
                else order_date
            ),
            status=data.get("status", "PENDING"),
            created_at=(
                datetime.fromisoformat(created_at)
                if isinstance(created_at, str)
                else created_at
            ),
        )

    @property
    def buyer_state(self) -> Optional[str]:
        """
        State that governs tax: billing first, shipping as fallback.

        The shipping address is kept on the document for display only.
        """
        for address in (self.billing_address, self.shipping_address):
            if address is not None and address.province.strip():
                return address.province
        return None


_PREFIX_PATTERN = re.compile(r"^[A-Z0-9]{1,5}$")


@dataclass
class TenantSettings:
    """Seller configuration for one tenant."""

    tenant_id: str
    seller_name: str = ""
    seller_jurisdiction: Optional[str] = None
    seller_tax_id: Optional[str] = None
    invoice_prefix: Optional[str] = None
    label_prefix: Optional[str] = "LBL"
    seller_address: Optional[Address] = None
    courier_service: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TenantSettings":
        return cls(
            tenant_id=str(data["tenant_id"]),
            seller_name=data.get("seller_name", "") or "",
            seller_jurisdiction=data.get("seller_jurisdiction"),
            seller_tax_id=data.get("seller_tax_id") or data.get("seller_gstin"),
            invoice_prefix=data.get("invoice_prefix"),
            label_prefix=data.get("label_prefix", "LBL"),
            seller_address=Address.from_dict(data.get("seller_address")),
            courier_service=data.get("courier_service"),
        )

    def prefix_for(self, kind: DocumentKind) -> Optional[str]:
        if kind is DocumentKind.LABEL:
            return self.label_prefix
        return self.invoice_prefix

    def missing_fields(
        self, kind: DocumentKind = DocumentKind.INVOICE
    ) -> list[str]:
        missing = []
        if not (self.seller_jurisdiction or "").strip():
            missing.append("seller_jurisdiction")
        if not (self.seller_tax_id or "").strip():
            missing.append("seller_tax_id")
        if not (self.prefix_for(kind) or "").strip():
            missing.append(
                "label_prefix" if kind is DocumentKind.LABEL else "invoice_prefix"
            )
        return missing

    def validate(self, seller: Optional[Jurisdiction] = None) -> dict[str, str]:
        """
        Check settings for format problems.

        Returns a field -> message mapping; empty when valid.
        """
        errors: dict[str, str] = {}
        if not self.seller_name.strip():
            errors["seller_name"] = "Seller name is required"
        if not (self.seller_tax_id or "").strip():
            errors["seller_tax_id"] = "Seller GSTIN is required"
        elif not is_valid_gstin(self.seller_tax_id):
            errors["seller_tax_id"] = "Valid GSTIN format is required (15 characters)"
        elif seller is not None and gstin_state_code(self.seller_tax_id) != seller.code:
            errors["seller_tax_id"] = (
                f"GSTIN state code does not match seller jurisdiction {seller.code}"
            )
        for name in ("invoice_prefix", "label_prefix"):
            prefix = getattr(self, name)
            if prefix and not _PREFIX_PATTERN.match(prefix):
                errors[name] = "Prefix should be 1-5 uppercase letters/numbers"
        return errors


@dataclass
class LabelOptions:
    """Per-run overrides for shipping label fields."""

    tracking_id: Optional[str] = None
    courier_service: Optional[str] = None
    service_type: Optional[str] = None
    weight_kg: Optional[Decimal] = None
    shipping_cost: Decimal = Decimal("0")


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DocumentLine:
    description: str
    quantity: Decimal
    unit_price: Decimal
    hsn_code: str
    split: TaxSplit
    category: Optional[str] = None


@dataclass(frozen=True)
class JurisdictionInfo:
    seller_code: str
    buyer_code: str
    place_of_supply: str
    inter_state: bool


@dataclass(frozen=True)
class ShipmentDetails:
    tracking_id: str
    courier_service: str
    service_type: str
    weight_kg: Decimal
    shipping_cost: Decimal
    from_address: str
    to_address: str


@dataclass
class Document:
    """A numbered invoice or shipping label."""

    id: str
    tenant_id: str
    kind: DocumentKind
    number: str
    sequence: int
    source_record_id: str
    lines: list[DocumentLine]
    totals: TaxTotals
    jurisdiction: JurisdictionInfo
    created_at: datetime
    status: str = "DRAFT"
    order_name: str = ""
    customer: Customer = field(default_factory=Customer)
    billing_address: Optional[Address] = None
    shipping_address: Optional[Address] = None
    seller_tax_id: str = ""
    due_date: Optional[date] = None
    shipment: Optional[ShipmentDetails] = None

    @property
    def issue_date(self) -> date:
        return self.created_at.date()


@dataclass(frozen=True)
class SequenceGap:
    """A number that was allocated but never attached to a stored document."""

    tenant_id: str
    kind: DocumentKind
    number: str
    source_record_id: str
    reason: str


@dataclass(frozen=True)
class LateDocument:
    """A document stored after its batch item had already been reported as failed."""

    tenant_id: str
    kind: DocumentKind
    number: str
    document_id: str
    source_record_id: str


class DocumentSink(Protocol):
    def save_document(self, document: Document) -> None: ...


def generate_tracking_id() -> str:
    """Courier-style tracking id used when the caller supplies none."""
    stamp = str(time.time_ns() // 1_000_000)[-8:]
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(4))
    return f"TRK{stamp}{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentAssembler:
    """
    Composes and stores documents.

    build() is pure apart from number allocation; persist() stores a
    built document. assemble() does both.
    """

    def __init__(
        self,
        calculator: TaxCalculator,
        allocator: SequenceAllocator,
        sink: DocumentSink,
        settings: Optional[Settings] = None,
    ) -> None:
        self.calculator = calculator
        self.allocator = allocator
        self.sink = sink
        self.settings = settings or get_settings()
        self._gaps: list[SequenceGap] = []
        self._late: list[LateDocument] = []
        self._gaps_lock = threading.Lock()

    @property
    def gaps(self) -> list[SequenceGap]:
        with self._gaps_lock:
            return list(self._gaps)

    @property
    def late_documents(self) -> list[LateDocument]:
        with self._gaps_lock:
            return list(self._late)

    def check_settings(
        self, tenant_settings: TenantSettings, kind: DocumentKind
    ) -> Jurisdiction:
        """Return the seller jurisdiction or raise TenantNotConfigured."""
        missing = tenant_settings.missing_fields(kind)
        seller = None
        if "seller_jurisdiction" not in missing:
            seller = self.calculator.registry.get(tenant_settings.seller_jurisdiction)
            if seller is None:
                missing.append("seller_jurisdiction")
        if missing or seller is None:
            raise TenantNotConfigured(tenant_settings.tenant_id, missing)
        return seller

    def _lines(self, items: list[LineItem], splits: list[TaxSplit]) -> list[DocumentLine]:
        fallback = self.settings.default_hsn_code
        return [
            DocumentLine(
                description=item.description,
                quantity=Decimal(str(item.quantity)),
                unit_price=Decimal(str(item.unit_price)),
                hsn_code=item.hsn_code or default_hsn_code(item.category, fallback),
                split=split,
                category=item.category,
            )
            for item, split in zip(items, splits)
        ]

    def _shipment(
        self,
        record: SourceRecord,
        tenant_settings: TenantSettings,
        options: Optional[LabelOptions],
    ) -> ShipmentDetails:
        options = options or LabelOptions()
        ship_to = record.shipping_address or record.billing_address
        return ShipmentDetails(
            tracking_id=options.tracking_id or generate_tracking_id(),
            courier_service=(
                options.courier_service
                or tenant_settings.courier_service
                or self.settings.default_courier_service
            ),
            service_type=options.service_type or self.settings.default_service_type,
            weight_kg=options.weight_kg or self.settings.default_parcel_weight_kg,
            shipping_cost=options.shipping_cost,
            from_address=(
                tenant_settings.seller_address.formatted()
                if tenant_settings.seller_address
                else tenant_settings.seller_name
            ),
            to_address=ship_to.formatted() if ship_to else "",
        )

    def build(
        self,
        record: SourceRecord,
        tenant_settings: TenantSettings,
        kind: DocumentKind = DocumentKind.INVOICE,
        label_options: Optional[LabelOptions] = None,
    ) -> Document:
        """Compose a numbered document without storing it."""
        kind = DocumentKind.parse(kind)
        seller = self.check_settings(tenant_settings, kind)

        if record.tenant_id != tenant_settings.tenant_id:
            raise RecordNotFound(
                f"Record {record.id} not found for tenant {tenant_settings.tenant_id}"
            )
        if kind is DocumentKind.INVOICE and not record.items:
            raise InvalidLineItem(f"Record {record.id}: at least one item is required")

        buyer = self.calculator.registry.resolve(record.buyer_state)
        result = self.calculator.compute_split(seller, buyer, record.items)
        shipment = (
            self._shipment(record, tenant_settings, label_options)
            if kind is DocumentKind.LABEL
            else None
        )

        issued = self.allocator.next_number(
            tenant_settings.tenant_id,
            kind.value,
            prefix=tenant_settings.prefix_for(kind),
        )

        created_at = _utcnow()
        return Document(
            id=uuid.uuid4().hex,
            tenant_id=tenant_settings.tenant_id,
            kind=kind,
            number=issued.formatted,
            sequence=issued.number,
            source_record_id=record.id,
            lines=self._lines(record.items, result.per_item),
            totals=result.totals,
            jurisdiction=JurisdictionInfo(
                seller_code=seller.code,
                buyer_code=buyer.code,
                place_of_supply=place_of_supply(buyer),
                inter_state=result.inter_state,
            ),
            created_at=created_at,
            status="CREATED" if kind is DocumentKind.LABEL else "DRAFT",
            order_name=record.order_name,
            customer=record.customer,
            billing_address=record.billing_address,
            shipping_address=record.shipping_address,
            seller_tax_id=tenant_settings.seller_tax_id or "",
            due_date=(
                created_at.date() + timedelta(days=self.settings.invoice_due_days)
                if kind is DocumentKind.INVOICE
                else None
            ),
            shipment=shipment,
        )

    def record_gap(self, document: Document, reason: str) -> SequenceGap:
        gap = SequenceGap(
            tenant_id=document.tenant_id,
            kind=document.kind,
            number=document.number,
            source_record_id=document.source_record_id,
            reason=reason,
        )
        with self._gaps_lock:
            self._gaps.append(gap)
        logger.warning(
            f"Sequence gap: {document.number} ({document.kind.value}) for tenant "
            f"{document.tenant_id} was consumed but not stored: {reason}"
        )
        return gap

    def record_late_store(self, document: Document) -> LateDocument:
        late = LateDocument(
            tenant_id=document.tenant_id,
            kind=document.kind,
            number=document.number,
            document_id=document.id,
            source_record_id=document.source_record_id,
        )
        with self._gaps_lock:
            self._late.append(late)
        logger.warning(
            f"{document.number} ({document.kind.value}) for tenant {document.tenant_id} "
            f"was stored after its step timed out; record {document.source_record_id} "
            f"already has a document"
        )
        return late

    def persist(self, document: Document) -> Document:
        """Store a built document; a failure consumes its number for good."""
        try:
            self.sink.save_document(document)
        except Exception as e:
            self.record_gap(document, str(e) or type(e).__name__)
            raise AssemblyFailed(
                f"Could not store {document.number} for record "
                f"{document.source_record_id}: {e}"
            ) from e
        return document

    def assemble(
        self,
        record: SourceRecord,
        tenant_settings: TenantSettings,
        kind: DocumentKind = DocumentKind.INVOICE,
        label_options: Optional[LabelOptions] = None,
    ) -> Document:
        """Build, number and store a document for a source record."""
        document = self.build(record, tenant_settings, kind, label_options)
        return self.persist(document)
