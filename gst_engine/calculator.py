"""
GST tax split engine.

Handles:
- Per-item taxable value computation (price x quantity - discount)
- Rate resolution (per-item override or configured default)
- Intra-state CGST/SGST and inter-state IGST splits
- Document totals as exact sums of per-item figures

Pure computation: no I/O and no shared state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Protocol, Sequence, Union

from gst_engine.config import Settings, get_settings
from gst_engine.errors import InvalidLineItem
from gst_engine.jurisdictions import Jurisdiction, JurisdictionRegistry

ZERO = Decimal("0.00")
_HUNDRED = Decimal("100")


def _round_money(amount: Decimal) -> Decimal:
    """Round to the nearest paisa, half-up."""
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _to_decimal(value, field_name: str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidLineItem(f"{field_name} is not a number: {value!r}") from e


@dataclass
class LineItem:
    """One line of a billing document as supplied by the caller."""

    description: str
    quantity: Decimal
    unit_price: Decimal
    discount: Decimal = Decimal("0")
    category: Optional[str] = None
    hsn_code: Optional[str] = None
    tax_rate: Optional[Decimal] = None  # percent, e.g. 18

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        rate = data.get("tax_rate", data.get("gst_rate"))
        return cls(
            description=str(data.get("description") or data.get("title") or ""),
            quantity=_to_decimal(data.get("quantity", 1), "quantity"),
            unit_price=_to_decimal(
                data.get("unit_price", data.get("price", 0)), "unit_price"
            ),
            discount=_to_decimal(data.get("discount") or 0, "discount"),
            category=data.get("category"),
            hsn_code=data.get("hsn_code") or data.get("hsnCode"),
            tax_rate=_to_decimal(rate, "tax_rate") if rate is not None else None,
        )


@dataclass(frozen=True)
class TaxSplit:
    """Tax computed for a single line item."""

    gross_value: Decimal
    discount: Decimal
    taxable_value: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    rate: Decimal

    @property
    def tax_amount(self) -> Decimal:
        return self.cgst + self.sgst + self.igst

    @property
    def total(self) -> Decimal:
        return self.taxable_value + self.tax_amount


@dataclass(frozen=True)
class TaxTotals:
    """Document-level sums of per-item splits."""

    gross_value: Decimal = ZERO
    discount: Decimal = ZERO
    taxable_value: Decimal = ZERO
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    igst: Decimal = ZERO

    @property
    def tax_amount(self) -> Decimal:
        return self.cgst + self.sgst + self.igst

    @property
    def total(self) -> Decimal:
        return self.taxable_value + self.tax_amount

    @classmethod
    def from_splits(cls, splits: Sequence[TaxSplit]) -> "TaxTotals":
        return cls(
            gross_value=sum((s.gross_value for s in splits), ZERO),
            discount=sum((s.discount for s in splits), ZERO),
            taxable_value=sum((s.taxable_value for s in splits), ZERO),
            cgst=sum((s.cgst for s in splits), ZERO),
            sgst=sum((s.sgst for s in splits), ZERO),
            igst=sum((s.igst for s in splits), ZERO),
        )


@dataclass
class SplitResult:
    """Result of a tax split over a set of line items."""

    seller: Jurisdiction
    buyer: Jurisdiction
    inter_state: bool
    per_item: list[TaxSplit] = field(default_factory=list)
    totals: TaxTotals = field(default_factory=TaxTotals)


class RateResolver(Protocol):
    """Chooses the GST rate (percent) for a line item."""

    def resolve(self, item: LineItem) -> Decimal: ...


class DefaultRateResolver:
    """
    Per-item rate when the caller supplies one, else a single default.

    No category or HSN rate table; a real table plugs in as another
    RateResolver.
    """

    def __init__(self, default_rate: Decimal) -> None:
        self.default_rate = Decimal(default_rate)

    def resolve(self, item: LineItem) -> Decimal:
        if item.tax_rate is not None:
            return Decimal(item.tax_rate)
        return self.default_rate


JurisdictionArg = Union[Jurisdiction, str, None]


class TaxCalculator:
    """
    GST split engine.

    Resolves seller and buyer jurisdictions, validates line items and
    computes CGST/SGST or IGST for each item and for the document.
    """

    def __init__(
        self,
        registry: Optional[JurisdictionRegistry] = None,
        rate_resolver: Optional[RateResolver] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry or JurisdictionRegistry(
            self.settings.unknown_jurisdiction_code
        )
        self.rate_resolver = rate_resolver or DefaultRateResolver(
            self.settings.default_tax_rate
        )

    def _jurisdiction(self, value: JurisdictionArg) -> Jurisdiction:
        if isinstance(value, Jurisdiction):
            return value
        return self.registry.resolve(value)

    def is_inter_state(
        self, seller: JurisdictionArg, buyer: JurisdictionArg
    ) -> bool:
        """
        Whether a supply is inter-state.

        An unknown buyer is always inter-state, even when the seller is
        unknown too.
        """
        seller_j = self._jurisdiction(seller)
        buyer_j = self._jurisdiction(buyer)
        if buyer_j.code == self.registry.unknown.code:
            return True
        return seller_j.code != buyer_j.code

    def _validate(self, item: LineItem, position: int) -> None:
        label = item.description or f"item {position}"
        if item.quantity <= 0:
            raise InvalidLineItem(f"{label}: quantity must be positive")
        if item.unit_price < 0:
            raise InvalidLineItem(f"{label}: unit price cannot be negative")
        if item.discount < 0:
            raise InvalidLineItem(f"{label}: discount cannot be negative")

    def split_item(
        self, item: LineItem, inter_state: bool, position: int = 1
    ) -> TaxSplit:
        """Compute the tax split for one line item."""
        self._validate(item, position)
        quantity = _to_decimal(item.quantity, "quantity")
        unit_price = _to_decimal(item.unit_price, "unit_price")
        discount = _round_money(_to_decimal(item.discount, "discount"))

        gross = _round_money(unit_price * quantity)
        taxable = gross - discount
        if taxable < 0:
            raise InvalidLineItem(
                f"{item.description or f'item {position}'}: discount "
                f"{discount} exceeds line value {gross}"
            )

        rate = self.rate_resolver.resolve(item)
        if rate < 0 or rate > _HUNDRED:
            raise InvalidLineItem(f"Tax rate out of range: {rate}")

        if inter_state:
            igst = _round_money(taxable * rate / _HUNDRED)
            cgst = sgst = ZERO
        else:
            # Each half is levied at half the rate, so the two are equal
            cgst = _round_money(taxable * (rate / 2) / _HUNDRED)
            sgst = cgst
            igst = ZERO

        return TaxSplit(
            gross_value=gross,
            discount=discount,
            taxable_value=taxable,
            cgst=cgst,
            sgst=sgst,
            igst=igst,
            rate=rate,
        )

    def compute_split(
        self,
        seller: JurisdictionArg,
        buyer: JurisdictionArg,
        items: Sequence[LineItem],
    ) -> SplitResult:
        """
        Compute per-item and aggregate GST for a set of line items.

        Raises InvalidLineItem on the first bad item; no partial result
        is returned.
        """
        seller_j = self._jurisdiction(seller)
        buyer_j = self._jurisdiction(buyer)
        inter_state = self.is_inter_state(seller_j, buyer_j)

        splits = [
            self.split_item(item, inter_state, position)
            for position, item in enumerate(items, start=1)
        ]

        return SplitResult(
            seller=seller_j,
            buyer=buyer_j,
            inter_state=inter_state,
            per_item=splits,
            totals=TaxTotals.from_splits(splits),
        )
