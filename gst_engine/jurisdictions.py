"""
Indian GST jurisdiction reference data.

Covers all 28 states and 8 union territories with their GST state codes
(the first two digits of every GSTIN), plus a reserved code for buyers
whose state cannot be determined.

Also holds the default classification (HSN) codes applied to line items
that arrive without one.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Jurisdiction:
    """A state or union territory for GST place-of-supply purposes."""

    code: str  # two-digit GST state code
    name: str
    abbreviation: str
    is_union_territory: bool = False


UNKNOWN_JURISDICTION = Jurisdiction(code="99", name="Unknown", abbreviation="")


# ---------------------------------------------------------------------------
# State / UT table
# ---------------------------------------------------------------------------

_JURISDICTION_DATA: list[tuple[str, str, str, bool]] = [
    ("01", "Jammu and Kashmir", "JK", True),
    ("02", "Himachal Pradesh", "HP", False),
    ("03", "Punjab", "PB", False),
    ("04", "Chandigarh", "CH", True),
    ("05", "Uttarakhand", "UK", False),
    ("06", "Haryana", "HR", False),
    ("07", "Delhi", "DL", True),
    ("08", "Rajasthan", "RJ", False),
    ("09", "Uttar Pradesh", "UP", False),
    ("10", "Bihar", "BR", False),
    ("11", "Sikkim", "SK", False),
    ("12", "Arunachal Pradesh", "AR", False),
    ("13", "Nagaland", "NL", False),
    ("14", "Manipur", "MN", False),
    ("15", "Mizoram", "MZ", False),
    ("16", "Tripura", "TR", False),
    ("17", "Meghalaya", "ML", False),
    ("18", "Assam", "AS", False),
    ("19", "West Bengal", "WB", False),
    ("20", "Jharkhand", "JH", False),
    ("21", "Odisha", "OD", False),
    ("22", "Chhattisgarh", "CG", False),
    ("23", "Madhya Pradesh", "MP", False),
    ("24", "Gujarat", "GJ", False),
    ("26", "Dadra and Nagar Haveli and Daman and Diu", "DH", True),
    ("27", "Maharashtra", "MH", False),
    ("29", "Karnataka", "KA", False),
    ("30", "Goa", "GA", False),
    ("31", "Lakshadweep", "LD", True),
    ("32", "Kerala", "KL", False),
    ("33", "Tamil Nadu", "TN", False),
    ("34", "Puducherry", "PY", True),
    ("35", "Andaman and Nicobar Islands", "AN", True),
    ("36", "Telangana", "TS", False),
    ("37", "Andhra Pradesh", "AP", False),
    ("38", "Ladakh", "LA", True),
]

# Common alternate spellings seen in storefront addresses
_NAME_ALIASES: dict[str, str] = {
    "new delhi": "07",
    "nct of delhi": "07",
    "orissa": "21",
    "pondicherry": "34",
    "uttaranchal": "05",
    "andaman & nicobar islands": "35",
    "jammu & kashmir": "01",
    "daman and diu": "26",
    "dadra and nagar haveli": "26",
}


# ---------------------------------------------------------------------------
# Classification codes
# ---------------------------------------------------------------------------

GENERIC_HSN_CODE = "9999"

_CATEGORY_HSN_CODES: dict[str, str] = {
    "clothing": "6109",
    "apparel": "6109",
    "electronics": "8517",
    "books": "4901",
    "food": "2106",
    "cosmetics": "3304",
    "jewelry": "7113",
    "jewellery": "7113",
    "toys": "9503",
    "furniture": "9403",
}


def default_hsn_code(
    category: Optional[str], fallback: str = GENERIC_HSN_CODE
) -> str:
    """Return the default HSN code for a product category."""
    if not category:
        return fallback
    return _CATEGORY_HSN_CODES.get(category.strip().lower(), fallback)


# ---------------------------------------------------------------------------
# GSTIN
# ---------------------------------------------------------------------------

# 2-digit state code + 10-char PAN + entity number + 'Z' + check character
_GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")


def is_valid_gstin(value: Optional[str]) -> bool:
    """Check a GSTIN against the 15-character structural format."""
    if not value:
        return False
    return bool(_GSTIN_PATTERN.match(value.strip().upper()))


def gstin_state_code(value: str) -> str:
    """Return the state code embedded in a GSTIN."""
    if not is_valid_gstin(value):
        raise ValueError(f"Invalid GSTIN: {value}")
    return value.strip()[:2]


def _normalise(value: str) -> str:
    return " ".join(value.replace("-", " ").split()).lower()


class JurisdictionRegistry:
    """
    Lookup table for GST jurisdictions.

    Resolves two-digit codes, full names and registration abbreviations
    to a single Jurisdiction record.
    """

    def __init__(self, unknown_code: str = UNKNOWN_JURISDICTION.code) -> None:
        self._by_code: dict[str, Jurisdiction] = {}
        self._by_key: dict[str, Jurisdiction] = {}
        self.unknown = (
            UNKNOWN_JURISDICTION
            if unknown_code == UNKNOWN_JURISDICTION.code
            else Jurisdiction(code=unknown_code, name="Unknown", abbreviation="")
        )
        self._load()

    def _load(self) -> None:
        for code, name, abbreviation, is_ut in _JURISDICTION_DATA:
            jurisdiction = Jurisdiction(code, name, abbreviation, is_ut)
            self._by_code[code] = jurisdiction
            self._by_key[_normalise(name)] = jurisdiction
            self._by_key[abbreviation.lower()] = jurisdiction
        for alias, code in _NAME_ALIASES.items():
            self._by_key[_normalise(alias)] = self._by_code[code]

    @property
    def count(self) -> int:
        return len(self._by_code)

    def get(self, value: Optional[str]) -> Optional[Jurisdiction]:
        """Look up a jurisdiction by code, name or abbreviation."""
        if value is None:
            return None
        text = str(value).strip()
        if not text:
            return None
        if text.isdigit():
            return self._by_code.get(text.zfill(2))
        return self._by_key.get(_normalise(text))

    def resolve(self, value: Optional[str]) -> Jurisdiction:
        """
        Look up a jurisdiction, falling back to the unknown jurisdiction.

        Unresolvable buyers are never an error: they are treated as
        inter-state under the reserved unknown code.
        """
        return self.get(value) or self.unknown

    def require(self, value: Optional[str]) -> Jurisdiction:
        """Look up a jurisdiction that must exist."""
        jurisdiction = self.get(value)
        if jurisdiction is None:
            raise KeyError(f"Unknown jurisdiction: {value}")
        return jurisdiction

    def all_jurisdictions(self) -> list[Jurisdiction]:
        """Return all jurisdictions sorted by code."""
        return [self._by_code[k] for k in sorted(self._by_code)]

    def union_territories(self) -> list[str]:
        return [j.code for j in self.all_jurisdictions() if j.is_union_territory]


def place_of_supply(jurisdiction: Jurisdiction) -> str:
    """Render a place of supply as printed on GST invoices."""
    return f"{jurisdiction.code}-{jurisdiction.name}"
