"""
Jurisdiction tax lookup.

Rates are combined state + county + city transaction-privilege rates
applied to the *booking subtotal* only.  Post-trip charges (mileage,
fuel, late return) are service penalties and never taxed.

``rate_for`` never fails: anything that cannot be matched to a known city
is taxed at the table's ``default_rate`` under the default city name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

DEFAULT_CITY = "Phoenix"

# Combined rental tax rate per city
CITY_TAX_RATES: dict[str, Decimal] = {
    "Phoenix": Decimal("0.084"),
    "Scottsdale": Decimal("0.0805"),
    "Tempe": Decimal("0.081"),
    "Mesa": Decimal("0.083"),
    "Chandler": Decimal("0.078"),
    "Gilbert": Decimal("0.078"),
    "Glendale": Decimal("0.092"),
    "Peoria": Decimal("0.081"),
    "Surprise": Decimal("0.082"),
    "Goodyear": Decimal("0.083"),
    "Paradise Valley": Decimal("0.0805"),
    "Cave Creek": Decimal("0.087"),
    "Fountain Hills": Decimal("0.087"),
    "Tucson": Decimal("0.087"),
    "Flagstaff": Decimal("0.0901"),
    "Sedona": Decimal("0.0995"),
}

# "..., Phoenix, AZ 85004" / "Phoenix AZ" -> token before the state code
_STATE_PATTERN = re.compile(
    r"(?:^|,)\s*([A-Za-z .'-]+?)\s*,?\s+(?:AZ|Arizona)\b(?:\s+\d{5}(?:-\d{4})?)?\s*$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class TaxRate:
    city: str
    rate: Decimal
    display: str


def _format_rate(rate: Decimal) -> str:
    pct = (rate * 100).normalize()
    return f"{pct:f}%"


def _canonical(city: str) -> Optional[str]:
    needle = city.strip().lower()
    for known in CITY_TAX_RATES:
        if known.lower() == needle:
            return known
    return None


def match_city(address: Optional[str]) -> Optional[str]:
    """
    Normalise a free-text address to a known city name, or ``None``.

    1. Exact known-city input ("Tempe") is returned as-is.
    2. The token preceding the state abbreviation is tried
       ("123 Main St, Phoenix, AZ 85004" -> "Phoenix").
    3. Any known city contained in the text is matched, longest name
       first so "Paradise Valley" wins over shorter overlaps.
    """
    if not address:
        return None

    exact = _canonical(address)
    if exact:
        return exact

    match = _STATE_PATTERN.search(address)
    if match:
        candidate = _canonical(match.group(1))
        if candidate:
            return candidate

    lowered = address.lower()
    for known in sorted(CITY_TAX_RATES, key=len, reverse=True):
        if re.search(rf"\b{re.escape(known.lower())}\b", lowered):
            return known
    return None


def city_from_address(address: Optional[str]) -> str:
    return match_city(address) or DEFAULT_CITY


class TaxTable:
    """Static city -> rate lookup with a default fallback entry."""

    def __init__(
        self,
        rates: Optional[dict[str, Decimal]] = None,
        default_rate: Decimal = Decimal("0.084"),
    ):
        self.rates = dict(rates if rates is not None else CITY_TAX_RATES)
        self.default_rate = default_rate

    def rate_for(self, city: Optional[str]) -> TaxRate:
        name = match_city(city)
        rate = self.rates.get(name) if name else None
        if rate is None:
            return TaxRate(city=DEFAULT_CITY, rate=self.default_rate,
                           display=_format_rate(self.default_rate))
        return TaxRate(city=name, rate=rate, display=_format_rate(rate))

    def tax_on(self, subtotal: Decimal, city: Optional[str]) -> Decimal:
        rate = self.rate_for(city).rate
        return (subtotal * rate).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
