"""ISO-3166 alpha-2 normalization and destination currency mapping."""

from __future__ import annotations

import re
from typing import Dict, Optional

from landedcost.errors import UnknownEntity

_ISO2_RE = re.compile(r"^[A-Z]{2}$")

_ALIASES: Dict[str, str] = {"UK": "GB"}

_EURO_AREA = (
    "AD", "AT", "BE", "CY", "DE", "EE", "ES", "FI", "FR", "GR", "HR", "IE",
    "IT", "LT", "LU", "LV", "MC", "MT", "NL", "PT", "SI", "SK", "SM", "VA",
)

COUNTRY_CURRENCY: Dict[str, str] = {
    **{iso2: "EUR" for iso2 in _EURO_AREA},
    # EU members outside the euro
    "BG": "BGN",
    "CZ": "CZK",
    "DK": "DKK",
    "HU": "HUF",
    "PL": "PLN",
    "RO": "RON",
    "SE": "SEK",
    # Core destinations
    "US": "USD",
    "GB": "GBP",
    "CN": "CNY",
    "JP": "JPY",
    # ASEAN
    "BN": "BND",
    "ID": "IDR",
    "KH": "KHR",
    "LA": "LAK",
    "MM": "MMK",
    "MY": "MYR",
    "PH": "PHP",
    "SG": "SGD",
    "TH": "THB",
    "VN": "VND",
    # Other trade destinations
    "AE": "AED",
    "AU": "AUD",
    "BR": "BRL",
    "CA": "CAD",
    "CH": "CHF",
    "HK": "HKD",
    "IN": "INR",
    "KR": "KRW",
    "MX": "MXN",
    "NO": "NOK",
    "NZ": "NZD",
    "SA": "SAR",
    "TR": "TRY",
    "TW": "TWD",
    "ZA": "ZAR",
}


def normalize_iso2(code: Optional[str]) -> Optional[str]:
    """Trim, upper-case and alias an ISO2 code; ``None`` if malformed."""
    iso2 = str(code or "").strip().upper()
    if not _ISO2_RE.match(iso2):
        return None
    return _ALIASES.get(iso2, iso2)


def currency_for_country(code: Optional[str]) -> Optional[str]:
    iso2 = normalize_iso2(code)
    if iso2 is None:
        return None
    return COUNTRY_CURRENCY.get(iso2)


def require_country(code: Optional[str]) -> str:
    """Return the normalized ISO2 code or raise :class:`UnknownEntity`."""
    iso2 = normalize_iso2(code)
    if iso2 is None or iso2 not in COUNTRY_CURRENCY:
        raise UnknownEntity("country", code)
    return iso2
