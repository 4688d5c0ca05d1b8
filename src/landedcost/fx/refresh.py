"""Daily FX refresh: ECB reference rates, optionally gap-filled by a secondary feed.

The ECB publishes EUR-based reference rates once per business day.  Its
``time`` attribute is the canonical ``as_of`` for everything written by a
refresh.  A secondary provider (``FX_SECONDARY``) may fill currencies the
ECB does not publish, never overriding an ECB rate, and only when its date
is within ``FX_SECONDARY_MAX_LAG_DAYS`` of the ECB date.

Rows are written through :func:`landedcost.imports.run_import` so a refresh
gets the job lease, provenance and idempotent upserts like any import.
"""

from __future__ import annotations

import logging
import os
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from sqlalchemy.orm import Session

from landedcost.errors import UpstreamFetchError
from landedcost.imports.locks import LeaseLock
from landedcost.imports.pipeline import run_import
from landedcost.imports.provenance import build_import_id, record_failed_run
from landedcost.money import parse_iso_date, to_significant_string

logger = logging.getLogger(__name__)

ECB_DAILY_URL = os.getenv(
    "ECB_DAILY_URL",
    "https://www.ecb.europa.eu/stats/eurofxref/eurofxref-daily.xml",
)
EXCHANGERATE_HOST_URL = "https://api.exchangerate.host/{day}?base=EUR"
OPENEXCHANGERATES_URL = "https://openexchangerates.org/api/historical/{day}.json"
FX_HTTP_TIMEOUT = float(os.getenv("FX_HTTP_TIMEOUT", "20"))
USER_AGENT = "landedcost-fx/0.1"

FX_SOURCE = "ECB"
FX_JOB = "fx:daily"

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

# currency -> (EUR->currency rate, provider, source_ref)
EurMap = Dict[str, Tuple[Decimal, str, str]]


@dataclass(frozen=True)
class FxRefreshResult:
    base: str
    fx_as_of: date
    inserted: int
    updated: int = 0
    secondary_filled: int = 0
    import_run_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base": self.base,
            "fx_as_of": self.fx_as_of.isoformat(),
            "inserted": self.inserted,
            "updated": self.updated,
            "secondary_filled": self.secondary_filled,
            "import_run_id": self.import_run_id,
        }


# ---------------------------------------------------------------------------
# Primary: ECB
# ---------------------------------------------------------------------------


def parse_ecb_xml(xml_text: str) -> Tuple[date, Dict[str, Decimal]]:
    """Return ``(as_of, {currency: EUR->currency rate})`` from the ECB daily XML."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise ValueError(f"malformed ECB XML: {exc}") from exc

    as_of: Optional[date] = None
    rates: Dict[str, Decimal] = {}
    for element in root.iter():
        attributes = element.attrib
        if "time" in attributes and as_of is None:
            as_of = parse_iso_date(attributes["time"])
        currency = attributes.get("currency")
        raw_rate = attributes.get("rate")
        if currency and raw_rate and _CURRENCY_RE.match(currency):
            try:
                value = Decimal(raw_rate)
            except InvalidOperation:
                continue
            if value > 0:
                rates[currency] = value
    if as_of is None:
        raise ValueError("no date in ECB XML")
    if "USD" not in rates:
        raise ValueError("ECB XML has no USD rate")
    return as_of, rates


def fetch_ecb(client: httpx.Client) -> Tuple[date, EurMap]:
    response = client.get(ECB_DAILY_URL)
    response.raise_for_status()
    as_of, rates = parse_ecb_xml(response.text)
    source_ref = f"ecb:{as_of.isoformat()}"
    return as_of, {currency: (rate, "ecb", source_ref) for currency, rate in rates.items()}


# ---------------------------------------------------------------------------
# Secondary providers
# ---------------------------------------------------------------------------


def fetch_exchangerate_host(client: httpx.Client, day: date) -> Optional[Tuple[date, EurMap]]:
    response = client.get(EXCHANGERATE_HOST_URL.format(day=day.isoformat()))
    response.raise_for_status()
    payload = response.json()
    rates = payload.get("rates") or {}
    reported = parse_iso_date(payload.get("date") or day.isoformat())
    source_ref = f"exchangerate.host:{reported.isoformat()}"
    eur_map: EurMap = {}
    for currency, raw_rate in rates.items():
        code = str(currency).upper()
        value = _positive_decimal(raw_rate)
        if _CURRENCY_RE.match(code) and value is not None and code != "EUR":
            eur_map[code] = (value, "exchangerate.host", source_ref)
    if "USD" not in eur_map:
        return None
    return reported, eur_map


def fetch_openexchangerates(client: httpx.Client, day: date) -> Optional[Tuple[date, EurMap]]:
    app_id = os.getenv("OXR_APP_ID")
    if not app_id:
        logger.warning("FX_SECONDARY=openexchangerates but OXR_APP_ID is not set")
        return None
    response = client.get(OPENEXCHANGERATES_URL.format(day=day.isoformat()), params={"app_id": app_id})
    response.raise_for_status()
    payload = response.json()
    if payload.get("base") != "USD" or not payload.get("rates"):
        return None
    usd_rates = payload["rates"]
    usd_to_eur = _positive_decimal(usd_rates.get("EUR"))
    if usd_to_eur is None:
        return None
    source_ref = f"openexchangerates:{day.isoformat()}"
    eur_map: EurMap = {}
    for currency, raw_rate in usd_rates.items():
        code = str(currency).upper()
        usd_to_x = _positive_decimal(raw_rate)
        if not _CURRENCY_RE.match(code) or usd_to_x is None or code == "EUR":
            continue
        eur_map[code] = (usd_to_x / usd_to_eur, "openexchangerates", source_ref)
    eur_map.setdefault("USD", (Decimal(1) / usd_to_eur, "openexchangerates", source_ref))
    return day, eur_map


SECONDARY_PROVIDERS: Dict[str, Callable[[httpx.Client, date], Optional[Tuple[date, EurMap]]]] = {
    "exchangerate.host": fetch_exchangerate_host,
    "openexchangerates": fetch_openexchangerates,
}


def _positive_decimal(value: Any) -> Optional[Decimal]:
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() and number > 0 else None


def merge_fill_only(primary: EurMap, secondary: EurMap) -> Tuple[EurMap, int]:
    """Add secondary currencies missing from ``primary``; never override."""
    merged = dict(primary)
    filled = 0
    for currency, entry in secondary.items():
        if currency not in merged:
            merged[currency] = entry
            filled += 1
    return merged, filled


# ---------------------------------------------------------------------------
# Pair building
# ---------------------------------------------------------------------------


def build_fx_rows(as_of: date, eur_map: EurMap) -> List[Dict[str, Any]]:
    """EUR<->X, USD<->X (through EUR) and an ECB-anchored EUR<->USD."""
    if "USD" not in eur_map:
        raise ValueError("EUR->USD rate is required to build USD cross rates")
    rows: List[Dict[str, Any]] = []
    seen = set()

    def append(base: str, quote: str, rate: Decimal, provider: str, source_ref: str) -> None:
        if base == quote or (base, quote) in seen or rate <= 0:
            return
        seen.add((base, quote))
        rows.append(
            {
                "base": base,
                "quote": quote,
                "rate": to_significant_string(rate),
                "as_of": as_of.isoformat(),
                "provider": provider,
                "source_ref": source_ref,
            }
        )

    eur_to_usd, usd_provider, usd_ref = eur_map["USD"]
    append("EUR", "USD", eur_to_usd, usd_provider, usd_ref)
    append("USD", "EUR", Decimal(1) / eur_to_usd, usd_provider, usd_ref)

    for currency, (eur_to_x, provider, source_ref) in sorted(eur_map.items()):
        append("EUR", currency, eur_to_x, provider, source_ref)
        append(currency, "EUR", Decimal(1) / eur_to_x, provider, source_ref)

    for currency, (eur_to_x, provider, source_ref) in sorted(eur_map.items()):
        if currency == "USD":
            continue
        usd_to_x = eur_to_x / eur_to_usd
        append("USD", currency, usd_to_x, provider, source_ref)
        append(currency, "USD", Decimal(1) / usd_to_x, provider, source_ref)
    return rows


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def refresh_fx(
    *,
    session_factory: Optional[Callable[[], Session]] = None,
    lock: Optional[LeaseLock] = None,
    client: Optional[httpx.Client] = None,
) -> FxRefreshResult:
    """Fetch today's reference rates and import them as ``fx:daily``.

    Raises:
        UpstreamFetchError: the primary feed could not be fetched or parsed
            (a failed ImportRun is recorded first)
        ImportAlreadyRunning: another refresh holds the lease
    """
    if session_factory is None:
        from landedcost.db.session import SessionLocal

        session_factory = SessionLocal

    owns_client = client is None
    client = client or httpx.Client(
        timeout=FX_HTTP_TIMEOUT,
        headers={"User-Agent": USER_AGENT},
        follow_redirects=True,
    )
    try:
        try:
            as_of, eur_map = fetch_ecb(client)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("ECB fetch failed: %s", exc)
            record_failed_run(session_factory, source=FX_SOURCE, job=FX_JOB, error=f"ECB fetch failed: {exc}")
            raise UpstreamFetchError(FX_SOURCE, str(exc)) from exc

        eur_map, filled = _apply_secondary(client, as_of, eur_map)
    finally:
        if owns_client:
            client.close()

    rows = build_fx_rows(as_of, eur_map)
    result = run_import(
        FX_SOURCE,
        FX_JOB,
        rows,
        import_id=build_import_id("fx", "ecb", as_of.isoformat()),
        source_url=ECB_DAILY_URL,
        params={"fx_as_of": as_of.isoformat(), "secondary_filled": filled},
        session_factory=session_factory,
        lock=lock,
    )
    logger.info("FX refresh for %s: %d inserted, %d updated", as_of, result.inserted, result.updated)
    return FxRefreshResult(
        base="EUR",
        fx_as_of=as_of,
        inserted=result.inserted,
        updated=result.updated,
        secondary_filled=filled,
        import_run_id=result.import_run_id,
    )


def _apply_secondary(client: httpx.Client, as_of: date, eur_map: EurMap) -> Tuple[EurMap, int]:
    kind = os.getenv("FX_SECONDARY", "").strip().lower()
    if not kind:
        return eur_map, 0
    fetcher = SECONDARY_PROVIDERS.get(kind)
    if fetcher is None:
        logger.warning("Unknown FX_SECONDARY provider %r; skipping", kind)
        return eur_map, 0

    max_lag = int(os.getenv("FX_SECONDARY_MAX_LAG_DAYS", "2"))
    try:
        secondary = fetcher(client, as_of)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Secondary FX provider %s failed: %s", kind, exc)
        return eur_map, 0
    if secondary is None:
        return eur_map, 0

    secondary_day, secondary_map = secondary
    if abs((as_of - secondary_day).days) > max_lag:
        logger.warning(
            "Secondary FX date %s lags ECB %s by more than %d days; skipping",
            secondary_day,
            as_of,
            max_lag,
        )
        return eur_map, 0
    merged, filled = merge_fill_only(eur_map, secondary_map)
    if filled:
        logger.info("Secondary FX provider %s filled %d currencies", kind, filled)
    return merged, filled
