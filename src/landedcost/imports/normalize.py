"""Map validated rows onto the canonical effective-dated record shape."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel, ValidationError

from landedcost.errors import BatchTooLarge, RowValidationError
from landedcost.imports.rows import MAX_LLM_ROWS, is_llm_source, row_model_for
from landedcost.money import (
    ad_valorem_percent_to_fraction_string,
    sha256_hex,
    to_numeric_string,
    to_significant_string,
)

logger = logging.getLogger(__name__)

# Job prefix (before the first ":") -> entity.
JOB_ENTITIES: Dict[str, str] = {
    "duties": "duty",
    "duty": "duty",
    "vat": "vat",
    "de-minimis": "de_minimis",
    "deminimis": "de_minimis",
    "surcharges": "surcharge",
    "fx": "fx",
    "freight": "freight",
    "categories": "category",
}

ENTITIES = frozenset(JOB_ENTITIES.values())


@dataclass(frozen=True)
class CanonicalRecord:
    """One normalized row, ready for the upsert planner."""

    entity: str
    key: Tuple[Any, ...]
    effective_from: Optional[date]
    effective_to: Optional[date]
    payload: Dict[str, Any]
    source_url: Optional[str]
    raw_hash: str
    index: int

    @property
    def key_text(self) -> str:
        return "|".join(str(part) for part in self.key)


@dataclass
class NormalizationResult:
    records: List[CanonicalRecord] = field(default_factory=list)
    issues: List[RowValidationError] = field(default_factory=list)
    fetched: int = 0


def entity_for_job(job: str, entity: Optional[str] = None) -> str:
    """Resolve the target entity from an explicit name or the job prefix."""
    if entity:
        if entity not in ENTITIES:
            raise ValueError(f"unknown import entity: {entity!r}")
        return entity
    prefix = (job or "").split(":", 1)[0].strip().lower()
    try:
        return JOB_ENTITIES[prefix]
    except KeyError:
        raise ValueError(f"cannot infer import entity from job {job!r}") from None


def normalize_rows(
    entity: str,
    source: str,
    raw_rows: Sequence[Any],
    *,
    min_confidence: Optional[float] = None,
) -> NormalizationResult:
    """Validate ``raw_rows`` and convert survivors into canonical records.

    Invalid rows become :class:`RowValidationError` issues; they never abort
    the import.  LLM payloads over :data:`MAX_LLM_ROWS` are rejected whole.
    """
    if is_llm_source(source) and len(raw_rows) > MAX_LLM_ROWS:
        raise BatchTooLarge(len(raw_rows), MAX_LLM_ROWS)

    model = row_model_for(entity, source)
    result = NormalizationResult(fetched=len(raw_rows))
    validated: List[Tuple[int, BaseModel, str]] = []

    for index, raw in enumerate(raw_rows):
        if not isinstance(raw, Mapping):
            result.issues.append(RowValidationError(index, f"expected an object, got {type(raw).__name__}"))
            continue
        try:
            row = model.model_validate(dict(raw))
        except ValidationError as exc:
            result.issues.append(RowValidationError(index, _summarize(exc)))
            continue
        confidence = getattr(row, "confidence", None)
        if min_confidence is not None and confidence is not None and confidence < min_confidence:
            result.issues.append(
                RowValidationError(index, f"confidence {confidence} below minimum {min_confidence}")
            )
            continue
        validated.append((index, row, sha256_hex(dict(raw))))

    if entity == "de_minimis" and is_llm_source(source):
        validated = _fold_de_minimis_kinds(validated, result.issues)

    for index, row, raw_hash in validated:
        result.records.append(_to_record(entity, row, raw_hash, index))

    if result.issues:
        logger.info(
            "Normalized %d/%d %s rows (%d rejected)",
            len(result.records),
            result.fetched,
            entity,
            len(result.issues),
        )
    return result


def _summarize(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors()[:5]:
        location = ".".join(str(item) for item in error.get("loc", ())) or "row"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def _fold_de_minimis_kinds(
    validated: List[Tuple[int, BaseModel, str]],
    issues: List[RowValidationError],
) -> List[Tuple[int, BaseModel, str]]:
    """Merge LLM ``kind=DUTY``/``kind=VAT`` facts into one threshold per country.

    A matching DUTY+VAT pair becomes ``DUTY_VAT``; a lone DUTY row stays
    ``DUTY``; a VAT fact without a matching DUTY fact cannot be represented
    and is rejected.
    """
    groups: Dict[Tuple[str, date], Dict[str, Tuple[int, BaseModel, str]]] = {}
    order: List[Tuple[str, date]] = []
    for entry in validated:
        row = entry[1]
        group_key = (row.country_code, row.effective_from)
        if group_key not in groups:
            groups[group_key] = {}
            order.append(group_key)
        groups[group_key][row.kind] = entry

    folded: List[Tuple[int, BaseModel, str]] = []
    for group_key in order:
        kinds = groups[group_key]
        duty = kinds.get("DUTY")
        vat = kinds.get("VAT")
        if duty is None:
            issues.append(RowValidationError(vat[0], "VAT-only de-minimis thresholds are not supported"))
            continue
        applies_to = "DUTY"
        if vat is not None:
            d_row, v_row = duty[1], vat[1]
            if (d_row.value, d_row.currency, d_row.basis) == (v_row.value, v_row.currency, v_row.basis):
                applies_to = "DUTY_VAT"
            else:
                issues.append(
                    RowValidationError(vat[0], "VAT threshold differs from the duty threshold")
                )
        folded.append((duty[0], _LlmDeMinimisFolded(duty[1], applies_to), duty[2]))
    folded.sort(key=lambda entry: entry[0])
    return folded


class _LlmDeMinimisFolded:
    """Adapter exposing an LLM de-minimis row in the canonical row shape."""

    def __init__(self, row: BaseModel, applies_to: str):
        self.dest = row.country_code
        self.currency = row.currency
        self.value = row.value
        self.basis = row.basis
        self.applies_to = applies_to
        self.effective_from = row.effective_from
        self.effective_to = row.effective_to
        self.source_url = str(row.source_url)


def _dec(value: Optional[Decimal], places: int) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(to_numeric_string(value, places))


def _url(row: Any) -> Optional[str]:
    value = getattr(row, "source_url", None)
    return str(value) if value is not None else None


def _to_record(entity: str, row: Any, raw_hash: str, index: int) -> CanonicalRecord:
    effective_from = getattr(row, "effective_from", None)
    effective_to = getattr(row, "effective_to", None)

    if entity == "duty":
        key = (row.dest, row.partner or "", row.hs6, row.rule)
        payload = {
            "rate_pct": _dec(row.rate_pct, 4),
            "specific_amount": _dec(row.specific_amount, 4),
            "specific_unit": row.specific_unit,
            "specific_currency": row.specific_currency,
            "agreement": row.agreement,
            "notes": row.notes,
        }
    elif entity == "vat":
        key = (row.dest,)
        payload = {"rate_pct": _dec(row.rate_pct, 3), "base": row.base, "notes": row.notes}
    elif entity == "de_minimis":
        key = (row.dest,)
        payload = {
            "currency": row.currency,
            "value": _dec(row.value, 2),
            "applies_to": row.applies_to,
            "basis": row.basis,
        }
    elif entity == "surcharge":
        pct = None
        if row.pct_percent is not None:
            pct = Decimal(ad_valorem_percent_to_fraction_string(row.pct_percent))
        key = (row.dest, row.code)
        payload = {
            "fixed_amount": _dec(row.fixed_amount, 2),
            "fixed_currency": row.fixed_currency,
            "pct_amount": pct,
            "notes": row.notes,
        }
    elif entity == "fx":
        key = (row.base, row.quote, row.as_of)
        payload = {
            "rate": Decimal(to_significant_string(row.rate)),
            "provider": row.provider,
            "source_ref": row.source_ref,
        }
    elif entity == "freight":
        key = (row.origin, row.dest, row.mode, row.unit)
        payload = {
            "currency": row.currency,
            "min_charge": _dec(row.min_charge, 2),
            "price_rounding": _dec(row.price_rounding, 4),
            "steps": tuple((_dec(step.upto_qty, 4), _dec(step.price_per_unit, 4)) for step in row.steps),
        }
    elif entity == "category":
        key = (row.key,)
        payload = {"default_hs6": row.default_hs6, "title": row.title}
    else:
        raise ValueError(f"unknown import entity: {entity!r}")

    return CanonicalRecord(
        entity=entity,
        key=key,
        effective_from=effective_from,
        effective_to=effective_to,
        payload=payload,
        source_url=_url(row),
        raw_hash=raw_hash,
        index=index,
    )
