"""Strictly validated row variants accepted by the import pipeline.

Every source adapter hands the pipeline plain dicts.  Each dict is validated
against the row model for its target entity; LLM-extracted payloads use the
stricter ``Llm*`` variants (unknown fields rejected, URLs checked) and are
capped at :data:`MAX_LLM_ROWS` rows per call.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import Decimal
from typing import Annotated, Dict, List, Literal, Optional, Type

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    HttpUrl,
    model_validator,
)

from landedcost.countries import normalize_iso2

MAX_LLM_ROWS = 2000
LLM_SOURCES = frozenset({"OPENAI", "GROK", "LLM"})

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_HS6_RE = re.compile(r"^\d{6}$")
_HS_SEPARATORS_RE = re.compile(r"[\s.\-]")


def _iso2(value: object) -> str:
    iso2 = normalize_iso2(value if isinstance(value, str) else None)
    if iso2 is None:
        raise ValueError(f"invalid ISO2 country code: {value!r}")
    return iso2


def _optional_iso2(value: object) -> Optional[str]:
    if value in (None, ""):
        return None
    return _iso2(value)


def _currency(value: object) -> str:
    code = str(value or "").strip().upper()
    if not _CURRENCY_RE.match(code):
        raise ValueError(f"invalid ISO-4217 currency: {value!r}")
    return code


def _optional_currency(value: object) -> Optional[str]:
    if value in (None, ""):
        return None
    return _currency(value)


def _hs6(value: object) -> str:
    digits = _HS_SEPARATORS_RE.sub("", str(value or ""))
    if not _HS6_RE.match(digits):
        raise ValueError(f"HS6 must be exactly 6 digits: {value!r}")
    return digits


def _lane(value: object) -> str:
    if value in (None, "", "*"):
        return "*"
    return _iso2(value)


Iso2 = Annotated[str, BeforeValidator(_iso2)]
OptionalIso2 = Annotated[Optional[str], BeforeValidator(_optional_iso2)]
Currency = Annotated[str, BeforeValidator(_currency)]
OptionalCurrency = Annotated[Optional[str], BeforeValidator(_optional_currency)]
Hs6 = Annotated[str, BeforeValidator(_hs6)]
Lane = Annotated[str, BeforeValidator(_lane)]


class _RowModel(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    @model_validator(mode="before")
    @classmethod
    def drop_blank_cells(cls, data):
        # CSV readers yield "" for empty cells; treat them as absent
        if isinstance(data, dict):
            return {
                key: value
                for key, value in data.items()
                if not (isinstance(value, str) and not value.strip())
            }
        return data


class _EffectiveWindow(_RowModel):
    effective_from: date
    effective_to: Optional[date] = None
    source_url: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def check_window(self):
        if self.effective_to is not None and self.effective_to <= self.effective_from:
            raise ValueError("effective_to must be after effective_from")
        return self


# ---------------------------------------------------------------------------
# Rate rows
# ---------------------------------------------------------------------------


class DutyRateRow(_EffectiveWindow):
    dest: Iso2 = Field(validation_alias=AliasChoices("dest", "country_code"))
    partner: OptionalIso2 = Field(default=None, validation_alias=AliasChoices("partner", "origin_code"))
    hs6: Hs6
    rule: Literal["MFN", "FTA", "OTHER"] = "MFN"
    rate_pct: Optional[Decimal] = Field(default=None, ge=0)
    specific_amount: Optional[Decimal] = Field(default=None, ge=0)
    specific_unit: Optional[Literal["kg", "unit"]] = None
    specific_currency: OptionalCurrency = None
    agreement: Optional[str] = Field(default=None, max_length=64)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def check_components(self):
        if self.rate_pct is None and self.specific_amount is None:
            raise ValueError("duty row needs rate_pct or specific_amount")
        if self.rule == "FTA" and not self.partner:
            raise ValueError("FTA duty rows require a partner")
        if self.specific_amount is not None and not (self.specific_unit and self.specific_currency):
            raise ValueError("specific duties require specific_unit and specific_currency")
        return self


class VatRuleRow(_EffectiveWindow):
    dest: Iso2 = Field(validation_alias=AliasChoices("dest", "country_code"))
    rate_pct: Decimal = Field(ge=0, le=100)
    base: Literal["CIF", "CIF_PLUS_DUTY"] = "CIF"
    notes: Optional[str] = Field(default=None, max_length=2000)


class DeMinimisRow(_EffectiveWindow):
    dest: Iso2 = Field(validation_alias=AliasChoices("dest", "country_code"))
    currency: Currency
    value: Decimal = Field(ge=0)
    applies_to: Literal["DUTY", "DUTY_VAT", "NONE"] = "DUTY_VAT"
    basis: Literal["INTRINSIC", "CIF"] = "INTRINSIC"


class SurchargeRow(_EffectiveWindow):
    dest: Iso2 = Field(validation_alias=AliasChoices("dest", "country_code"))
    code: Literal["CUSTOMS_PROCESSING", "DISBURSEMENT", "EXCISE", "HANDLING"] = Field(
        validation_alias=AliasChoices("code", "surcharge_code")
    )
    fixed_amount: Optional[Decimal] = Field(default=None, ge=0)
    fixed_currency: OptionalCurrency = Field(
        default=None, validation_alias=AliasChoices("fixed_currency", "currency")
    )
    pct_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def check_amounts(self):
        if self.fixed_amount is None and self.pct_percent is None:
            raise ValueError("surcharge row needs fixed_amount or pct_percent")
        return self


class FxRateRow(_RowModel):
    base: Currency
    quote: Currency
    rate: Decimal = Field(gt=0)
    as_of: date
    provider: str = Field(default="manual", max_length=32)
    source_ref: Optional[str] = Field(default=None, max_length=128)
    source_url: Optional[str] = None

    @model_validator(mode="after")
    def check_pair(self):
        if self.base == self.quote:
            raise ValueError("base and quote currency must differ")
        return self


class FreightStepRow(_RowModel):
    upto_qty: Decimal = Field(gt=0)
    price_per_unit: Decimal = Field(ge=0)


class FreightCardRow(_EffectiveWindow):
    origin: Lane = "*"
    dest: Lane = "*"
    mode: Literal["air", "sea"]
    unit: Optional[Literal["kg", "m3"]] = None
    currency: Currency = "USD"
    min_charge: Optional[Decimal] = Field(default=None, ge=0)
    price_rounding: Optional[Decimal] = Field(default=None, gt=0)
    steps: List[FreightStepRow] = Field(min_length=1)

    @model_validator(mode="after")
    def check_card(self):
        if self.unit is None:
            self.unit = "kg" if self.mode == "air" else "m3"
        ceilings = [step.upto_qty for step in self.steps]
        if len(set(ceilings)) != len(ceilings):
            raise ValueError("freight steps must have distinct upto_qty ceilings")
        self.steps = sorted(self.steps, key=lambda step: step.upto_qty)
        return self


class CategoryRow(_RowModel):
    key: str = Field(min_length=1, max_length=64)
    default_hs6: Hs6
    title: Optional[str] = Field(default=None, max_length=255)
    source_url: Optional[str] = None


# ---------------------------------------------------------------------------
# LLM-extracted variants
# ---------------------------------------------------------------------------


class LlmDeMinimisRow(_EffectiveWindow):
    """One de-minimis fact as extracted by an LLM (one kind per row)."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    country_code: Iso2 = Field(min_length=2, max_length=2)
    kind: Literal["DUTY", "VAT"]
    basis: Literal["INTRINSIC", "CIF"] = "INTRINSIC"
    currency: Currency = Field(min_length=3, max_length=3)
    value: Decimal = Field(ge=0)
    source_url: HttpUrl
    source_note: Optional[str] = Field(default=None, max_length=2000)


class LlmDutyRateRow(DutyRateRow):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    source_url: HttpUrl


class LlmVatRuleRow(VatRuleRow):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    source_url: HttpUrl


class LlmSurchargeRow(SurchargeRow):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    source_url: HttpUrl


ROW_MODELS: Dict[str, Type[BaseModel]] = {
    "duty": DutyRateRow,
    "vat": VatRuleRow,
    "de_minimis": DeMinimisRow,
    "surcharge": SurchargeRow,
    "fx": FxRateRow,
    "freight": FreightCardRow,
    "category": CategoryRow,
}

LLM_ROW_MODELS: Dict[str, Type[BaseModel]] = {
    "duty": LlmDutyRateRow,
    "vat": LlmVatRuleRow,
    "de_minimis": LlmDeMinimisRow,
    "surcharge": LlmSurchargeRow,
}


def is_llm_source(source: str) -> bool:
    return (source or "").upper() in LLM_SOURCES


def row_model_for(entity: str, source: str) -> Type[BaseModel]:
    if is_llm_source(source) and entity in LLM_ROW_MODELS:
        return LLM_ROW_MODELS[entity]
    try:
        return ROW_MODELS[entity]
    except KeyError:
        raise ValueError(f"unknown import entity: {entity!r}") from None
