"""Request schema for landed-cost quotes."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FreightMode(str, Enum):
    AIR = "air"
    SEA = "sea"


class Money(BaseModel):
    """An amount in an ISO-4217 currency."""

    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., pattern=r"^[A-Z]{3}$")

    model_config = ConfigDict(extra="forbid")

    @field_validator("currency", mode="before")
    @classmethod
    def _upper_currency(cls, value):
        return value.strip().upper() if isinstance(value, str) else value


class Dims(BaseModel):
    """Package dimensions in centimetres."""

    l: Decimal = Field(..., gt=0)  # noqa: E741
    w: Decimal = Field(..., gt=0)
    h: Decimal = Field(..., gt=0)

    model_config = ConfigDict(extra="forbid")

    def as_tuple(self):
        return self.l, self.w, self.h


class QuoteInput(BaseModel):
    """A single-parcel shipment to price.

    ``origin`` and ``dest`` are checked against the country table when the
    quote is computed, so an unknown code surfaces as ``UnknownEntity``
    rather than a validation error.
    """

    origin: str = Field(..., min_length=2, max_length=2)
    dest: str = Field(..., min_length=2, max_length=2)
    item_value: Money
    dims_cm: Dims
    weight_kg: Decimal = Field(..., ge=0)
    category_key: str = Field(..., min_length=1)
    user_hs6: Optional[str] = Field(default=None, description="Explicit HS6; overrides the category default.")
    mode: FreightMode = FreightMode.AIR

    model_config = ConfigDict(extra="forbid")

    @field_validator("origin", "dest", mode="before")
    @classmethod
    def _upper_country(cls, value):
        return value.strip().upper() if isinstance(value, str) else value
