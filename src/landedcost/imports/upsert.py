"""Effective-dated upsert with supersession.

Rows are never deleted.  A new record for a natural key closes the
``effective_to`` of any earlier overlapping record at its own
``effective_from``; a backfilled record that starts before an existing one
is clamped to end where the existing one starts.  The result is an
append-only log per natural key in which at most one window covers any day.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Optional, Tuple, Type

from sqlalchemy.orm import Session

from landedcost.db.models import (
    Category,
    DeMinimisThreshold,
    DutyRate,
    FreightCard,
    FreightStep,
    FxRate,
    Surcharge,
    VatRule,
)
from landedcost.imports.normalize import CanonicalRecord
from landedcost.money import windows_overlap

logger = logging.getLogger(__name__)

INSERTED = "inserted"
UPDATED = "updated"
UNCHANGED = "unchanged"


@dataclass(frozen=True)
class EntitySpec:
    model: Type[Any]
    key_columns: Tuple[str, ...]
    dated: bool = True


ENTITY_SPECS: Dict[str, EntitySpec] = {
    "duty": EntitySpec(DutyRate, ("dest", "partner", "hs6", "rule")),
    "vat": EntitySpec(VatRule, ("dest",)),
    "de_minimis": EntitySpec(DeMinimisThreshold, ("dest",)),
    "surcharge": EntitySpec(Surcharge, ("dest", "code")),
    "freight": EntitySpec(FreightCard, ("origin", "dest", "mode", "unit")),
    "fx": EntitySpec(FxRate, ("base", "quote", "as_of"), dated=False),
    "category": EntitySpec(Category, ("key",), dated=False),
}


@dataclass(frozen=True)
class UpsertOutcome:
    action: str
    superseded: int = 0


class RecordWriter:
    """Applies canonical records to the store inside the caller's session.

    Records must be applied in source order so supersession chains build
    correctly within one import.  Every change is flushed so the next record
    for the same key sees it.
    """

    def __init__(self, session: Session, *, dataset: str):
        self.session = session
        self.dataset = dataset

    def apply(self, record: CanonicalRecord, provenance_id: Optional[int] = None) -> UpsertOutcome:
        spec = ENTITY_SPECS[record.entity]
        if spec.dated:
            outcome = self._apply_dated(spec, record, provenance_id)
        else:
            outcome = self._apply_snapshot(spec, record, provenance_id)
        self.session.flush()
        return outcome

    # ------------------------------------------------------------------
    # Effective-dated entities
    # ------------------------------------------------------------------

    def _apply_dated(self, spec: EntitySpec, record: CanonicalRecord, provenance_id: Optional[int]) -> UpsertOutcome:
        model = spec.model
        existing = (
            self.session.query(model)
            .filter(*[getattr(model, column) == value for column, value in zip(spec.key_columns, record.key)])
            .order_by(model.effective_from)
            .all()
        )

        same_start = next((row for row in existing if row.effective_from == record.effective_from), None)
        if same_start is not None:
            effective_to = _clamp_to_next(existing, same_start.effective_from, record.effective_to)
            if effective_to == same_start.effective_to and _payload_equal(same_start, record.payload):
                return UpsertOutcome(UNCHANGED)
            _assign_payload(same_start, record.payload)
            same_start.effective_to = effective_to
            same_start.dataset = self.dataset
            if provenance_id is not None:
                same_start.provenance_id = provenance_id
            return UpsertOutcome(UPDATED)

        effective_to = record.effective_to
        superseded = 0
        for row in existing:
            if not windows_overlap(row.effective_from, row.effective_to, record.effective_from, effective_to):
                continue
            if row.effective_from < record.effective_from:
                row.effective_to = record.effective_from
                superseded += 1
            else:
                # Backfill: the older record ends where the newer one begins.
                effective_to = row.effective_from

        instance = model(
            **dict(zip(spec.key_columns, record.key)),
            effective_from=record.effective_from,
            effective_to=effective_to,
            dataset=self.dataset,
            provenance_id=provenance_id,
        )
        _assign_payload(instance, record.payload)
        self.session.add(instance)
        if superseded:
            logger.debug("Superseded %d %s record(s) for %s", superseded, record.entity, record.key_text)
        return UpsertOutcome(INSERTED, superseded=superseded)

    # ------------------------------------------------------------------
    # Snapshot entities (fx, category)
    # ------------------------------------------------------------------

    def _apply_snapshot(self, spec: EntitySpec, record: CanonicalRecord, provenance_id: Optional[int]) -> UpsertOutcome:
        model = spec.model
        existing = (
            self.session.query(model)
            .filter(*[getattr(model, column) == value for column, value in zip(spec.key_columns, record.key)])
            .one_or_none()
        )
        if existing is None:
            instance = model(
                **dict(zip(spec.key_columns, record.key)),
                dataset=self.dataset,
                provenance_id=provenance_id,
            )
            _assign_payload(instance, record.payload)
            self.session.add(instance)
            return UpsertOutcome(INSERTED)
        if _payload_equal(existing, record.payload):
            return UpsertOutcome(UNCHANGED)
        _assign_payload(existing, record.payload)
        existing.dataset = self.dataset
        if provenance_id is not None:
            existing.provenance_id = provenance_id
        return UpsertOutcome(UPDATED)


def _clamp_to_next(existing, start: date, effective_to: Optional[date]) -> Optional[date]:
    """Keep an in-place update from running into the next record's window."""
    later = [row.effective_from for row in existing if row.effective_from > start]
    if not later:
        return effective_to
    next_start = min(later)
    if effective_to is None or effective_to > next_start:
        return next_start
    return effective_to


def _payload_equal(row: Any, payload: Dict[str, Any]) -> bool:
    for column, value in payload.items():
        if column == "steps":
            current = tuple((step.upto_qty, step.price_per_unit) for step in row.steps)
            if current != value:
                return False
        elif getattr(row, column) != value:
            return False
    return True


def _assign_payload(row: Any, payload: Dict[str, Any]) -> None:
    for column, value in payload.items():
        if column == "steps":
            row.steps = [FreightStep(upto_qty=upto, price_per_unit=price) for upto, price in value]
        else:
            setattr(row, column, value)
