"""SQLAlchemy models for the effective-dated rate store.

Every rate-like table shares the effective-dated record shape:
natural key columns, ``effective_from``/``effective_to`` (half-open,
``None`` = open-ended), the dataset label of the import that wrote it and
a link to the provenance row of the source record.

Tables:
- duty_rates, vat_rules, de_minimis, surcharges (effective-dated)
- freight_cards + freight_steps (effective-dated card, ordered tiers)
- fx_rates (snapshot log keyed by as_of)
- categories (category key -> default HS6)
- imports, provenance, import_locks (pipeline bookkeeping)
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, declared_attr, relationship

from landedcost.money import to_significant_string, utcnow

Base = declarative_base()


class EffectiveDatedMixin:
    """Columns shared by every effective-dated rate table."""

    effective_from = Column(Date, nullable=False)
    effective_to = Column(Date, nullable=True)  # exclusive; None = open-ended
    dataset = Column(String(128), nullable=True)  # "{source}:{job}"
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, onupdate=utcnow, nullable=True)

    @declared_attr
    def provenance_id(cls):
        return Column(
            Integer,
            ForeignKey("provenance.id", ondelete="SET NULL"),
            nullable=True,
        )


class DutyRate(EffectiveDatedMixin, Base):
    """Duty rate for a destination/HS6, MFN or preferential.

    ``partner`` is the empty string for MFN rows and the origin ISO2 for
    FTA rows so the natural key stays NOT NULL.
    """

    __tablename__ = "duty_rates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dest = Column(String(2), nullable=False)
    partner = Column(String(2), nullable=False, default="")
    hs6 = Column(String(6), nullable=False)
    rule = Column(Enum("MFN", "FTA", "OTHER", name="duty_rule_enum"), nullable=False)

    rate_pct = Column(Numeric(9, 4), nullable=True)  # ad valorem percent
    specific_amount = Column(Numeric(14, 4), nullable=True)
    specific_unit = Column(String(8), nullable=True)  # kg | unit
    specific_currency = Column(String(3), nullable=True)
    agreement = Column(String(64), nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("dest", "partner", "hs6", "rule", "effective_from", name="uq_duty_key_from"),
        Index("idx_duty_dest_hs6", "dest", "hs6"),
    )


class VatRule(EffectiveDatedMixin, Base):
    __tablename__ = "vat_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dest = Column(String(2), nullable=False)
    rate_pct = Column(Numeric(6, 3), nullable=False)
    base = Column(Enum("CIF", "CIF_PLUS_DUTY", name="vat_base_enum"), nullable=False, default="CIF")
    notes = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("dest", "effective_from", name="uq_vat_dest_from"),
    )


class DeMinimisThreshold(EffectiveDatedMixin, Base):
    __tablename__ = "de_minimis"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dest = Column(String(2), nullable=False)
    currency = Column(String(3), nullable=False)
    value = Column(Numeric(14, 2), nullable=False)
    applies_to = Column(
        Enum("DUTY", "DUTY_VAT", "NONE", name="de_minimis_applies_enum"),
        nullable=False,
        default="DUTY_VAT",
    )
    basis = Column(Enum("INTRINSIC", "CIF", name="de_minimis_basis_enum"), nullable=False, default="INTRINSIC")

    __table_args__ = (
        UniqueConstraint("dest", "effective_from", name="uq_de_minimis_dest_from"),
    )


class Surcharge(EffectiveDatedMixin, Base):
    """Additive fee for a destination; several may be active at once."""

    __tablename__ = "surcharges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dest = Column(String(2), nullable=False)
    code = Column(
        Enum("CUSTOMS_PROCESSING", "DISBURSEMENT", "EXCISE", "HANDLING", name="surcharge_code_enum"),
        nullable=False,
    )
    fixed_amount = Column(Numeric(14, 2), nullable=True)
    fixed_currency = Column(String(3), nullable=True)
    pct_amount = Column(Numeric(12, 6), nullable=True)  # fraction of CIF, not percent
    notes = Column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("dest", "code", "effective_from", name="uq_surcharge_key_from"),
        Index("idx_surcharge_dest", "dest"),
    )


class FreightCard(EffectiveDatedMixin, Base):
    """Tiered freight price card for a lane and mode; ``*`` is the wildcard lane."""

    __tablename__ = "freight_cards"

    id = Column(Integer, primary_key=True, autoincrement=True)
    origin = Column(String(2), nullable=False, default="*")
    dest = Column(String(2), nullable=False, default="*")
    mode = Column(Enum("air", "sea", name="freight_mode_enum"), nullable=False)
    unit = Column(Enum("kg", "m3", name="freight_unit_enum"), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    min_charge = Column(Numeric(14, 2), nullable=True)
    price_rounding = Column(Numeric(10, 4), nullable=True)

    steps = relationship(
        "FreightStep",
        back_populates="card",
        cascade="all, delete-orphan",
        order_by="FreightStep.upto_qty",
    )

    __table_args__ = (
        UniqueConstraint("origin", "dest", "mode", "unit", "effective_from", name="uq_freight_key_from"),
        Index("idx_freight_dest_mode", "dest", "mode"),
    )


class FreightStep(Base):
    __tablename__ = "freight_steps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    card_id = Column(Integer, ForeignKey("freight_cards.id", ondelete="CASCADE"), nullable=False, index=True)
    upto_qty = Column(Numeric(14, 4), nullable=False)
    price_per_unit = Column(Numeric(14, 4), nullable=False)

    card = relationship("FreightCard", back_populates="steps")


class FxRateNumeric(TypeDecorator):
    """Wide numeric column read back at FX significant-figure precision.

    Drivers without native decimals hand back floats, so the trailing digits
    past the stored precision are noise and are dropped on load.
    """

    impl = Numeric(30, 18)
    cache_ok = True

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(to_significant_string(value))


class FxRate(Base):
    """Exchange rate snapshot: 1 ``base`` = ``rate`` ``quote`` on ``as_of``."""

    __tablename__ = "fx_rates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    base = Column(String(3), nullable=False)
    quote = Column(String(3), nullable=False)
    as_of = Column(Date, nullable=False)
    rate = Column(FxRateNumeric(), nullable=False)
    provider = Column(String(32), nullable=False, default="ecb")
    source_ref = Column(String(128), nullable=True)
    dataset = Column(String(128), nullable=True)
    provenance_id = Column(Integer, ForeignKey("provenance.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, onupdate=utcnow, nullable=True)

    __table_args__ = (
        UniqueConstraint("base", "quote", "as_of", name="uq_fx_pair_as_of"),
        Index("idx_fx_pair_as_of", "base", "quote", "as_of"),
    )


class Category(Base):
    """Product category with its default HS6 classification."""

    __tablename__ = "categories"

    key = Column(String(64), primary_key=True)
    default_hs6 = Column(String(6), nullable=False)
    title = Column(String(255), nullable=True)
    dataset = Column(String(128), nullable=True)
    provenance_id = Column(Integer, ForeignKey("provenance.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, onupdate=utcnow, nullable=True)


# ---------------------------------------------------------------------------
# Import bookkeeping
# ---------------------------------------------------------------------------


class ImportRun(Base):
    """One ingestion attempt.

    Created ``running`` once normalization yields rows, heartbeated per
    committed batch, finished ``succeeded``/``failed``; the stale sweeper
    force-fails runs whose heartbeat stopped.
    """

    __tablename__ = "imports"

    id = Column(String(128), primary_key=True)
    source = Column(String(64), nullable=False)
    job = Column(String(128), nullable=False)
    params = Column(JSON, default=dict)
    status = Column(
        Enum("running", "succeeded", "failed", name="import_status_enum"),
        nullable=False,
        default="running",
    )
    inserted_count = Column(Integer, nullable=False, default=0)
    updated_count = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=False, default=utcnow)
    heartbeat_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    provenance = relationship(
        "ProvenanceRecord",
        back_populates="import_run",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_imports_status_started", "status", "started_at"),
        Index("idx_imports_job", "job"),
    )


class ProvenanceRecord(Base):
    """Audit link from one accepted source row to the run that ingested it."""

    __tablename__ = "provenance"

    id = Column(Integer, primary_key=True, autoincrement=True)
    import_run_id = Column(String(128), ForeignKey("imports.id", ondelete="CASCADE"), nullable=False, index=True)
    entity = Column(String(32), nullable=False)
    natural_key = Column(String(255), nullable=False)
    source_url = Column(Text, nullable=True)
    raw_row_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    import_run = relationship("ImportRun", back_populates="provenance")

    __table_args__ = (
        Index("idx_provenance_created", "created_at"),
        Index("idx_provenance_hash", "raw_row_hash"),
    )


class ImportLock(Base):
    """Named lease held by the database lock backend."""

    __tablename__ = "import_locks"

    key = Column(String(255), primary_key=True)
    token = Column(String(64), nullable=False)
    acquired_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
