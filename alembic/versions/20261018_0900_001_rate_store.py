"""Effective-dated rate store and import bookkeeping

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

Creates:
- imports, provenance, import_locks (pipeline bookkeeping)
- duty_rates, vat_rules, de_minimis, surcharges
- freight_cards, freight_steps
- fx_rates, categories
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

import_status_enum = sa.Enum('running', 'succeeded', 'failed', name='import_status_enum')
duty_rule_enum = sa.Enum('MFN', 'FTA', 'OTHER', name='duty_rule_enum')
vat_base_enum = sa.Enum('CIF', 'CIF_PLUS_DUTY', name='vat_base_enum')
de_minimis_applies_enum = sa.Enum('DUTY', 'DUTY_VAT', 'NONE', name='de_minimis_applies_enum')
de_minimis_basis_enum = sa.Enum('INTRINSIC', 'CIF', name='de_minimis_basis_enum')
surcharge_code_enum = sa.Enum(
    'CUSTOMS_PROCESSING', 'DISBURSEMENT', 'EXCISE', 'HANDLING', name='surcharge_code_enum'
)
freight_mode_enum = sa.Enum('air', 'sea', name='freight_mode_enum')
freight_unit_enum = sa.Enum('kg', 'm3', name='freight_unit_enum')

ENUMS = (
    import_status_enum,
    duty_rule_enum,
    vat_base_enum,
    de_minimis_applies_enum,
    de_minimis_basis_enum,
    surcharge_code_enum,
    freight_mode_enum,
    freight_unit_enum,
)


def _effective_dated_columns():
    return [
        sa.Column('effective_from', sa.Date(), nullable=False),
        sa.Column('effective_to', sa.Date(), nullable=True),
        sa.Column('dataset', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('provenance_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['provenance_id'], ['provenance.id'], ondelete='SET NULL'),
    ]


def upgrade() -> None:
    # Import bookkeeping
    op.create_table(
        'imports',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('source', sa.String(length=64), nullable=False),
        sa.Column('job', sa.String(length=128), nullable=False),
        sa.Column('params', sa.JSON(), nullable=True),
        sa.Column('status', import_status_enum, nullable=False),
        sa.Column('inserted_count', sa.Integer(), nullable=False),
        sa.Column('updated_count', sa.Integer(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('heartbeat_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_imports_status_started', 'imports', ['status', 'started_at'])
    op.create_index('idx_imports_job', 'imports', ['job'])

    op.create_table(
        'provenance',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('import_run_id', sa.String(length=128), nullable=False),
        sa.Column('entity', sa.String(length=32), nullable=False),
        sa.Column('natural_key', sa.String(length=255), nullable=False),
        sa.Column('source_url', sa.Text(), nullable=True),
        sa.Column('raw_row_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['import_run_id'], ['imports.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_provenance_import_run_id'), 'provenance', ['import_run_id'])
    op.create_index('idx_provenance_created', 'provenance', ['created_at'])
    op.create_index('idx_provenance_hash', 'provenance', ['raw_row_hash'])

    op.create_table(
        'import_locks',
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('token', sa.String(length=64), nullable=False),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('key'),
    )

    # Rate tables
    op.create_table(
        'duty_rates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('dest', sa.String(length=2), nullable=False),
        sa.Column('partner', sa.String(length=2), nullable=False),
        sa.Column('hs6', sa.String(length=6), nullable=False),
        sa.Column('rule', duty_rule_enum, nullable=False),
        sa.Column('rate_pct', sa.Numeric(precision=9, scale=4), nullable=True),
        sa.Column('specific_amount', sa.Numeric(precision=14, scale=4), nullable=True),
        sa.Column('specific_unit', sa.String(length=8), nullable=True),
        sa.Column('specific_currency', sa.String(length=3), nullable=True),
        sa.Column('agreement', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_effective_dated_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dest', 'partner', 'hs6', 'rule', 'effective_from', name='uq_duty_key_from'),
    )
    op.create_index('idx_duty_dest_hs6', 'duty_rates', ['dest', 'hs6'])

    op.create_table(
        'vat_rules',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('dest', sa.String(length=2), nullable=False),
        sa.Column('rate_pct', sa.Numeric(precision=6, scale=3), nullable=False),
        sa.Column('base', vat_base_enum, nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_effective_dated_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dest', 'effective_from', name='uq_vat_dest_from'),
    )

    op.create_table(
        'de_minimis',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('dest', sa.String(length=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('value', sa.Numeric(precision=14, scale=2), nullable=False),
        sa.Column('applies_to', de_minimis_applies_enum, nullable=False),
        sa.Column('basis', de_minimis_basis_enum, nullable=False),
        *_effective_dated_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dest', 'effective_from', name='uq_de_minimis_dest_from'),
    )

    op.create_table(
        'surcharges',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('dest', sa.String(length=2), nullable=False),
        sa.Column('code', surcharge_code_enum, nullable=False),
        sa.Column('fixed_amount', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('fixed_currency', sa.String(length=3), nullable=True),
        sa.Column('pct_amount', sa.Numeric(precision=12, scale=6), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_effective_dated_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dest', 'code', 'effective_from', name='uq_surcharge_key_from'),
    )
    op.create_index('idx_surcharge_dest', 'surcharges', ['dest'])

    # Freight
    op.create_table(
        'freight_cards',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('origin', sa.String(length=2), nullable=False),
        sa.Column('dest', sa.String(length=2), nullable=False),
        sa.Column('mode', freight_mode_enum, nullable=False),
        sa.Column('unit', freight_unit_enum, nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('min_charge', sa.Numeric(precision=14, scale=2), nullable=True),
        sa.Column('price_rounding', sa.Numeric(precision=10, scale=4), nullable=True),
        *_effective_dated_columns(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('origin', 'dest', 'mode', 'unit', 'effective_from', name='uq_freight_key_from'),
    )
    op.create_index('idx_freight_dest_mode', 'freight_cards', ['dest', 'mode'])

    op.create_table(
        'freight_steps',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('card_id', sa.Integer(), nullable=False),
        sa.Column('upto_qty', sa.Numeric(precision=14, scale=4), nullable=False),
        sa.Column('price_per_unit', sa.Numeric(precision=14, scale=4), nullable=False),
        sa.ForeignKeyConstraint(['card_id'], ['freight_cards.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_freight_steps_card_id'), 'freight_steps', ['card_id'])

    # FX and categories
    op.create_table(
        'fx_rates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('base', sa.String(length=3), nullable=False),
        sa.Column('quote', sa.String(length=3), nullable=False),
        sa.Column('as_of', sa.Date(), nullable=False),
        sa.Column('rate', sa.Numeric(precision=30, scale=18), nullable=False),
        sa.Column('provider', sa.String(length=32), nullable=False),
        sa.Column('source_ref', sa.String(length=128), nullable=True),
        sa.Column('dataset', sa.String(length=128), nullable=True),
        sa.Column('provenance_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['provenance_id'], ['provenance.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('base', 'quote', 'as_of', name='uq_fx_pair_as_of'),
    )
    op.create_index('idx_fx_pair_as_of', 'fx_rates', ['base', 'quote', 'as_of'])

    op.create_table(
        'categories',
        sa.Column('key', sa.String(length=64), nullable=False),
        sa.Column('default_hs6', sa.String(length=6), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('dataset', sa.String(length=128), nullable=True),
        sa.Column('provenance_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['provenance_id'], ['provenance.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('key'),
    )


def downgrade() -> None:
    op.drop_table('categories')
    op.drop_index('idx_fx_pair_as_of', table_name='fx_rates')
    op.drop_table('fx_rates')

    op.drop_index(op.f('ix_freight_steps_card_id'), table_name='freight_steps')
    op.drop_table('freight_steps')
    op.drop_index('idx_freight_dest_mode', table_name='freight_cards')
    op.drop_table('freight_cards')

    op.drop_index('idx_surcharge_dest', table_name='surcharges')
    op.drop_table('surcharges')
    op.drop_table('de_minimis')
    op.drop_table('vat_rules')
    op.drop_index('idx_duty_dest_hs6', table_name='duty_rates')
    op.drop_table('duty_rates')

    op.drop_table('import_locks')
    op.drop_index('idx_provenance_hash', table_name='provenance')
    op.drop_index('idx_provenance_created', table_name='provenance')
    op.drop_index(op.f('ix_provenance_import_run_id'), table_name='provenance')
    op.drop_table('provenance')
    op.drop_index('idx_imports_job', table_name='imports')
    op.drop_index('idx_imports_status_started', table_name='imports')
    op.drop_table('imports')

    # Drop ENUM types (no-op on backends without named types)
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.drop(bind, checkfirst=True)
