"""Price intelligence schema

Revision ID: 0001_price_intel_schema
Revises:
Create Date: 2026-10-12

This migration creates:
1. suppliers with embedded scrape health columns
2. price_observations with the one-valid-row-per-supplier partial index
3. zip/county current and weekly stats tables
4. zip_to_county reference table
5. pipeline_runs ledger
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '0001_price_intel_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'suppliers',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('website', sa.String(500), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('postal_codes_served', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('scrape_status', sa.String(20), nullable=False, server_default='active', comment='active | cooldown | disabled'),
        sa.Column('consecutive_scrape_failures', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_scrape_failure_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('scrape_cooldown_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_suppliers_active', 'suppliers', ['active'])
    op.create_index('ix_suppliers_scrape_status', 'suppliers', ['scrape_status'])

    op.create_table(
        'price_observations',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('supplier_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('suppliers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('price_per_unit', sa.Numeric(5, 3), nullable=False),
        sa.Column('min_quantity', sa.Integer(), nullable=False, server_default='150'),
        sa.Column('fuel_type', sa.String(20), nullable=False, server_default='heating_oil'),
        sa.Column('source_type', sa.String(30), nullable=False),
        sa.Column('source_url', sa.String(500), nullable=True),
        sa.Column('observed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_valid', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('superseded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint('expires_at > observed_at', name='ck_price_observations_expiry_after_observed'),
    )
    op.create_index('ix_price_observations_supplier_id', 'price_observations', ['supplier_id'])
    op.create_index('ix_price_observations_source_type', 'price_observations', ['source_type'])
    op.create_index('ix_price_observations_observed_at', 'price_observations', ['observed_at'])
    op.create_index('ix_price_observations_expires_at', 'price_observations', ['expires_at'])
    op.create_index('ix_price_observations_is_valid', 'price_observations', ['is_valid'])
    op.create_index('ix_price_observations_fuel_valid_expiry', 'price_observations', ['fuel_type', 'is_valid', 'expires_at'])
    op.create_index(
        'uq_price_observations_one_valid',
        'price_observations',
        ['supplier_id', 'fuel_type'],
        unique=True,
        postgresql_where=sa.text("is_valid AND source_type <> 'aggregator_signal'"),
    )
    op.create_index(
        'uq_price_observations_one_valid_signal',
        'price_observations',
        ['supplier_id', 'fuel_type'],
        unique=True,
        postgresql_where=sa.text("is_valid AND source_type = 'aggregator_signal'"),
    )

    op.create_table(
        'zip_current_stats',
        sa.Column('zip_prefix', sa.String(3), primary_key=True),
        sa.Column('fuel_type', sa.String(20), primary_key=True),
        sa.Column('region_name', sa.String(100), nullable=True),
        sa.Column('cities', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('median_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('min_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('max_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('supplier_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('data_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('weeks_available', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('percent_change_6w', sa.Numeric(6, 2), nullable=True),
        sa.Column('first_week_price', sa.Numeric(5, 3), nullable=True),
        sa.Column('latest_week_price', sa.Numeric(5, 3), nullable=True),
        sa.Column('data_quality_score', sa.Numeric(3, 2), nullable=False),
        sa.Column('last_scrape_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'zip_weekly_stats',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('zip_prefix', sa.String(3), nullable=False),
        sa.Column('fuel_type', sa.String(20), nullable=False),
        sa.Column('week_start', sa.Date(), nullable=False),
        sa.Column('median_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('min_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('max_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('supplier_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('data_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('zip_prefix', 'fuel_type', 'week_start', name='uq_zip_weekly_stats_key'),
    )
    op.create_index('ix_zip_weekly_stats_prefix_fuel_week', 'zip_weekly_stats', ['zip_prefix', 'fuel_type', 'week_start'])

    op.create_table(
        'county_current_stats',
        sa.Column('county_name', sa.String(100), primary_key=True),
        sa.Column('state_code', sa.String(2), primary_key=True),
        sa.Column('fuel_type', sa.String(20), primary_key=True),
        sa.Column('median_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('min_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('max_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('avg_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('supplier_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('data_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('zip_prefixes', postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('zip_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('weeks_available', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('percent_change_6w', sa.Numeric(6, 2), nullable=True),
        sa.Column('first_week_price', sa.Numeric(5, 3), nullable=True),
        sa.Column('latest_week_price', sa.Numeric(5, 3), nullable=True),
        sa.Column('data_quality_score', sa.Numeric(3, 2), nullable=False),
        sa.Column('last_scrape_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        'county_weekly_stats',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('county_name', sa.String(100), nullable=False),
        sa.Column('state_code', sa.String(2), nullable=False),
        sa.Column('fuel_type', sa.String(20), nullable=False),
        sa.Column('week_start', sa.Date(), nullable=False),
        sa.Column('median_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('min_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('max_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('avg_price', sa.Numeric(5, 3), nullable=False),
        sa.Column('supplier_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('data_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('zip_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('computed_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('county_name', 'state_code', 'fuel_type', 'week_start', name='uq_county_weekly_stats_key'),
    )
    op.create_index(
        'ix_county_weekly_stats_county_fuel_week',
        'county_weekly_stats',
        ['county_name', 'state_code', 'fuel_type', 'week_start'],
    )

    op.create_table(
        'zip_to_county',
        sa.Column('zip_code', sa.String(5), primary_key=True),
        sa.Column('county_name', sa.String(100), nullable=False),
        sa.Column('state_code', sa.String(2), nullable=False),
        sa.Column('city', sa.String(100), nullable=True),
    )
    op.create_index('ix_zip_to_county_state_code', 'zip_to_county', ['state_code'])
    op.create_index('ix_zip_to_county_county', 'zip_to_county', ['county_name', 'state_code'])

    op.create_table(
        'pipeline_runs',
        sa.Column('run_id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('job_name', sa.String(50), nullable=False),
        sa.Column('fuel_type', sa.String(20), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, comment='running | success | partial | failure'),
        sa.Column('updated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skipped', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.String(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_pipeline_runs_job_name', 'pipeline_runs', ['job_name'])
    op.create_index('ix_pipeline_runs_started_at', 'pipeline_runs', ['started_at'])


def downgrade() -> None:
    op.drop_index('ix_pipeline_runs_started_at', 'pipeline_runs')
    op.drop_index('ix_pipeline_runs_job_name', 'pipeline_runs')
    op.drop_table('pipeline_runs')

    op.drop_index('ix_zip_to_county_county', 'zip_to_county')
    op.drop_index('ix_zip_to_county_state_code', 'zip_to_county')
    op.drop_table('zip_to_county')

    op.drop_index('ix_county_weekly_stats_county_fuel_week', 'county_weekly_stats')
    op.drop_table('county_weekly_stats')
    op.drop_table('county_current_stats')

    op.drop_index('ix_zip_weekly_stats_prefix_fuel_week', 'zip_weekly_stats')
    op.drop_table('zip_weekly_stats')
    op.drop_table('zip_current_stats')

    op.drop_index('uq_price_observations_one_valid_signal', 'price_observations')
    op.drop_index('uq_price_observations_one_valid', 'price_observations')
    op.drop_index('ix_price_observations_fuel_valid_expiry', 'price_observations')
    op.drop_index('ix_price_observations_is_valid', 'price_observations')
    op.drop_index('ix_price_observations_expires_at', 'price_observations')
    op.drop_index('ix_price_observations_observed_at', 'price_observations')
    op.drop_index('ix_price_observations_source_type', 'price_observations')
    op.drop_index('ix_price_observations_supplier_id', 'price_observations')
    op.drop_table('price_observations')

    op.drop_index('ix_suppliers_scrape_status', 'suppliers')
    op.drop_index('ix_suppliers_active', 'suppliers')
    op.drop_table('suppliers')
