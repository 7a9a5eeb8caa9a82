"""Renewal tracking tables

Revision ID: 0001_renewal_tables
Revises:
Create Date: 2026-10-19

Creates:
- renewal_uploads (one row per ingested report)
- renewal_records (unique per agency, policy number and effective date)
- renewal_activities
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_renewal_tables'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # renewal_uploads
    # ==========================================================================
    op.create_table(
        'renewal_uploads',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('agency_id', sa.Uuid(), nullable=False),
        sa.Column('filename', sa.String(255), nullable=False),
        sa.Column('uploaded_by_display_name', sa.String(255), nullable=True),
        sa.Column('record_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('date_range_start', sa.Date(), nullable=True),
        sa.Column('date_range_end', sa.Date(), nullable=True),
        sa.Column('new_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('updated_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('dropped_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('error_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('auto_promoted_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_renewal_uploads_agency_created', 'renewal_uploads', ['agency_id', 'created_at'])

    # ==========================================================================
    # renewal_records
    # ==========================================================================
    op.create_table(
        'renewal_records',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('agency_id', sa.Uuid(), nullable=False),
        sa.Column('policy_number', sa.String(100), nullable=False),
        sa.Column('renewal_effective_date', sa.Date(), nullable=False),

        # Customer
        sa.Column('first_name', sa.String(255), nullable=True),
        sa.Column('last_name', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('phone_alt', sa.String(50), nullable=True),
        sa.Column('zip_code', sa.String(20), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(50), nullable=True),
        sa.Column('household_key', sa.String(255), nullable=True),

        # Policy
        sa.Column('product_name', sa.String(255), nullable=True),
        sa.Column('product_code', sa.String(50), nullable=True),
        sa.Column('original_year', sa.Integer(), nullable=True),
        sa.Column('agent_number', sa.String(50), nullable=True),
        sa.Column('account_type', sa.String(50), nullable=True),
        sa.Column('carrier_status', sa.String(100), nullable=True),
        sa.Column('renewal_status', sa.String(50), nullable=True),
        sa.Column('premium_old', sa.Numeric(12, 2), nullable=True),
        sa.Column('premium_new', sa.Numeric(12, 2), nullable=True),
        sa.Column('premium_change_dollars', sa.Numeric(12, 2), nullable=True),
        sa.Column('premium_change_percent', sa.Numeric(12, 2), nullable=True),
        sa.Column('amount_due', sa.Numeric(12, 2), nullable=True),
        sa.Column('easy_pay', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('multi_line_indicator', sa.String(10), server_default=sa.text("'n/a'"), nullable=False),
        sa.Column('item_count', sa.Integer(), nullable=True),
        sa.Column('years_prior_insurance', sa.Integer(), nullable=True),

        # Workflow
        sa.Column('current_status', sa.String(20), server_default=sa.text("'uncontacted'"), nullable=False),
        sa.Column('is_priority', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('assigned_team_member_id', sa.Uuid(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('auto_resolved_reason', sa.String(50), nullable=True),

        # Lineage
        sa.Column('upload_id', sa.Uuid(), nullable=True),
        sa.Column('last_upload_id', sa.Uuid(), nullable=True),
        sa.Column('dropped_from_report_at', sa.DateTime(timezone=True), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['upload_id'], ['renewal_uploads.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['last_upload_id'], ['renewal_uploads.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'agency_id', 'policy_number', 'renewal_effective_date',
            name='uq_renewal_record_policy_effective',
        ),
    )
    op.create_index('idx_renewal_records_agency_effective', 'renewal_records', ['agency_id', 'renewal_effective_date'])
    op.create_index('idx_renewal_records_agency_status', 'renewal_records', ['agency_id', 'current_status'])
    op.create_index('idx_renewal_records_agency_dropped', 'renewal_records', ['agency_id', 'dropped_from_report_at'])

    # ==========================================================================
    # renewal_activities
    # ==========================================================================
    op.create_table(
        'renewal_activities',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('renewal_record_id', sa.Uuid(), nullable=False),
        sa.Column('agency_id', sa.Uuid(), nullable=False),
        sa.Column('activity_type', sa.String(30), nullable=False),
        sa.Column('subject', sa.String(255), nullable=True),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('created_by_display_name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['renewal_record_id'], ['renewal_records.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_renewal_activities_record', 'renewal_activities', ['renewal_record_id', 'created_at'])


def downgrade() -> None:
    op.drop_index('idx_renewal_activities_record', table_name='renewal_activities')
    op.drop_table('renewal_activities')

    op.drop_index('idx_renewal_records_agency_dropped', table_name='renewal_records')
    op.drop_index('idx_renewal_records_agency_status', table_name='renewal_records')
    op.drop_index('idx_renewal_records_agency_effective', table_name='renewal_records')
    op.drop_table('renewal_records')

    op.drop_index('idx_renewal_uploads_agency_created', table_name='renewal_uploads')
    op.drop_table('renewal_uploads')
