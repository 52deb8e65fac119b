# alembic/versions/001_initial.py

"""Initial NAV schema

Revision ID: 001
Revises: 
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

NAV_RECORD_STATUS = sa.Enum('PRELIMINARY', 'APPROVED', 'PUBLISHED', 'CORRECTED', name='nav_record_status')
CALCULATION_STATUS = sa.Enum('VALID', 'WARNINGS', 'ERRORS', name='calculation_status')
APPROVAL_STATUS = sa.Enum('PENDING_FIRST', 'PENDING_SECOND', 'APPROVED', 'REJECTED', name='approval_status')
NAV_RUN_STATUS = sa.Enum('PENDING', 'IN_PROGRESS', 'AWAITING_APPROVAL', 'FAILED', name='nav_run_status')


def upgrade():
    # Create nav_record table
    op.create_table('nav_record',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('fund_id', sa.String(length=64), nullable=False),
        sa.Column('share_class_id', sa.String(length=64), nullable=False),
        sa.Column('nav_date', sa.Date(), nullable=False),
        sa.Column('nav_per_share', sa.Numeric(precision=24, scale=10), nullable=False),
        sa.Column('net_asset_value', sa.Numeric(precision=24, scale=6), nullable=False),
        sa.Column('gross_assets', sa.Numeric(precision=24, scale=6), nullable=False),
        sa.Column('total_liabilities', sa.Numeric(precision=24, scale=6), nullable=False),
        sa.Column('shares_outstanding', sa.Numeric(precision=24, scale=6), nullable=False),
        sa.Column('nav_change', sa.Numeric(precision=24, scale=10), nullable=False),
        sa.Column('nav_change_percent', sa.Numeric(precision=14, scale=6), nullable=False),
        sa.Column('calculation_status', CALCULATION_STATUS, nullable=False),
        sa.Column('status', NAV_RECORD_STATUS, nullable=False),
        sa.Column('breakdown', sa.JSON(), nullable=False),
        sa.Column('validation', sa.JSON(), nullable=False),
        sa.Column('calculated_at', sa.DateTime(), nullable=False),
        sa.Column('approval_id', sa.String(length=36), nullable=True),
        sa.Column('approved_by', sa.JSON(), nullable=False),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('fund_id', 'share_class_id', 'nav_date', name='uq_nav_record_key'),
    )
    op.create_index('ix_nav_record_fund_date', 'nav_record', ['fund_id', 'share_class_id', 'nav_date'])
    op.create_index('ix_nav_record_status', 'nav_record', ['status'])

    # Create nav_record_history table (insert-only)
    op.create_table('nav_record_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('nav_record_id', sa.Integer(), nullable=False),
        sa.Column('fund_id', sa.String(length=64), nullable=False),
        sa.Column('share_class_id', sa.String(length=64), nullable=False),
        sa.Column('nav_date', sa.Date(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('previous_status', postgresql.ENUM('PRELIMINARY', 'APPROVED', 'PUBLISHED', 'CORRECTED', name='nav_record_status', create_type=False), nullable=False),
        sa.Column('new_status', postgresql.ENUM('PRELIMINARY', 'APPROVED', 'PUBLISHED', 'CORRECTED', name='nav_record_status', create_type=False), nullable=False),
        sa.Column('nav_per_share', sa.Numeric(precision=24, scale=10), nullable=False),
        sa.Column('net_asset_value', sa.Numeric(precision=24, scale=6), nullable=False),
        sa.Column('snapshot', sa.JSON(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('changed_by', sa.String(length=100), nullable=True),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['nav_record_id'], ['nav_record.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_nav_record_history_record', 'nav_record_history', ['nav_record_id', 'version'])

    # Create nav_approval table
    op.create_table('nav_approval',
        sa.Column('approval_id', sa.String(length=36), nullable=False),
        sa.Column('run_id', sa.String(length=36), nullable=False),
        sa.Column('nav_date', sa.Date(), nullable=False),
        sa.Column('status', APPROVAL_STATUS, nullable=False),
        sa.Column('covered', sa.JSON(), nullable=False),
        sa.Column('summary', sa.JSON(), nullable=False),
        sa.Column('first_approval', sa.JSON(), nullable=True),
        sa.Column('second_approval', sa.JSON(), nullable=True),
        sa.Column('rejection', sa.JSON(), nullable=True),
        sa.Column('published', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('approval_id'),
    )
    op.create_index('ix_nav_approval_run_id', 'nav_approval', ['run_id'])
    op.create_index('ix_nav_approval_nav_date', 'nav_approval', ['nav_date'])
    op.create_index('ix_nav_approval_status', 'nav_approval', ['status'])

    # Create nav_run table
    op.create_table('nav_run',
        sa.Column('run_id', sa.String(length=36), nullable=False),
        sa.Column('nav_date', sa.Date(), nullable=False),
        sa.Column('status', NAV_RUN_STATUS, nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('total_funds', sa.Integer(), nullable=False),
        sa.Column('completed_funds', sa.Integer(), nullable=False),
        sa.Column('failed_funds', sa.Integer(), nullable=False),
        sa.Column('summary', sa.JSON(), nullable=False),
        sa.Column('errors', sa.JSON(), nullable=False),
        sa.Column('triggered_by', sa.String(length=50), nullable=False),
        sa.Column('attempt', sa.Integer(), nullable=False),
        sa.Column('auto_approve_eligible', sa.Boolean(), nullable=True),
        sa.Column('approval_id', sa.String(length=36), nullable=True),
        sa.PrimaryKeyConstraint('run_id'),
    )
    op.create_index('ix_nav_run_nav_date', 'nav_run', ['nav_date'])
    op.create_index('ix_nav_run_date_started', 'nav_run', ['nav_date', 'started_at'])

    # Create fund_config table
    op.create_table('fund_config',
        sa.Column('fund_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column('config', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('fund_id'),
    )


def downgrade():
    op.drop_table('fund_config')
    op.drop_index('ix_nav_run_date_started', table_name='nav_run')
    op.drop_index('ix_nav_run_nav_date', table_name='nav_run')
    op.drop_table('nav_run')
    op.drop_index('ix_nav_approval_status', table_name='nav_approval')
    op.drop_index('ix_nav_approval_nav_date', table_name='nav_approval')
    op.drop_index('ix_nav_approval_run_id', table_name='nav_approval')
    op.drop_table('nav_approval')
    op.drop_index('ix_nav_record_history_record', table_name='nav_record_history')
    op.drop_table('nav_record_history')
    op.drop_index('ix_nav_record_status', table_name='nav_record')
    op.drop_index('ix_nav_record_fund_date', table_name='nav_record')
    op.drop_table('nav_record')

    bind = op.get_bind()
    for enum in (NAV_RUN_STATUS, APPROVAL_STATUS, NAV_RECORD_STATUS, CALCULATION_STATUS):
        enum.drop(bind, checkfirst=True)
