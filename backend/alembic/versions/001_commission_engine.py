"""Create commission engine tables

Revision ID: 001_commission_engine
Revises: None
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = '001_commission_engine'
down_revision = None
branch_labels = None
depends_on = None

LIVE_SOURCE_WHERE = "status <> 'cancelled' AND deleted_at IS NULL"


def upgrade():
    op.create_table(
        'employees',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('employee_number', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False, server_default='sales'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_employees_email', 'employees', ['email'], unique=True)
    op.create_index('ix_employees_employee_number', 'employees', ['employee_number'], unique=True)

    op.create_table(
        'commission_rules',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('employee_id', sa.String(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('basis', sa.String(), nullable=False, server_default='revenue'),
        sa.Column('rule_type_display', sa.String(), nullable=True),
        sa.Column('rate', sa.Numeric(12, 4), nullable=True),
        sa.Column('tiers', sa.JSON(), nullable=True),
        sa.Column('service_types', sa.JSON(), nullable=True),
        sa.Column('applicable_categories', sa.JSON(), nullable=True),
        sa.Column('applicable_products', sa.JSON(), nullable=True),
        sa.Column('min_margin_percentage', sa.Numeric(7, 2), nullable=True),
        sa.Column('min_order_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('min_commission_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('effective_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('effective_to', sa.DateTime(timezone=True), nullable=True),
        sa.Column('auto_approve', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('updated_by', sa.String(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_by', sa.String(), nullable=True),
    )
    op.create_index('ix_commission_rules_employee_id', 'commission_rules', ['employee_id'])
    op.create_index('ix_commission_rules_is_active', 'commission_rules', ['is_active'])

    op.create_table(
        'commissions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('employee_id', sa.String(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('rule_id', sa.String(), sa.ForeignKey('commission_rules.id'), nullable=True),
        sa.Column('source_type', sa.String(), nullable=False),
        sa.Column('source_id', sa.String(), nullable=False),
        sa.Column('trigger_kind', sa.String(), nullable=False),
        sa.Column('base_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('order_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('margin', sa.Numeric(12, 2), nullable=True),
        sa.Column('margin_percentage', sa.Numeric(7, 2), nullable=True),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('service_type', sa.String(), nullable=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('product_id', sa.String(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period', sa.String(), nullable=False),
        sa.Column('commission_type', sa.String(), nullable=False),
        sa.Column('rule_name', sa.String(), nullable=True),
        sa.Column('commission_percentage', sa.Numeric(9, 4), nullable=True),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('calculation_breakdown', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('approved_by', sa.String(), nullable=True),
        sa.Column('approved_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approval_notes', sa.Text(), nullable=True),
        sa.Column('paid_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_reference', sa.String(), nullable=True),
        sa.Column('payment_method', sa.String(), nullable=True),
        sa.Column('payment_notes', sa.Text(), nullable=True),
        sa.Column('paid_by', sa.String(), nullable=True),
        sa.Column('cancelled_by', sa.String(), nullable=True),
        sa.Column('cancelled_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('updated_by', sa.String(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_by', sa.String(), nullable=True),
    )
    op.create_index('ix_commissions_employee_id', 'commissions', ['employee_id'])
    op.create_index('ix_commissions_rule_id', 'commissions', ['rule_id'])
    op.create_index('ix_commissions_source_id', 'commissions', ['source_id'])
    op.create_index('ix_commissions_period', 'commissions', ['period'])
    op.create_index('ix_commissions_status', 'commissions', ['status'])
    # One live commission per (employee, source entity)
    op.create_index(
        'uq_commissions_live_source', 'commissions',
        ['employee_id', 'source_type', 'source_id'],
        unique=True,
        postgresql_where=sa.text(LIVE_SOURCE_WHERE),
        sqlite_where=sa.text(LIVE_SOURCE_WHERE),
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('before_status', sa.String(), nullable=True),
        sa.Column('after_status', sa.String(), nullable=True),
        sa.Column('actor', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_index('uq_commissions_live_source', table_name='commissions')
    op.drop_table('commissions')
    op.drop_table('commission_rules')
    op.drop_table('employees')
