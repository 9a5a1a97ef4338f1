"""Esquema inicial del motor de sync POS

Revision ID: 001_pos_sync
Revises:
Create Date: 2026-10-18

Cambios:
- Tablas de configuracion: locations, pos_configs, merchants
- Ordenes y detalle: orders, order_line_items, payments, discounts, refunds
- Costos e inventario: item_cost_history, inventory_stock
- Agregados: daily_sales
- Estado de sync: sync_cursors, sync_jobs, sync_checkpoints
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '001_pos_sync'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default='0')


def _ts(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), **kwargs)


def upgrade() -> None:
    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        _ts('created_at', server_default=sa.func.now()),
    )

    op.create_table(
        'pos_configs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.String(64), nullable=False),
        sa.Column('merchant_name', sa.String(255), nullable=False),
        sa.Column('api_token', sa.Text(), nullable=True),
        sa.Column('base_url', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=True),
        _ts('last_sync_at', nullable=True),
        _ts('created_at', server_default=sa.func.now()),
        _ts('updated_at', nullable=True),
    )
    op.create_index('ix_pos_configs_merchant_id', 'pos_configs', ['merchant_id'], unique=True)

    op.create_table(
        'merchants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('external_id', sa.String(64), nullable=False),
        sa.Column('channel', sa.String(32), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('country', sa.String(8), nullable=True),
        sa.Column('timezone', sa.String(64), nullable=True),
        sa.Column('currency', sa.String(8), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('settings', sa.JSON(), nullable=True),
        _ts('created_at', server_default=sa.func.now()),
        _ts('updated_at', nullable=True),
        sa.UniqueConstraint('external_id', 'channel', name='uq_merchants_external_channel'),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.Integer(), sa.ForeignKey('merchants.id'), nullable=False),
        sa.Column('external_order_id', sa.String(64), nullable=False),
        sa.Column('channel', sa.String(32), nullable=False),
        sa.Column('order_number', sa.String(64), nullable=True),
        _ts('created_time', nullable=False),
        _ts('modified_time', nullable=False),
        sa.Column('order_date', sa.Date(), nullable=False),
        sa.Column('order_state', sa.String(32), nullable=True),
        sa.Column('payment_state', sa.String(32), nullable=True),
        sa.Column('customer_id', sa.String(64), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('employee_id', sa.String(64), nullable=True),
        _money('subtotal'),
        _money('tax_amount'),
        _money('tip_amount'),
        _money('discount_amount'),
        _money('refund_amount'),
        _money('total'),
        _money('order_cogs'),
        _money('order_gross_margin'),
        sa.Column('notes', sa.Text(), nullable=True),
        _ts('created_at', server_default=sa.func.now()),
        _ts('updated_at', nullable=True),
        sa.UniqueConstraint('merchant_id', 'external_order_id', 'channel', name='uq_orders_natural_key'),
    )
    op.create_index('ix_orders_merchant_date', 'orders', ['merchant_id', 'channel', 'order_date'])

    op.create_table(
        'order_line_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('external_line_item_id', sa.String(64), nullable=False, unique=True),
        sa.Column('external_item_id', sa.String(64), nullable=True),
        sa.Column('item_name', sa.String(255), nullable=True),
        sa.Column('sku', sa.String(128), nullable=True),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False, server_default='1'),
        _money('unit_price'),
        _money('line_total'),
        _money('unit_cost_at_sale'),
        _money('line_cogs'),
        _money('line_margin'),
        _money('discount_amount'),
        sa.Column('notes', sa.Text(), nullable=True),
        _ts('created_at', server_default=sa.func.now()),
        _ts('updated_at', nullable=True),
    )
    op.create_index('ix_order_line_items_order_id', 'order_line_items', ['order_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('external_payment_id', sa.String(64), nullable=False, unique=True),
        _money('amount'),
        _money('tip_amount'),
        _money('tax_amount'),
        _money('cashback_amount'),
        sa.Column('payment_method', sa.String(64), nullable=False, server_default='unknown'),
        sa.Column('result', sa.String(32), nullable=True),
        _ts('created_time', nullable=True),
        sa.Column('card_type', sa.String(32), nullable=True),
        sa.Column('card_last4', sa.String(8), nullable=True),
        sa.Column('auth_code', sa.String(32), nullable=True),
        _ts('created_at', server_default=sa.func.now()),
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])

    op.create_table(
        'discounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('external_discount_id', sa.String(64), nullable=False, unique=True),
        sa.Column('discount_name', sa.String(255), nullable=True),
        sa.Column('discount_type', sa.String(32), nullable=False, server_default='unknown'),
        sa.Column('discount_value', sa.Numeric(8, 2), nullable=True),
        _money('discount_amount'),
        _ts('created_at', server_default=sa.func.now()),
    )
    op.create_index('ix_discounts_order_id', 'discounts', ['order_id'])

    op.create_table(
        'refunds',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('external_refund_id', sa.String(64), nullable=False, unique=True),
        _money('refund_amount'),
        sa.Column('refund_date', sa.Date(), nullable=True),
        _ts('created_time', nullable=True),
        sa.Column('original_payment_id', sa.String(64), nullable=True),
        _ts('created_at', server_default=sa.func.now()),
    )
    op.create_index('ix_refunds_order_id', 'refunds', ['order_id'])

    op.create_table(
        'item_cost_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.Integer(), sa.ForeignKey('merchants.id'), nullable=False),
        sa.Column('external_item_id', sa.String(64), nullable=False),
        _money('unit_cost'),
        _ts('effective_from', nullable=False),
        sa.Column('source', sa.String(32), nullable=True),
        _ts('created_at', server_default=sa.func.now()),
        sa.UniqueConstraint('merchant_id', 'external_item_id', 'effective_from', name='uq_item_cost_observation'),
    )
    op.create_index('ix_item_cost_history_external_item_id', 'item_cost_history', ['external_item_id'])

    op.create_table(
        'inventory_stock',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pos_config_id', sa.Integer(), sa.ForeignKey('pos_configs.id'), nullable=False),
        sa.Column('external_item_id', sa.String(64), nullable=False),
        sa.Column('item_name', sa.String(255), nullable=True),
        sa.Column('sku', sa.String(128), nullable=True),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False, server_default='0'),
        sa.Column('unit_cost', sa.Numeric(12, 2), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        _ts('last_synced_at', nullable=True),
        sa.UniqueConstraint('pos_config_id', 'external_item_id', name='uq_inventory_stock_item'),
    )

    op.create_table(
        'daily_sales',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.Integer(), sa.ForeignKey('merchants.id'), nullable=False),
        sa.Column('channel', sa.String(32), nullable=False),
        sa.Column('sales_date', sa.Date(), nullable=False),
        sa.Column('order_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('item_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('customer_count', sa.Integer(), nullable=False, server_default='0'),
        _money('gross_sales'),
        _money('discounts'),
        _money('net_sales'),
        _money('tax_amount'),
        _money('tip_amount'),
        _money('total_revenue'),
        _money('total_cogs'),
        _money('gross_margin'),
        sa.Column('gross_margin_percent', sa.Numeric(7, 2), nullable=False, server_default='0'),
        sa.Column('refund_count', sa.Integer(), nullable=False, server_default='0'),
        _money('refund_amount'),
        sa.Column('payments_breakdown', sa.JSON(), nullable=True),
        _money('avg_order_value'),
        sa.Column('avg_items_per_order', sa.Numeric(10, 2), nullable=False, server_default='0'),
        _ts('updated_at', server_default=sa.func.now()),
        sa.UniqueConstraint('merchant_id', 'channel', 'sales_date', name='uq_daily_sales_day'),
    )

    op.create_table(
        'sync_cursors',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('system', sa.String(32), nullable=False),
        sa.Column('merchant_id', sa.String(64), nullable=False),
        sa.Column('data_type', sa.String(32), nullable=False),
        sa.Column('last_modified_ms', sa.BigInteger(), nullable=True),
        sa.Column('batch_size', sa.Integer(), nullable=False, server_default='100'),
        sa.Column('sync_frequency', sa.Integer(), nullable=True),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        _ts('last_run_at', nullable=True),
        _ts('last_sync_at', nullable=True),
        _ts('last_success_at', nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint('system', 'merchant_id', 'data_type', name='uq_sync_cursor_key'),
    )

    op.create_table(
        'sync_jobs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('requested_by', sa.String(255), nullable=True),
        sa.Column('total_locations', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('error_log', sa.Text(), nullable=True),
        _ts('created_at', server_default=sa.func.now()),
        _ts('started_at', nullable=True),
        _ts('completed_at', nullable=True),
    )
    op.create_index('ix_sync_jobs_status', 'sync_jobs', ['status'])

    op.create_table(
        'sync_checkpoints',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('job_id', sa.Integer(), sa.ForeignKey('sync_jobs.id'), nullable=False),
        sa.Column('location_id', sa.Integer(), sa.ForeignKey('locations.id'), nullable=True),
        sa.Column('merchant_id', sa.String(64), nullable=False),
        sa.Column('merchant_name', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        _ts('next_retry_at', nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('processed_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_orders', sa.Integer(), nullable=False, server_default='0'),
        _ts('last_synced_at', nullable=True),
        _ts('started_at', nullable=True),
        _ts('completed_at', nullable=True),
        _ts('updated_at', nullable=True),
    )
    op.create_index('ix_sync_checkpoints_job_status', 'sync_checkpoints', ['job_id', 'status'])


def downgrade() -> None:
    op.drop_index('ix_sync_checkpoints_job_status', table_name='sync_checkpoints')
    op.drop_table('sync_checkpoints')
    op.drop_index('ix_sync_jobs_status', table_name='sync_jobs')
    op.drop_table('sync_jobs')
    op.drop_table('sync_cursors')
    op.drop_table('daily_sales')
    op.drop_table('inventory_stock')
    op.drop_index('ix_item_cost_history_external_item_id', table_name='item_cost_history')
    op.drop_table('item_cost_history')
    op.drop_index('ix_refunds_order_id', table_name='refunds')
    op.drop_table('refunds')
    op.drop_index('ix_discounts_order_id', table_name='discounts')
    op.drop_table('discounts')
    op.drop_index('ix_payments_order_id', table_name='payments')
    op.drop_table('payments')
    op.drop_index('ix_order_line_items_order_id', table_name='order_line_items')
    op.drop_table('order_line_items')
    op.drop_index('ix_orders_merchant_date', table_name='orders')
    op.drop_table('orders')
    op.drop_table('merchants')
    op.drop_index('ix_pos_configs_merchant_id', table_name='pos_configs')
    op.drop_table('pos_configs')
    op.drop_table('locations')
