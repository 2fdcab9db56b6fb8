"""CJ fulfillment schema: credentials, catalog, orders, webhook inbox, workers

Revision ID: cj_fulfillment_001
Revises:
Create Date: 2026-03-01 12:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = 'cj_fulfillment_001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


json_type = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

sourcing_status = sa.Enum('none', 'pending', 'approved', 'rejected', name='sourcingstatus')
order_status = sa.Enum('pending', 'paid', 'processing', 'shipped', 'delivered', 'cancelled', name='orderstatus')
fulfillment_status = sa.Enum(
    'pending', 'sending', 'confirmed', 'processing', 'shipped', 'delivered', 'failed', 'cancelled',
    name='fulfillmentstatus',
)


def upgrade() -> None:
    op.create_table(
        'cj_credentials',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('access_token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('refresh_token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_issue_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_refreshed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'products',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('images', json_type, nullable=False),
        sa.Column('category', sa.String(128), nullable=True),
        sa.Column('collection', sa.String(128), nullable=True),
        sa.Column('is_new', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('in_stock', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('source_url', sa.Text(), nullable=True),
        sa.Column('sourcing_status', sourcing_status, nullable=False, server_default='none'),
        sa.Column('sourcing_id', sa.String(64), nullable=True),
        sa.Column('external_product_id', sa.String(64), nullable=True),
        sa.Column('external_variant_id', sa.String(64), nullable=True),
        sa.Column('external_sku', sa.String(128), nullable=True),
        sa.Column('sourcing_error', sa.Text(), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_products_sourcing_status', 'products', ['sourcing_status'])
    op.create_index('ix_products_sourcing_id', 'products', ['sourcing_id'])
    op.create_index('ix_products_external_product_id', 'products', ['external_product_id'])

    op.create_table(
        'product_variants',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('product_id', sa.String(36), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('price_adjustment', sa.Float(), nullable=False, server_default='0'),
        sa.Column('in_stock', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('external_variant_id', sa.String(64), nullable=True),
        sa.Column('external_sku', sa.String(128), nullable=True),
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

    op.create_table(
        'cj_product_variants',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('product_id', sa.String(36), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('external_variant_id', sa.String(64), nullable=False),
        sa.Column('sku', sa.String(128), nullable=True),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('price', sa.Float(), nullable=True),
        sa.Column('image', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_cj_product_variants_product_id', 'cj_product_variants', ['product_id'])
    op.create_index(
        'idx_cj_product_variants_product_vid', 'cj_product_variants', ['product_id', 'external_variant_id'],
        unique=True,
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('session_id', sa.String(255), nullable=False),
        sa.Column('order_number', sa.String(12), nullable=False),
        sa.Column('payment_intent_id', sa.String(255), nullable=True),
        sa.Column('customer_email', sa.String(320), nullable=False),
        sa.Column('customer_name', sa.Text(), nullable=True),
        sa.Column('customer_phone', sa.String(64), nullable=True),
        sa.Column('subtotal', sa.Float(), nullable=False, server_default='0'),
        sa.Column('shipping', sa.Float(), nullable=True),
        sa.Column('tax', sa.Float(), nullable=True),
        sa.Column('total', sa.Float(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(8), nullable=False, server_default='usd'),
        sa.Column('shipping_address', json_type, nullable=True),
        sa.Column('status', order_status, nullable=False, server_default='paid'),
        sa.Column('fulfillment_status', fulfillment_status, nullable=True),
        sa.Column('external_order_id', sa.String(64), nullable=True),
        sa.Column('fulfillment_error', sa.Text(), nullable=True),
        sa.Column('tracking_number', sa.String(128), nullable=True),
        sa.Column('tracking_url', sa.Text(), nullable=True),
        sa.Column('carrier', sa.String(128), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_orders_session_id', 'orders', ['session_id'], unique=True)
    op.create_index('ix_orders_order_number', 'orders', ['order_number'])
    op.create_index('ix_orders_customer_email', 'orders', ['customer_email'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_fulfillment_status', 'orders', ['fulfillment_status'])
    op.create_index('ix_orders_external_order_id', 'orders', ['external_order_id'])
    op.create_index('idx_orders_fulfillment_sync', 'orders', ['fulfillment_status', 'last_sync_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('order_id', sa.String(36), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('product_id', sa.String(36), nullable=False),
        sa.Column('variant_id', sa.String(36), nullable=True),
        sa.Column('variant_name', sa.Text(), nullable=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('image', sa.Text(), nullable=True),
        sa.Column('external_variant_id', sa.String(64), nullable=True),
        sa.Column('external_sku', sa.String(128), nullable=True),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'cj_events',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('message_id', sa.String(128), nullable=True),
        sa.Column('event_type', sa.String(32), nullable=True),
        sa.Column('message_type', sa.String(32), nullable=True),
        sa.Column('entity_id', sa.Text(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='RECEIVED'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payload', json_type, nullable=False),
    )
    op.create_index('ix_cj_events_message_id', 'cj_events', ['message_id'])
    op.create_index('ix_cj_events_event_type', 'cj_events', ['event_type'])

    op.create_table(
        'background_workers',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('worker_name', sa.String(128), nullable=False),
        sa.Column('interval_seconds', sa.Integer(), nullable=True),
        sa.Column('last_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_status', sa.String(32), nullable=True),
        sa.Column('last_error_message', sa.Text(), nullable=True),
        sa.Column('last_summary', json_type, nullable=True),
        sa.Column('runs_ok_in_row', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('runs_error_in_row', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_background_workers_worker_name', 'background_workers', ['worker_name'], unique=True)


def downgrade() -> None:
    op.drop_table('background_workers')
    op.drop_table('cj_events')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('cj_product_variants')
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('cj_credentials')
    fulfillment_status.drop(op.get_bind(), checkfirst=True)
    order_status.drop(op.get_bind(), checkfirst=True)
    sourcing_status.drop(op.get_bind(), checkfirst=True)
