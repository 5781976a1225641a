"""Create checkout schema

Revision ID: 001_checkout
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers
revision = '001_checkout'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(*names):
    return [
        sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False)
        for name in names
    ]


def upgrade():
    """Create branch, catalog, inventory, shipping, promo and order tables"""

    # ====================
    # BRANCHES
    # ====================
    op.create_table(
        'branches',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('address', sa.Text, nullable=True),
        sa.Column('phone', sa.String(30), nullable=True),
        sa.Column('latitude', sa.Numeric(10, 7), nullable=True),
        sa.Column('longitude', sa.Numeric(10, 7), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps('created_at', 'updated_at'),
    )

    # ====================
    # CATALOG (read model)
    # ====================
    op.create_table(
        'categories',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('slug', sa.String(200), unique=True, nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('original_is_active', sa.Boolean, nullable=True),
        *_timestamps('updated_at'),
    )

    op.create_table(
        'products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('category_id', UUID(as_uuid=True), sa.ForeignKey('categories.id', ondelete='SET NULL'), nullable=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('sku', sa.String(100), unique=True, nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('base_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('sale_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.Column('original_is_active', sa.Boolean, nullable=True),
        *_timestamps('created_at', 'updated_at'),
    )
    op.create_index('ix_products_category_id', 'products', ['category_id'])

    op.create_table(
        'product_variants',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('product_id', UUID(as_uuid=True), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

    # ====================
    # BRANCH INVENTORY
    # ====================
    op.create_table(
        'branch_inventory',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('variant_id', UUID(as_uuid=True), sa.ForeignKey('product_variants.id', ondelete='CASCADE'), nullable=True),
        sa.Column('stock_quantity', sa.Integer, server_default='0', nullable=False),
        sa.Column('reserved_quantity', sa.Integer, server_default='0', nullable=False),
        sa.Column('min_stock_level', sa.Integer, server_default='0', nullable=False),
        sa.Column('price_override', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_available', sa.Boolean, server_default='true', nullable=False),
        *_timestamps('updated_at'),
        sa.UniqueConstraint('branch_id', 'product_id', 'variant_id', name='uq_branch_inventory'),
        sa.CheckConstraint('stock_quantity >= 0', name='ck_branch_inventory_stock_non_negative'),
        sa.CheckConstraint('reserved_quantity >= 0', name='ck_branch_inventory_reserved_non_negative'),
        sa.CheckConstraint('reserved_quantity <= stock_quantity', name='ck_branch_inventory_reserved_within_stock'),
    )
    op.create_index('ix_branch_inventory_branch_id', 'branch_inventory', ['branch_id'])
    op.create_index('ix_branch_inventory_product_id', 'branch_inventory', ['product_id'])
    # NULL variant_id rows are distinct under the unique constraint
    op.create_index(
        'uq_branch_inventory_no_variant',
        'branch_inventory',
        ['branch_id', 'product_id'],
        unique=True,
        postgresql_where=sa.text('variant_id IS NULL'),
        sqlite_where=sa.text('variant_id IS NULL'),
    )

    # ====================
    # SHIPPING ZONES
    # ====================
    op.create_table(
        'shipping_zones',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('min_distance_km', sa.Numeric(8, 2), server_default='0', nullable=False),
        sa.Column('max_distance_km', sa.Numeric(8, 2), nullable=True),
        sa.Column('base_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('price_per_km', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('free_shipping_threshold', sa.Numeric(12, 2), nullable=True),
        sa.Column('delivery_time_min_minutes', sa.Integer, server_default='30', nullable=False),
        sa.Column('delivery_time_max_minutes', sa.Integer, server_default='60', nullable=False),
        sa.Column('sort_order', sa.Integer, server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
    )

    op.create_table(
        'branch_shipping_zones',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='CASCADE'), nullable=False),
        sa.Column('zone_id', UUID(as_uuid=True), sa.ForeignKey('shipping_zones.id', ondelete='CASCADE'), nullable=False),
        sa.Column('custom_base_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('custom_price_per_km', sa.Numeric(12, 2), nullable=True),
        sa.Column('custom_free_threshold', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        sa.UniqueConstraint('branch_id', 'zone_id', name='uq_branch_shipping_zone'),
    )
    op.create_index('ix_branch_shipping_zones_branch_id', 'branch_shipping_zones', ['branch_id'])

    # ====================
    # PROMO CODES
    # ====================
    op.create_table(
        'promo_codes',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('code', sa.String(50), unique=True, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('discount_type', sa.String(50), server_default='PERCENTAGE', nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('min_order_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('max_discount_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('usage_limit', sa.Integer, nullable=True),
        sa.Column('user_usage_limit', sa.Integer, nullable=True),
        sa.Column('usage_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps('created_at', 'updated_at'),
        sa.CheckConstraint('valid_from < valid_until', name='ck_promo_codes_window'),
        sa.CheckConstraint('usage_count >= 0', name='ck_promo_codes_usage_non_negative'),
        sa.CheckConstraint(
            'usage_limit IS NULL OR usage_count <= usage_limit',
            name='ck_promo_codes_usage_within_limit',
        ),
    )
    op.create_index('ix_promo_codes_code', 'promo_codes', ['code'])

    # ====================
    # ORDERS
    # ====================
    op.create_table(
        'orders',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_number', sa.String(30), unique=True, nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('branch_id', UUID(as_uuid=True), sa.ForeignKey('branches.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('order_type', sa.String(50), server_default='DELIVERY', nullable=False),
        sa.Column('status', sa.String(50), server_default='RESERVED', nullable=False),
        sa.Column('payment_method', sa.String(50), server_default='CASH', nullable=False),
        sa.Column('payment_status', sa.String(50), server_default='PENDING', nullable=False),
        sa.Column('customer_name', sa.String(200), nullable=True),
        sa.Column('customer_phone', sa.String(30), nullable=True),
        sa.Column('delivery_latitude', sa.Numeric(10, 7), nullable=True),
        sa.Column('delivery_longitude', sa.Numeric(10, 7), nullable=True),
        sa.Column('delivery_address', sa.Text, nullable=True),
        sa.Column('distance_km', sa.Numeric(8, 2), nullable=True),
        sa.Column('shipping_zone', sa.String(100), nullable=True),
        sa.Column('special_instructions', sa.Text, nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('delivery_fee_original', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('delivery_fee', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('shipping_discount_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('promo_code_id', UUID(as_uuid=True), sa.ForeignKey('promo_codes.id', ondelete='SET NULL'), nullable=True),
        sa.Column('promo_code', sa.String(50), nullable=True),
        sa.Column('reservation_expires_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps('created_at', 'updated_at'),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'])
    op.create_index('ix_orders_branch_id', 'orders', ['branch_id'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'])
    op.create_index('ix_orders_status_expiry', 'orders', ['status', 'reservation_expires_at'])

    op.create_table(
        'order_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('variant_id', UUID(as_uuid=True), sa.ForeignKey('product_variants.id', ondelete='SET NULL'), nullable=True),
        sa.Column('product_name', sa.String(200), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_status_history',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('from_status', sa.String(50), nullable=True),
        sa.Column('to_status', sa.String(50), nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('changed_by', sa.String(64), nullable=True),
        *_timestamps('created_at'),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    op.create_table(
        'promo_code_usages',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('promo_code_id', UUID(as_uuid=True), sa.ForeignKey('promo_codes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False),
        *_timestamps('used_at'),
    )
    op.create_index('ix_promo_code_usages_promo_code_id', 'promo_code_usages', ['promo_code_id'])
    op.create_index('ix_promo_code_usages_user_id', 'promo_code_usages', ['user_id'])

    # ====================
    # SETTINGS
    # ====================
    op.create_table(
        'system_settings',
        sa.Column('key', sa.String(100), primary_key=True),
        sa.Column('value', sa.Text, nullable=True),
        *_timestamps('updated_at'),
    )

    op.create_table(
        'catalog_toggle_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('trigger_type', sa.String(20), nullable=False),
        sa.Column('affected_products', sa.Integer, server_default='0', nullable=False),
        sa.Column('affected_categories', sa.Integer, server_default='0', nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        *_timestamps('created_at'),
    )


def downgrade():
    """Drop all checkout tables"""
    for table in (
        'catalog_toggle_logs',
        'system_settings',
        'promo_code_usages',
        'order_status_history',
        'order_items',
        'orders',
        'promo_codes',
        'branch_shipping_zones',
        'shipping_zones',
        'branch_inventory',
        'product_variants',
        'products',
        'categories',
        'branches',
    ):
        op.drop_table(table)
