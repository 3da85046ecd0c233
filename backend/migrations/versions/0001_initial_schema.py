"""initial retail billing schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete schema from scratch:
- users: staff known to the store (identity lives with the auth gateway)
- categories / products: catalog with materialized stock
- customers: contact data, purchase totals, materialized loyalty balance
- invoices / invoice_items: sales documents with frozen line pricing
- return_orders / return_items: returns against a single invoice
- stock_history / loyalty_history: append-only ledgers behind the balances
- activity_logs: append-only audit trail
- store_settings: single-row store configuration
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False):
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable,
                     server_default=None if nullable else sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    """
    Create all tables.

    WHY: Money is integer cents and tax rates are basis points throughout,
    so totals are exact. Stock and loyalty balances are materialized on
    products/customers and backed by append-only ledgers.
    """

    # ============================================================================
    # users
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_role', 'users', ['role'])

    # ============================================================================
    # categories / products
    # ============================================================================
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        _timestamp('created_at'),
        sa.PrimaryKeyConstraint('id', name='pk_categories'),
        sa.UniqueConstraint('name', name='uq_categories_name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('min_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('category_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], name='fk_products_category_id_categories'),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sa.UniqueConstraint('barcode', name='uq_products_barcode'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_name', 'products', ['name'])
    op.create_index('ix_products_category_id', 'products', ['category_id'])

    # ============================================================================
    # customers
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('loyalty_points', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_purchases_cents', sa.Integer(), nullable=False, server_default='0'),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.CheckConstraint('loyalty_points >= 0', name='ck_customers_loyalty_points_non_negative'),
        sa.PrimaryKeyConstraint('id', name='pk_customers'),
        sa.UniqueConstraint('email', name='uq_customers_email'),
        sa.UniqueConstraint('phone', name='uq_customers_phone'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # invoices / invoice_items
    # ============================================================================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PAID'),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        _timestamp('voided_at', nullable=True),
        sa.Column('voided_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_invoices_customer_id_customers'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_invoices_user_id_users'),
        sa.ForeignKeyConstraint(['voided_by_user_id'], ['users.id'], name='fk_invoices_voided_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_invoices'),
        sa.UniqueConstraint('invoice_number', name='uq_invoices_invoice_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_customer_id', 'invoices', ['customer_id'])
    op.create_index('ix_invoices_user_id', 'invoices', ['user_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_created_at', 'invoices', ['created_at'])
    op.create_index('ix_invoices_status_created', 'invoices', ['status', 'created_at'])

    op.create_table(
        'invoice_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_invoice_items_quantity_positive'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name='fk_invoice_items_invoice_id_invoices'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_invoice_items_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_invoice_items'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])
    op.create_index('ix_invoice_items_product_id', 'invoice_items', ['product_id'])

    # ============================================================================
    # return_orders / return_items
    # ============================================================================
    op.create_table(
        'return_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='COMPLETED'),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('return_date', sa.DateTime(timezone=True), nullable=False),
        _timestamp('created_at'),
        _timestamp('completed_at', nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name='fk_return_orders_invoice_id_invoices'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_return_orders_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_return_orders'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_return_orders_invoice_id', 'return_orders', ['invoice_id'])
    op.create_index('ix_return_orders_status', 'return_orders', ['status'])
    op.create_index('ix_return_orders_return_date', 'return_orders', ['return_date'])
    op.create_index('ix_return_orders_invoice_status', 'return_orders', ['invoice_id', 'status'])

    op.create_table(
        'return_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.CheckConstraint('quantity > 0', name='ck_return_items_quantity_positive'),
        sa.ForeignKeyConstraint(['return_order_id'], ['return_orders.id'], name='fk_return_items_return_order_id_return_orders'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_return_items_product_id_products'),
        sa.PrimaryKeyConstraint('id', name='pk_return_items'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_return_items_return_order_id', 'return_items', ['return_order_id'])
    op.create_index('ix_return_items_product_id', 'return_items', ['product_id'])

    # ============================================================================
    # stock_history / loyalty_history: append-only ledgers
    # ============================================================================
    op.create_table(
        'stock_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('return_order_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_stock_history_product_id_products'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name='fk_stock_history_invoice_id_invoices'),
        sa.ForeignKeyConstraint(['return_order_id'], ['return_orders.id'], name='fk_stock_history_return_order_id_return_orders'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_stock_history_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_stock_history'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_history_product_id', 'stock_history', ['product_id'])
    op.create_index('ix_stock_history_type', 'stock_history', ['type'])
    op.create_index('ix_stock_history_invoice_id', 'stock_history', ['invoice_id'])
    op.create_index('ix_stock_history_return_order_id', 'stock_history', ['return_order_id'])
    op.create_index('ix_stock_history_created_at', 'stock_history', ['created_at'])
    op.create_index('ix_stock_history_product_created', 'stock_history', ['product_id', 'created_at'])

    op.create_table(
        'loyalty_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('return_order_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_loyalty_history_customer_id_customers'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name='fk_loyalty_history_invoice_id_invoices'),
        sa.ForeignKeyConstraint(['return_order_id'], ['return_orders.id'], name='fk_loyalty_history_return_order_id_return_orders'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_loyalty_history_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_loyalty_history'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_loyalty_history_customer_id', 'loyalty_history', ['customer_id'])
    op.create_index('ix_loyalty_history_type', 'loyalty_history', ['type'])
    op.create_index('ix_loyalty_history_invoice_id', 'loyalty_history', ['invoice_id'])
    op.create_index('ix_loyalty_history_customer_created', 'loyalty_history', ['customer_id', 'created_at'])

    # ============================================================================
    # activity_logs / store_settings
    # ============================================================================
    op.create_table(
        'activity_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        _timestamp('created_at'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_activity_logs_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_activity_logs'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_activity_logs_user_id', 'activity_logs', ['user_id'])
    op.create_index('ix_activity_logs_action', 'activity_logs', ['action'])
    op.create_index('ix_activity_logs_created_at', 'activity_logs', ['created_at'])
    op.create_index('ix_activity_logs_entity', 'activity_logs', ['entity_type', 'entity_id'])

    op.create_table(
        'store_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_name', sa.String(length=255), nullable=False, server_default='My Store'),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('default_tax_rate_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('receipt_footer', sa.Text(), nullable=True),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        _timestamp('updated_at'),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id'], name='fk_store_settings_updated_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_store_settings')
    )


def downgrade():
    for table in (
        'store_settings',
        'activity_logs',
        'loyalty_history',
        'stock_history',
        'return_items',
        'return_orders',
        'invoice_items',
        'invoices',
        'customers',
        'products',
        'categories',
        'users',
    ):
        op.drop_table(table)
