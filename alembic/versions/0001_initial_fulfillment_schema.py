"""Initial fulfillment schema: products, orders, grants, processed events.

Revision ID: 0001_initial_fulfillment
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_initial_fulfillment'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'product_files',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('storage_key', sa.String(500), nullable=False, unique=True),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('content_type', sa.String(100), nullable=False,
                  server_default='application/octet-stream'),
        sa.Column('file_type', sa.String(20), nullable=False, server_default='pdf'),
        sa.Column('file_size', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'products',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=False),
        sa.Column('pdf_file_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('product_files.id', ondelete='SET NULL'), nullable=True),
        sa.Column('image_file_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('product_files.id', ondelete='SET NULL'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'orders',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(320), nullable=False, index=True),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('gateway', sa.String(20), nullable=True),
        sa.Column('gateway_session_id', sa.String(255), nullable=True, index=True),
        sa.Column('gateway_payment_id', sa.String(255), nullable=True, unique=True),
        sa.Column('metadata', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('gateway', 'gateway_session_id', name='uq_orders_gateway_session'),
        sa.CheckConstraint('total_amount > 0', name='ck_orders_total_positive'),
    )

    op.create_table(
        'order_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('order_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('orders.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('product_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('products.id', ondelete='RESTRICT'),
                  nullable=False, index=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_price', sa.Numeric(10, 2), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('unit_price > 0', name='ck_order_items_unit_price_positive'),
    )

    op.create_table(
        'download_grants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('order_item_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('order_items.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('customer_email', sa.String(320), nullable=False, index=True),
        sa.Column('product_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('download_url', sa.String(1000), nullable=False),
        sa.Column('download_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_downloads', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('last_downloaded_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('download_count >= 0', name='ck_download_grants_count_non_negative'),
        sa.CheckConstraint('download_count <= max_downloads',
                           name='ck_download_grants_count_within_cap'),
    )

    op.create_table(
        'processed_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('gateway', sa.String(20), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False, index=True),
    )


def downgrade() -> None:
    op.drop_table('processed_events')
    op.drop_table('download_grants')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('products')
    op.drop_table('product_files')
