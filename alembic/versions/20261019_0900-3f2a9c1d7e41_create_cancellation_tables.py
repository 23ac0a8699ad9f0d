"""create_cancellation_tables

Revision ID: 3f2a9c1d7e41
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7e41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('email', sa.String(length=100), nullable=False, comment='Email'),
        sa.Column('full_name', sa.String(length=100), nullable=True, comment='Full name'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_superuser', sa.Boolean(), nullable=False, server_default=sa.false(), comment='Administrator flag'),
        sa.Column('membership_tier', sa.String(length=20), nullable=False, server_default='REGULAR', comment='REGULAR/VIP'),
        sa.Column('order_count', sa.Integer(), nullable=False, server_default='0', comment='Completed orders'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_created_at', 'users', ['created_at'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_code', sa.String(length=50), nullable=False, comment='Human-readable order code'),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('sub_total_amt', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('delivery_charge', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('total_amt', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('original_total_amt', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0',
                  comment='Total at checkout, upper bound for refunds'),
        sa.Column('total_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('order_status', sa.String(length=50), nullable=False, server_default='ORDER_PLACED'),
        sa.Column('payment_status', sa.String(length=50), nullable=False, server_default='PENDING'),
        sa.Column('payment_method', sa.String(length=50), nullable=False, server_default='ONLINE'),
        sa.Column('order_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('estimated_delivery_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_delivery_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_notes', sa.Text(), nullable=True),
        sa.Column('is_full_order_cancelled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('refund_details', sa.JSON(), nullable=True, comment='Last completed refund'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_order_code', 'orders', ['order_code'], unique=True)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_order_status', 'orders', ['order_status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_orders_user_created', 'orders', ['user_id', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('item_type', sa.String(length=20), nullable=False, server_default='product', comment='product/bundle'),
        sa.Column('product_id', sa.String(length=100), nullable=True),
        sa.Column('bundle_id', sa.String(length=100), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('size', sa.String(length=50), nullable=True),
        sa.Column('size_adjusted_price', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('item_total', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='Active', comment='Active/Cancelled'),
        sa.Column('cancel_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('refund_status', sa.String(length=20), nullable=True, comment='Processing/Completed'),
        sa.Column('refund_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('cancellation_request_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_id', 'order_items', ['id'])
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_cancellation_request_id', 'order_items', ['cancellation_request_id'])

    op.create_table(
        'order_refund_ledger',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=True),
        sa.Column('cancellation_request_id', sa.Integer(), nullable=True),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='Processing'),
        sa.Column('processed_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_refund_ledger_id', 'order_refund_ledger', ['id'])
    op.create_index('ix_order_refund_ledger_order_id', 'order_refund_ledger', ['order_id'])
    op.create_index('ix_order_refund_ledger_cancellation_request_id', 'order_refund_ledger', ['cancellation_request_id'])

    op.create_table(
        'cancellation_requests',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('cancellation_code', sa.String(length=32), nullable=False, comment='Business id, CXL-...'),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('cancellation_type', sa.String(length=20), nullable=False, comment='FULL_ORDER/PARTIAL_ITEMS'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('additional_reason', sa.Text(), nullable=True),
        sa.Column('items_to_cancel', sa.JSON(), nullable=False),
        sa.Column('delivery_info', sa.JSON(), nullable=True),
        sa.Column('pricing_snapshot', sa.JSON(), nullable=True),
        sa.Column('previous_order_status', sa.String(length=50), nullable=True),
        sa.Column('total_refund_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('admin_response', sa.JSON(), nullable=True),
        sa.Column('refund_details', sa.JSON(), nullable=True),
        sa.Column('refund_status', sa.String(length=20), nullable=True),
        sa.Column('request_date', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cancellation_requests_id', 'cancellation_requests', ['id'])
    op.create_index('ix_cancellation_requests_cancellation_code', 'cancellation_requests', ['cancellation_code'], unique=True)
    op.create_index('ix_cancellation_requests_order_id', 'cancellation_requests', ['order_id'])
    op.create_index('ix_cancellation_requests_user_id', 'cancellation_requests', ['user_id'])
    op.create_index('ix_cancellation_requests_status', 'cancellation_requests', ['status'])
    op.create_index('ix_cancellation_requests_refund_status', 'cancellation_requests', ['refund_status'])
    op.create_index('ix_cancellation_requests_created_at', 'cancellation_requests', ['created_at'])
    op.create_index('ix_cancellation_user_created', 'cancellation_requests', ['user_id', 'created_at'])
    # at most one PENDING request per order
    op.create_index(
        'uq_cancellation_pending_order',
        'cancellation_requests',
        ['order_id'],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING'"),
        sqlite_where=sa.text("status = 'PENDING'"),
    )

    op.create_table(
        'cancellation_policies',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('document', sa.JSON(), nullable=False, comment='Policy document consumed by the refund engine'),
        sa.Column('updated_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['updated_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_cancellation_policies_id', 'cancellation_policies', ['id'])
    op.create_index('ix_cancellation_policies_is_active', 'cancellation_policies', ['is_active'])
    op.create_index('ix_cancellation_policies_created_at', 'cancellation_policies', ['created_at'])


def downgrade() -> None:
    op.drop_table('cancellation_policies')
    op.drop_index('uq_cancellation_pending_order', table_name='cancellation_requests')
    op.drop_table('cancellation_requests')
    op.drop_table('order_refund_ledger')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('users')
