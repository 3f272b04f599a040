"""create orders tables

Revision ID: 7c2e9a41b0d3
Revises:
Create Date: 2026-10-18 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM


# revision identifiers, used by Alembic.
revision: str = '7c2e9a41b0d3'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Types are created explicitly in upgrade(); payment_method_enum is shared
fulfillment_type_enum = ENUM(
    'delivery', 'pickup', name='fulfillment_type_enum', create_type=False
)
order_status_enum = ENUM(
    'created', 'accepted', 'assigned', 'picked_up', 'delivered', 'cancelled',
    name='order_status_enum',
    create_type=False,
)
payment_method_enum = ENUM(
    'cash', 'card', 'mobile_banking', 'wallet',
    name='payment_method_enum',
    create_type=False,
)
payment_status_enum = ENUM(
    'pending', 'completed', 'failed', 'refunded',
    name='payment_status_enum',
    create_type=False,
)
delivery_status_enum = ENUM(
    'pending', 'picked_up', 'in_transit', 'delivered', 'failed',
    name='delivery_status_enum',
    create_type=False,
)
audit_entity_type_enum = ENUM(
    'order', 'delivery', 'payment',
    name='audit_entity_type_enum',
    create_type=False,
)


def upgrade() -> None:
    """Create orders, order_items, deliveries, payments and order_audit_logs.

    users, branches and coffees belong to other subsystems and must exist.
    """
    bind = op.get_bind()
    for enum in (
        fulfillment_type_enum,
        order_status_enum,
        payment_method_enum,
        payment_status_enum,
        delivery_status_enum,
        audit_entity_type_enum,
    ):
        enum.create(bind, checkfirst=True)

    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('customer_id', sa.Uuid(), nullable=False),
        sa.Column('branch_id', sa.Uuid(), nullable=False),
        sa.Column('fulfillment_type', fulfillment_type_enum, nullable=False),
        sa.Column('delivery_address', sa.Text(), nullable=True),
        sa.Column('status', order_status_enum, nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('delivery_fee', sa.Numeric(10, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('preferred_payment_method', payment_method_enum, nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "fulfillment_type != 'delivery' OR delivery_address IS NOT NULL",
            name='ck_orders_delivery_needs_address',
        ),
        sa.CheckConstraint('total_amount >= 0', name='ck_orders_non_negative_total'),
        sa.ForeignKeyConstraint(
            ['customer_id'], ['users.id'], name='fk_orders_customer_id_users'
        ),
        sa.ForeignKeyConstraint(
            ['branch_id'], ['branches.id'], name='fk_orders_branch_id_branches'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_branch_id', 'orders', ['branch_id'])
    op.create_index('ix_orders_branch_id_status', 'orders', ['branch_id', 'status'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('coffee_id', sa.Uuid(), nullable=False),
        sa.Column('item_name', sa.String(length=100), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(10, 2), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_positive_quantity'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'],
            name='fk_order_items_order_id_orders', ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['coffee_id'], ['coffees.id'], name='fk_order_items_coffee_id_coffees'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_order_items'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'deliveries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('branch_id', sa.Uuid(), nullable=False),
        sa.Column('agent_id', sa.Uuid(), nullable=True),
        sa.Column('status', delivery_status_enum, nullable=False),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('assigned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('picked_up_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('in_transit_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_deliveries_order_id_orders'
        ),
        sa.ForeignKeyConstraint(
            ['branch_id'], ['branches.id'], name='fk_deliveries_branch_id_branches'
        ),
        sa.ForeignKeyConstraint(
            ['agent_id'], ['users.id'], name='fk_deliveries_agent_id_users'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_deliveries'),
        sa.UniqueConstraint('order_id', name='uq_deliveries_order_id'),
    )
    op.create_index(
        'ix_deliveries_agent_id_status', 'deliveries', ['agent_id', 'status']
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('payer_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('method', payment_method_enum, nullable=False),
        sa.Column('status', payment_status_enum, nullable=False),
        sa.Column('transaction_id', sa.String(length=64), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status NOT IN ('completed', 'refunded') OR transaction_id IS NOT NULL",
            name='ck_payments_settled_has_transaction_id',
        ),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_payments_order_id_orders'
        ),
        sa.ForeignKeyConstraint(
            ['payer_id'], ['users.id'], name='fk_payments_payer_id_users'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        sa.UniqueConstraint('transaction_id', name='uq_payments_transaction_id'),
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    # At most one completed payment per order
    op.create_index(
        'uq_payments_order_id_completed',
        'payments',
        ['order_id'],
        unique=True,
        postgresql_where=sa.text("status = 'completed'"),
    )

    op.create_table(
        'order_audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('entity_type', audit_entity_type_enum, nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('from_status', sa.String(length=30), nullable=True),
        sa.Column('to_status', sa.String(length=30), nullable=True),
        sa.Column('performed_by', sa.Uuid(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'], name='fk_order_audit_logs_order_id_orders'
        ),
        sa.PrimaryKeyConstraint('id', name='pk_order_audit_logs'),
    )
    op.create_index(
        'ix_order_audit_logs_order_id', 'order_audit_logs', ['order_id']
    )


def downgrade() -> None:
    """Drop the orders tables and their enum types."""
    op.drop_index('ix_order_audit_logs_order_id', table_name='order_audit_logs')
    op.drop_table('order_audit_logs')
    op.drop_index('uq_payments_order_id_completed', table_name='payments')
    op.drop_index('ix_payments_order_id', table_name='payments')
    op.drop_table('payments')
    op.drop_index('ix_deliveries_agent_id_status', table_name='deliveries')
    op.drop_table('deliveries')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_branch_id_status', table_name='orders')
    op.drop_index('ix_orders_branch_id', table_name='orders')
    op.drop_index('ix_orders_customer_id', table_name='orders')
    op.drop_table('orders')

    bind = op.get_bind()
    for enum in (
        audit_entity_type_enum,
        delivery_status_enum,
        payment_status_enum,
        payment_method_enum,
        order_status_enum,
        fulfillment_type_enum,
    ):
        enum.drop(bind, checkfirst=True)
