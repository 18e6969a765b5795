"""create_shop_tables

Revision ID: 3f9c2a7b1d04
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7b1d04'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

order_status = sa.Enum(
    'pending', 'processing', 'on-hold', 'completed', 'cancelled', 'refunded',
    name='shop_order_status_enum',
)
item_type = sa.Enum('product', 'shipping', 'fee', name='shop_order_item_type_enum')


def upgrade() -> None:
    """Upgrade schema - Add shop order, cart and counter tables."""

    op.create_table(
        'shop_orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('number', sa.Integer(), nullable=True),
        sa.Column('key', sa.String(length=64), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('status', order_status, nullable=False),
        sa.Column('customer_note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_shop_orders'),
        sa.UniqueConstraint('key', name='uq_shop_orders_key'),
    )
    op.create_index('ix_shop_orders_number', 'shop_orders', ['number'], unique=True)
    op.create_index(
        'ix_shop_orders_status_created_at', 'shop_orders', ['status', 'created_at']
    )

    op.create_table(
        'shop_order_meta',
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('meta_key', sa.String(length=100), nullable=False),
        sa.Column('meta_value', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ['order_id'], ['shop_orders.id'],
            name='fk_shop_order_meta_order_id_shop_orders', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('order_id', 'meta_key', name='pk_shop_order_meta'),
    )

    op.create_table(
        'shop_order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('product_type', item_type, nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('tax', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('cost', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_shop_order_items_positive_quantity'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['shop_orders.id'],
            name='fk_shop_order_items_order_id_shop_orders', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_shop_order_items'),
    )
    op.create_index('ix_shop_order_items_order_id', 'shop_order_items', ['order_id'])

    op.create_table(
        'shop_order_item_meta',
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('meta_key', sa.String(length=100), nullable=False),
        sa.Column('meta_value', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ['item_id'], ['shop_order_items.id'],
            name='fk_shop_order_item_meta_item_id_shop_order_items', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('item_id', 'meta_key', name='pk_shop_order_item_meta'),
    )

    op.create_table(
        'shop_counters',
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('value', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('name', name='pk_shop_counters'),
    )

    op.create_table(
        'shop_carts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('actor_key', sa.String(length=255), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id', name='pk_shop_carts'),
        sa.UniqueConstraint('actor_key', name='uq_shop_carts_actor_key'),
    )


def downgrade() -> None:
    """Downgrade schema - Drop shop tables."""
    op.drop_table('shop_carts')
    op.drop_table('shop_counters')
    op.drop_table('shop_order_item_meta')
    op.drop_index('ix_shop_order_items_order_id', table_name='shop_order_items')
    op.drop_table('shop_order_items')
    op.drop_table('shop_order_meta')
    op.drop_index('ix_shop_orders_status_created_at', table_name='shop_orders')
    op.drop_index('ix_shop_orders_number', table_name='shop_orders')
    op.drop_table('shop_orders')
    item_type.drop(op.get_bind(), checkfirst=True)
    order_status.drop(op.get_bind(), checkfirst=True)
