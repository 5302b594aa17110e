"""Add orders and processor_status tables.

Revision ID: 001_orders
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001_orders"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("state", sa.Text(), nullable=False),
        sa.Column("side", sa.Text(), nullable=True),
        sa.Column("limit_price", sa.Numeric(40, 0), nullable=True),
        sa.Column("max_base_quantity", sa.Numeric(40, 0), nullable=True),
        sa.Column("max_quote_quantity", sa.Numeric(40, 0), nullable=True),
        sa.Column("self_trade_behavior", sa.Text(), nullable=True),
        sa.Column("order_type", sa.Text(), nullable=True),
        sa.Column("client_id", sa.Numeric(40, 0), nullable=True),
        sa.Column("limit", sa.Integer(), nullable=True),
        sa.Column("market", sa.Text(), nullable=True),
        sa.Column("bids", sa.Text(), nullable=True),
        sa.Column("asks", sa.Text(), nullable=True),
        sa.Column("request_queue", sa.Text(), nullable=True),
        sa.Column("event_queue", sa.Text(), nullable=True),
        sa.Column("maker", sa.Text(), nullable=True),
        sa.Column("taker", sa.Text(), nullable=True),
        sa.Column("open_order_tx", sa.Text(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("opened_block", sa.Integer(), nullable=True),
        sa.Column("matched_order_tx", sa.Text(), nullable=True),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("matched_block", sa.Integer(), nullable=True),
        sa.Column("cancelled_tx", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_block", sa.Integer(), nullable=True),
        sa.Column("closed_tx", sa.Text(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_block", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_orders_state", "orders", ["state"])
    op.create_index("idx_orders_bids", "orders", ["bids"])
    op.create_index("idx_orders_asks", "orders", ["asks"])
    op.create_index("idx_orders_request_queue", "orders", ["request_queue"])
    op.create_index("idx_orders_event_queue", "orders", ["event_queue"])
    op.create_index("idx_orders_maker", "orders", ["maker"])
    op.create_index("idx_orders_taker", "orders", ["taker"])
    op.create_index("idx_orders_market", "orders", ["market"])

    op.create_table(
        "processor_status",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("slot", sa.BigInteger(), nullable=False),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("processor_status")

    op.drop_index("idx_orders_market", table_name="orders")
    op.drop_index("idx_orders_taker", table_name="orders")
    op.drop_index("idx_orders_maker", table_name="orders")
    op.drop_index("idx_orders_event_queue", table_name="orders")
    op.drop_index("idx_orders_request_queue", table_name="orders")
    op.drop_index("idx_orders_asks", table_name="orders")
    op.drop_index("idx_orders_bids", table_name="orders")
    op.drop_index("idx_orders_state", table_name="orders")
    op.drop_table("orders")
