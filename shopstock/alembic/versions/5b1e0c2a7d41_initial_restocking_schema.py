"""initial restocking schema

Revision ID: 5b1e0c2a7d41
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5b1e0c2a7d41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
MONEY = sa.Numeric(14, 2)

RESTOCKING_STATUS = sa.Enum("pending", "completed", "cancelled", name="restocking_status")
ACTION_TYPE = sa.Enum("create", "update", "delete", name="action_type")


def upgrade() -> None:
    op.create_table(
        "shops",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("active", sa.Boolean(), nullable=False),
    )

    op.create_table(
        "suppliers",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column("shop_id", sa.BigInteger(), sa.ForeignKey("shops.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(64)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("shop_id", "name", name="uq_supplier_shop_name"),
    )

    op.create_table(
        "products",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column("shop_id", sa.BigInteger(), sa.ForeignKey("shops.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("sku", sa.String(64)),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_quantity", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost_price", MONEY),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity >= 0", name="ck_product_quantity_nonneg"),
        sa.CheckConstraint("min_quantity >= 0", name="ck_product_min_quantity_nonneg"),
        sa.UniqueConstraint("shop_id", "sku", name="uq_product_shop_sku"),
    )

    op.create_table(
        "restocking_orders",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column("shop_id", sa.BigInteger(), sa.ForeignKey("shops.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("reference_number", sa.String(64), nullable=False, unique=True),
        sa.Column("supplier_id", sa.BigInteger(), sa.ForeignKey("suppliers.id", ondelete="SET NULL")),
        sa.Column("status", RESTOCKING_STATUS, nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text()),
        sa.Column("total_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("created_by", sa.String(64)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("total_amount >= 0", name="ck_restocking_total_nonneg"),
    )
    op.create_index("ix_restocking_orders_shop_id", "restocking_orders", ["shop_id"])
    op.create_index("ix_restocking_orders_shop_created", "restocking_orders", ["shop_id", "created_at"])

    op.create_table(
        "restocking_items",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column(
            "restocking_order_id",
            sa.BigInteger(),
            sa.ForeignKey("restocking_orders.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_cost", MONEY, nullable=False),
        sa.Column("total_cost", MONEY, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("restocking_order_id", "product_id", name="uq_restocking_item_order_product"),
        sa.CheckConstraint("quantity > 0", name="ck_restocking_item_qty_pos"),
        sa.CheckConstraint("unit_cost >= 0", name="ck_restocking_item_unit_cost_nonneg"),
    )
    op.create_index("ix_restocking_items_restocking_order_id", "restocking_items", ["restocking_order_id"])

    op.create_table(
        "action_history",
        sa.Column("id", BIGINT_PK, primary_key=True),
        sa.Column("shop_id", sa.BigInteger(), sa.ForeignKey("shops.id", ondelete="SET NULL")),
        sa.Column("actor_id", sa.String(64)),
        sa.Column("action_type", ACTION_TYPE, nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("entity_name", sa.String(255)),
        sa.Column("description", sa.Text()),
        sa.Column("old_data", sa.JSON()),
        sa.Column("new_data", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_action_history_entity", "action_history", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_index("ix_action_history_entity", table_name="action_history")
    op.drop_table("action_history")
    op.drop_index("ix_restocking_items_restocking_order_id", table_name="restocking_items")
    op.drop_table("restocking_items")
    op.drop_index("ix_restocking_orders_shop_created", table_name="restocking_orders")
    op.drop_index("ix_restocking_orders_shop_id", table_name="restocking_orders")
    op.drop_table("restocking_orders")
    op.drop_table("products")
    op.drop_table("suppliers")
    op.drop_table("shops")
    RESTOCKING_STATUS.drop(op.get_bind(), checkfirst=True)
    ACTION_TYPE.drop(op.get_bind(), checkfirst=True)
