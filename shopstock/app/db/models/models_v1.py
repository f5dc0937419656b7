from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    String,
    Integer,
    DateTime,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shopstock.app.db.base import Base
from shopstock.app.db.types import BigIntPK, MoneyColumn
from shopstock.app.db.models.core_types import ActionType, RestockingStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- MASTER DATA ----------
class Shop(Base):
    __tablename__ = "shops"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id", ondelete="RESTRICT"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("shop_id", "name", name="uq_supplier_shop_name"),)


class Product(Base):
    """
    quantity : écrit UNIQUEMENT par services.stock_ledger.adjust_quantity
    (restocking + ventes). Jamais de read-modify-write ailleurs.
    """

    __tablename__ = "products"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id", ondelete="RESTRICT"), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    min_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost_price: Mapped[Decimal | None] = mapped_column(MoneyColumn)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_quantity

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_product_quantity_nonneg"),
        CheckConstraint("min_quantity >= 0", name="ck_product_min_quantity_nonneg"),
        UniqueConstraint("shop_id", "sku", name="uq_product_shop_sku"),
    )


# ---------- RESTOCKING ----------
class RestockingOrder(Base):
    __tablename__ = "restocking_orders"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id", ondelete="RESTRICT"), nullable=False, index=True)
    reference_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id", ondelete="SET NULL"))
    status: Mapped[RestockingStatus] = mapped_column(
        Enum(RestockingStatus, name="restocking_status"),
        default=RestockingStatus.pending,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    total_amount: Mapped[Decimal] = mapped_column(MoneyColumn, default=Decimal("0.00"), nullable=False)

    created_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    supplier: Mapped[Supplier | None] = relationship()
    items: Mapped[list["RestockingItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="RestockingItem.id",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("total_amount >= 0", name="ck_restocking_total_nonneg"),
        Index("ix_restocking_orders_shop_created", "shop_id", "created_at"),
    )


class RestockingItem(Base):
    __tablename__ = "restocking_items"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    restocking_order_id: Mapped[int] = mapped_column(
        ForeignKey("restocking_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)
    total_cost: Mapped[Decimal] = mapped_column(MoneyColumn, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    order: Mapped[RestockingOrder] = relationship(back_populates="items")
    product: Mapped[Product] = relationship()

    __table_args__ = (
        UniqueConstraint("restocking_order_id", "product_id", name="uq_restocking_item_order_product"),
        CheckConstraint("quantity > 0", name="ck_restocking_item_qty_pos"),
        CheckConstraint("unit_cost >= 0", name="ck_restocking_item_unit_cost_nonneg"),
    )


# ---------- AUDIT ----------
class ActionHistory(Base):
    __tablename__ = "action_history"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shop_id: Mapped[int | None] = mapped_column(ForeignKey("shops.id", ondelete="SET NULL"))
    actor_id: Mapped[str | None] = mapped_column(String(64))
    action_type: Mapped[ActionType] = mapped_column(Enum(ActionType, name="action_type"), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_name: Mapped[str | None] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text)
    old_data: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    new_data: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_action_history_entity", "entity_type", "entity_id"),)
