"""
Restocking service.

Cycle de vie d'une commande de réapprovisionnement :

    pending --> completed   (stock appliqué, une seule fois)
            +-> cancelled   (aucun mouvement de stock)

completed / cancelled sont terminaux : plus aucune modification, ni des lignes,
ni de l'en-tête, ni du statut.

Règles :
- création : en-tête + lignes dans UNE transaction (pas d'en-tête orphelin)
- pending -> completed : bascule du statut + un ajustement ledger par ligne,
  dans la MÊME transaction. Un seul ajustement en échec => rollback complet,
  la commande reste pending.
- rejouer la complétion => AlreadyCompleted, le stock ne bouge pas
- total_amount = somme des lignes, recalculé à chaque mutation

Verrouillage : chaque mutation commence par un UPDATE conditionnel
``WHERE id = :id AND status = 'pending'`` (compare-and-swap). Deux complétions
concurrentes ne peuvent pas réussir toutes les deux.

La logique stock elle-même vit dans :
    shopstock.services.stock_ledger
"""

from __future__ import annotations

import secrets
import time
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Iterable, Iterator, Mapping

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, selectinload

from shopstock.app.core import config
from shopstock.app.core.logging_config import get_logger
from shopstock.app.db.errors import is_lock_error
from shopstock.app.db.models.core_types import ActionType, RestockingStatus
from shopstock.app.db.models.models_v1 import (
    Product,
    RestockingItem,
    RestockingOrder,
    Supplier,
    utcnow,
)
from shopstock.app.db.types import money
from shopstock.services import stock_ledger
from shopstock.services.audit import AuditEvent, AuditSink, emit
from shopstock.services.exceptions import (
    AlreadyCompleted,
    ConcurrencyConflict,
    EmptyOrder,
    InvalidTransition,
    OrderNotEditable,
    OrderNotFound,
    ProductNotFound,
    ShopStockError,
    StateError,
    StockAdjustmentFailed,
    SupplierNotFound,
    ValidationError,
)
from shopstock.services.restocking_items import RestockingItemSet

logger = get_logger("services.restocking")

_HEADER_FIELDS = ("supplier_id", "notes")


@dataclass(frozen=True)
class OrderFilters:
    shop_id: int | None = None
    status: RestockingStatus | None = None
    supplier_id: int | None = None
    search: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True)
class RestockingSummary:
    total: int
    pending: int
    completed: int
    cancelled: int
    total_value: Decimal


# ---------- Helpers ----------
def new_reference_number() -> str:
    return f"{config.REFERENCE_PREFIX}-{int(time.time() * 1000)}-{secrets.token_hex(2).upper()}"


@contextmanager
def _unit_of_work(db: Session) -> Iterator[None]:
    """Commit si tout passe, rollback sinon. Les timeouts de verrou deviennent ConcurrencyConflict."""
    try:
        yield
        db.commit()
    except OperationalError as exc:
        db.rollback()
        if is_lock_error(exc):
            raise ConcurrencyConflict() from exc
        raise
    except Exception:
        db.rollback()
        raise


def _clean_header(header: Mapping[str, Any] | None) -> dict[str, Any]:
    header = dict(header or {})
    unknown = set(header) - set(_HEADER_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown order field(s): {', '.join(sorted(unknown))}")
    if "notes" in header:
        notes = (header["notes"] or "").strip()
        header["notes"] = notes or None
    return header


def _coerce_item_set(items) -> RestockingItemSet:
    if isinstance(items, RestockingItemSet):
        return items
    return RestockingItemSet.from_payload(items)


def supplier_exists(db: Session, supplier_id: int, shop_id: int | None = None) -> bool:
    stmt = select(Supplier.id).where(Supplier.id == supplier_id)
    if shop_id is not None:
        stmt = stmt.where(Supplier.shop_id == shop_id)
    return db.execute(stmt).scalar_one_or_none() is not None


def _check_supplier(db: Session, shop_id: int, supplier_id: int | None) -> None:
    if supplier_id is not None and not supplier_exists(db, supplier_id, shop_id):
        raise SupplierNotFound(supplier_id)


def _check_products(db: Session, shop_id: int, product_ids: Iterable[int]) -> None:
    wanted = set(product_ids)
    if not wanted:
        return
    found = set(
        db.execute(
            select(Product.id).where(Product.id.in_(wanted)).where(Product.shop_id == shop_id)
        ).scalars()
    )
    missing = sorted(wanted - found)
    if missing:
        raise ProductNotFound(missing[0])


def _load_order(
    db: Session,
    order_id: int,
    shop_id: int | None = None,
    *,
    for_update: bool = False,
) -> RestockingOrder:
    stmt = (
        select(RestockingOrder)
        .where(RestockingOrder.id == order_id)
        .options(selectinload(RestockingOrder.items))
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    order = db.execute(stmt).scalar_one_or_none()
    if order is None or (shop_id is not None and order.shop_id != shop_id):
        raise OrderNotFound(order_id)
    return order


def _lock_pending(
    db: Session,
    order_id: int,
    shop_id: int | None = None,
    *,
    completing: bool = False,
    **values: Any,
) -> RestockingOrder:
    """
    Compare-and-swap sur le statut : ne touche la ligne que si elle est pending.

    Retourne la commande rechargée (verrouillée). Sinon lève OrderNotFound,
    AlreadyCompleted (si on tentait de compléter) ou OrderNotEditable.
    """
    stmt = (
        update(RestockingOrder)
        .where(RestockingOrder.id == order_id)
        .where(RestockingOrder.status == RestockingStatus.pending)
        .values(updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if shop_id is not None:
        stmt = stmt.where(RestockingOrder.shop_id == shop_id)

    claimed = db.execute(stmt).rowcount == 1
    order = _load_order(db, order_id, shop_id, for_update=claimed)
    if claimed:
        return order

    if completing and order.status == RestockingStatus.completed:
        raise AlreadyCompleted(order.id)
    raise OrderNotEditable(order.id, order.status)


def _sync_items(order: RestockingOrder, item_set: RestockingItemSet) -> None:
    existing = {it.product_id: it for it in order.items}

    for pid, it in existing.items():
        if pid not in item_set:
            order.items.remove(it)

    for ln in item_set:
        it = existing.get(ln.product_id)
        if it is None:
            order.items.append(
                RestockingItem(
                    product_id=ln.product_id,
                    quantity=ln.quantity,
                    unit_cost=ln.unit_cost,
                    total_cost=ln.total_cost,
                )
            )
        else:
            it.quantity = ln.quantity
            it.unit_cost = ln.unit_cost
            it.total_cost = ln.total_cost

    order.total_amount = item_set.total()


def _apply_stock(db: Session, order: RestockingOrder) -> None:
    # ordre produit stable => ordre d'acquisition des verrous stable
    for item in sorted(order.items, key=lambda it: it.product_id):
        try:
            stock_ledger.adjust_quantity(db, item.product_id, item.quantity)
        except ShopStockError as exc:
            logger.error(
                "restocking completion aborted",
                extra={
                    "order_id": order.id,
                    "reference_number": order.reference_number,
                    "product_id": item.product_id,
                    "code": exc.code,
                },
                exc_info=True,
            )
            raise StockAdjustmentFailed(order.id, item.product_id, exc.message) from exc


def order_snapshot(order: RestockingOrder) -> dict[str, Any]:
    """Représentation JSON-safe (audit old_data / new_data)."""
    return {
        "id": order.id,
        "reference_number": order.reference_number,
        "shop_id": order.shop_id,
        "supplier_id": order.supplier_id,
        "status": RestockingStatus(order.status).value,
        "notes": order.notes,
        "total_amount": str(money(order.total_amount)),
        "items": [
            {
                "product_id": it.product_id,
                "quantity": it.quantity,
                "unit_cost": str(money(it.unit_cost)),
                "total_cost": str(money(it.total_cost)),
            }
            for it in order.items
        ],
    }


def _audit(
    audit: AuditSink | None,
    action: ActionType,
    snapshot: Mapping[str, Any],
    description: str,
    *,
    actor_id: str | None,
    old_data: dict[str, Any] | None = None,
    new_data: dict[str, Any] | None = None,
) -> None:
    emit(
        audit,
        AuditEvent(
            action_type=action,
            entity_id=str(snapshot["id"]),
            entity_name=snapshot["reference_number"],
            description=description,
            old_data=old_data,
            new_data=new_data,
            shop_id=snapshot["shop_id"],
            actor_id=actor_id,
        ),
    )


# ---------- Lecture ----------
def get_order(db: Session, order_id: int, *, shop_id: int | None = None) -> RestockingOrder:
    return _load_order(db, order_id, shop_id)


def list_orders(db: Session, filters: OrderFilters | None = None) -> list[RestockingOrder]:
    f = filters or OrderFilters()
    stmt = (
        select(RestockingOrder)
        .options(selectinload(RestockingOrder.items), selectinload(RestockingOrder.supplier))
        .order_by(RestockingOrder.created_at.desc(), RestockingOrder.id.desc())
    )

    if f.shop_id is not None:
        stmt = stmt.where(RestockingOrder.shop_id == f.shop_id)

    if f.status is not None:
        stmt = stmt.where(RestockingOrder.status == RestockingStatus(f.status))

    if f.supplier_id is not None:
        stmt = stmt.where(RestockingOrder.supplier_id == f.supplier_id)

    term = (f.search or "").strip().lower()
    if term:
        # % et _ saisis par l'utilisateur sont des caractères littéraux
        like = "%" + term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        stmt = stmt.outerjoin(Supplier, Supplier.id == RestockingOrder.supplier_id).where(
            or_(
                func.lower(RestockingOrder.reference_number).like(like, escape="\\"),
                func.lower(Supplier.name).like(like, escape="\\"),
            )
        )

    stmt = stmt.limit(f.limit).offset(f.offset)
    return list(db.execute(stmt).scalars().all())


def summarize_orders(db: Session, *, shop_id: int | None = None) -> RestockingSummary:
    stmt = select(
        RestockingOrder.status,
        func.count(RestockingOrder.id),
        func.coalesce(func.sum(RestockingOrder.total_amount), 0),
    ).group_by(RestockingOrder.status)
    if shop_id is not None:
        stmt = stmt.where(RestockingOrder.shop_id == shop_id)

    counts = {s: 0 for s in RestockingStatus}
    value = Decimal("0.00")
    for status, count, amount in db.execute(stmt).all():
        counts[RestockingStatus(status)] = int(count)
        value += money(amount)

    return RestockingSummary(
        total=sum(counts.values()),
        pending=counts[RestockingStatus.pending],
        completed=counts[RestockingStatus.completed],
        cancelled=counts[RestockingStatus.cancelled],
        total_value=money(value),
    )


# ---------- Écriture ----------
def create_order(
    db: Session,
    *,
    shop_id: int,
    items,
    header: Mapping[str, Any] | None = None,
    actor_id: str | None = None,
    audit: AuditSink | None = None,
) -> RestockingOrder:
    """
    Crée une commande ``pending`` avec ses lignes (une transaction).

    Raises:
        EmptyOrder, InvalidLine, DuplicateLine, SupplierNotFound, ProductNotFound
    """
    with _unit_of_work(db):
        fields = _clean_header(header)
        item_set = _coerce_item_set(items)
        if not item_set:
            raise EmptyOrder()

        _check_supplier(db, shop_id, fields.get("supplier_id"))
        _check_products(db, shop_id, item_set.product_ids())

        order = RestockingOrder(
            shop_id=shop_id,
            reference_number=new_reference_number(),
            supplier_id=fields.get("supplier_id"),
            status=RestockingStatus.pending,
            notes=fields.get("notes"),
            total_amount=Decimal("0.00"),
            created_by=actor_id,
        )
        db.add(order)
        _sync_items(order, item_set)
        db.flush()
        snapshot = order_snapshot(order)

    logger.info(
        "restocking order created",
        extra={
            "order_id": snapshot["id"],
            "reference_number": snapshot["reference_number"],
            "total_amount": snapshot["total_amount"],
            "items": len(snapshot["items"]),
        },
    )
    _audit(
        audit,
        ActionType.create,
        snapshot,
        f"Restocking {snapshot['reference_number']} created",
        actor_id=actor_id,
        new_data=snapshot,
    )
    return order


def update_order(
    db: Session,
    order_id: int,
    *,
    shop_id: int | None = None,
    header: Mapping[str, Any] | None = None,
    items=None,
    actor_id: str | None = None,
    audit: AuditSink | None = None,
) -> RestockingOrder:
    """
    Met à jour l'en-tête et/ou remplace toutes les lignes (commande pending uniquement).

    ``items=None`` : lignes inchangées. ``items=[]`` : EmptyOrder.
    """
    with _unit_of_work(db):
        fields = _clean_header(header)
        order = _lock_pending(db, order_id, shop_id)
        before = order_snapshot(order)

        if "supplier_id" in fields:
            _check_supplier(db, order.shop_id, fields["supplier_id"])
            order.supplier_id = fields["supplier_id"]
        if "notes" in fields:
            order.notes = fields["notes"]

        if items is not None:
            item_set = _coerce_item_set(items)
            if not item_set:
                raise EmptyOrder(order.id)
            _check_products(db, order.shop_id, item_set.product_ids())
        else:
            item_set = RestockingItemSet.from_order(order)
        _sync_items(order, item_set)

        db.flush()
        after = order_snapshot(order)

    logger.info(
        "restocking order updated",
        extra={"order_id": order_id, "total_amount": after["total_amount"]},
    )
    _audit(
        audit,
        ActionType.update,
        after,
        f"Restocking {after['reference_number']} updated",
        actor_id=actor_id,
        old_data=before,
        new_data=after,
    )
    return order


def _edit_items(
    db: Session,
    order_id: int,
    edit: Callable[[RestockingItemSet], Any],
    description: str,
    *,
    shop_id: int | None,
    new_product_id: int | None,
    actor_id: str | None,
    audit: AuditSink | None,
) -> RestockingOrder:
    with _unit_of_work(db):
        order = _lock_pending(db, order_id, shop_id)
        before = order_snapshot(order)

        item_set = RestockingItemSet.from_order(order)
        edit(item_set)
        if new_product_id is not None:
            _check_products(db, order.shop_id, [new_product_id])
        _sync_items(order, item_set)

        db.flush()
        after = order_snapshot(order)

    logger.info(
        "restocking items edited",
        extra={"order_id": order_id, "items": len(after["items"]), "total_amount": after["total_amount"]},
    )
    _audit(
        audit,
        ActionType.update,
        after,
        f"Restocking {after['reference_number']}: {description}",
        actor_id=actor_id,
        old_data=before,
        new_data=after,
    )
    return order


def add_item(
    db: Session,
    order_id: int,
    *,
    product_id: int,
    quantity: int,
    unit_cost,
    shop_id: int | None = None,
    actor_id: str | None = None,
    audit: AuditSink | None = None,
) -> RestockingOrder:
    return _edit_items(
        db,
        order_id,
        lambda s: s.add_line(product_id, quantity, unit_cost),
        f"line added for product {product_id}",
        shop_id=shop_id,
        new_product_id=product_id,
        actor_id=actor_id,
        audit=audit,
    )


def update_item(
    db: Session,
    order_id: int,
    *,
    product_id: int,
    quantity: int,
    unit_cost,
    shop_id: int | None = None,
    actor_id: str | None = None,
    audit: AuditSink | None = None,
) -> RestockingOrder:
    return _edit_items(
        db,
        order_id,
        lambda s: s.update_line(product_id, quantity, unit_cost),
        f"line updated for product {product_id}",
        shop_id=shop_id,
        new_product_id=None,
        actor_id=actor_id,
        audit=audit,
    )


def remove_item(
    db: Session,
    order_id: int,
    *,
    product_id: int,
    shop_id: int | None = None,
    actor_id: str | None = None,
    audit: AuditSink | None = None,
) -> RestockingOrder:
    return _edit_items(
        db,
        order_id,
        lambda s: s.remove_line(product_id),
        f"line removed for product {product_id}",
        shop_id=shop_id,
        new_product_id=None,
        actor_id=actor_id,
        audit=audit,
    )


def transition_order(
    db: Session,
    order_id: int,
    target: RestockingStatus | str,
    *,
    shop_id: int | None = None,
    actor_id: str | None = None,
    audit: AuditSink | None = None,
) -> RestockingOrder:
    """
    pending -> completed | cancelled.

    completed : statut + ajustements ledger dans la même transaction.

    Raises:
        InvalidTransition: cible inconnue ou ``pending``.
        AlreadyCompleted: la commande est déjà completed (rien n'est réappliqué).
        OrderNotEditable: la commande est cancelled, ou completed et on vise cancelled.
        EmptyOrder: aucune ligne au moment de compléter.
        StockAdjustmentFailed: un ajustement a échoué ; tout est annulé.
    """
    try:
        target = RestockingStatus(target)
    except ValueError:
        raise InvalidTransition(order_id, target) from None
    if target == RestockingStatus.pending:
        raise InvalidTransition(order_id, target.value)

    now = utcnow()
    try:
        with _unit_of_work(db):
            if target == RestockingStatus.completed:
                order = _lock_pending(
                    db, order_id, shop_id, completing=True, status=target, completed_at=now
                )
                if not order.items:
                    raise EmptyOrder(order.id)
                _apply_stock(db, order)
            else:
                order = _lock_pending(db, order_id, shop_id, status=target, cancelled_at=now)
            snapshot = order_snapshot(order)
    except StateError as exc:
        logger.warning(
            "restocking transition rejected",
            extra={"order_id": order_id, "target": target.value, "code": exc.code},
        )
        raise

    logger.info(
        "restocking order %s",
        target.value,
        extra={
            "order_id": order_id,
            "reference_number": snapshot["reference_number"],
            "status": target.value,
            "items": len(snapshot["items"]),
        },
    )
    _audit(
        audit,
        ActionType.update,
        snapshot,
        f"Restocking {snapshot['reference_number']} status changed to {target.value}",
        actor_id=actor_id,
        old_data={"status": RestockingStatus.pending.value},
        new_data={"status": target.value},
    )
    return order


def complete_order(db: Session, order_id: int, **kwargs) -> RestockingOrder:
    return transition_order(db, order_id, RestockingStatus.completed, **kwargs)


def cancel_order(db: Session, order_id: int, **kwargs) -> RestockingOrder:
    return transition_order(db, order_id, RestockingStatus.cancelled, **kwargs)


def delete_order(
    db: Session,
    order_id: int,
    *,
    shop_id: int | None = None,
    actor_id: str | None = None,
    audit: AuditSink | None = None,
) -> None:
    """Supprime une commande pending et ses lignes (cascade)."""
    with _unit_of_work(db):
        order = _lock_pending(db, order_id, shop_id)
        snapshot = order_snapshot(order)
        db.delete(order)

    logger.info(
        "restocking order deleted",
        extra={"order_id": order_id, "reference_number": snapshot["reference_number"]},
    )
    _audit(
        audit,
        ActionType.delete,
        snapshot,
        f"Restocking {snapshot['reference_number']} deleted",
        actor_id=actor_id,
        old_data=snapshot,
    )
