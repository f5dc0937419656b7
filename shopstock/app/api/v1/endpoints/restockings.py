from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from shopstock.app.api.deps import get_actor_id, get_audit_sink, get_db
from shopstock.app.core import config
from shopstock.app.db.models.core_types import RestockingStatus
from shopstock.app.schemas.restocking import (
    RestockingCreate,
    RestockingItemEdit,
    RestockingItemIn,
    RestockingOrderRead,
    RestockingSummaryRead,
    RestockingTransition,
    RestockingUpdate,
)
from shopstock.services import restocking
from shopstock.services.audit import AuditSink

router = APIRouter(prefix="/restockings")


@router.get("", response_model=list[RestockingOrderRead])
def list_restockings(
    shop_id: int = config.DEFAULT_SHOP_ID,
    status: RestockingStatus | None = None,
    supplier_id: int | None = None,
    search: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return restocking.list_orders(
        db,
        restocking.OrderFilters(
            shop_id=shop_id,
            status=status,
            supplier_id=supplier_id,
            search=search,
            limit=limit,
            offset=offset,
        ),
    )


@router.get("/summary", response_model=RestockingSummaryRead)
def restockings_summary(shop_id: int = config.DEFAULT_SHOP_ID, db: Session = Depends(get_db)):
    return restocking.summarize_orders(db, shop_id=shop_id)


@router.get("/{order_id}", response_model=RestockingOrderRead)
def get_restocking(order_id: int, shop_id: int = config.DEFAULT_SHOP_ID, db: Session = Depends(get_db)):
    return restocking.get_order(db, order_id, shop_id=shop_id)


@router.post("", response_model=RestockingOrderRead, status_code=201)
def create_restocking(
    payload: RestockingCreate,
    shop_id: int = config.DEFAULT_SHOP_ID,
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink),
    actor_id: str | None = Depends(get_actor_id),
):
    return restocking.create_order(
        db,
        shop_id=shop_id,
        header=payload.model_dump(include={"supplier_id", "notes"}),
        items=[ln.model_dump() for ln in payload.items],
        actor_id=actor_id,
        audit=audit,
    )


@router.patch("/{order_id}", response_model=RestockingOrderRead)
def update_restocking(
    order_id: int,
    payload: RestockingUpdate,
    shop_id: int = config.DEFAULT_SHOP_ID,
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink),
    actor_id: str | None = Depends(get_actor_id),
):
    sent = payload.model_dump(exclude_unset=True)
    items = sent.pop("items", None)
    return restocking.update_order(
        db,
        order_id,
        shop_id=shop_id,
        header=sent,
        items=items,
        actor_id=actor_id,
        audit=audit,
    )


@router.post("/{order_id}/status", response_model=RestockingOrderRead)
def transition_restocking(
    order_id: int,
    payload: RestockingTransition,
    shop_id: int = config.DEFAULT_SHOP_ID,
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink),
    actor_id: str | None = Depends(get_actor_id),
):
    return restocking.transition_order(
        db,
        order_id,
        payload.status,
        shop_id=shop_id,
        actor_id=actor_id,
        audit=audit,
    )


@router.delete("/{order_id}", status_code=204)
def delete_restocking(
    order_id: int,
    shop_id: int = config.DEFAULT_SHOP_ID,
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink),
    actor_id: str | None = Depends(get_actor_id),
):
    restocking.delete_order(db, order_id, shop_id=shop_id, actor_id=actor_id, audit=audit)
    return Response(status_code=204)


# ---------- Lignes ----------
@router.post("/{order_id}/items", response_model=RestockingOrderRead)
def add_restocking_item(
    order_id: int,
    payload: RestockingItemIn,
    shop_id: int = config.DEFAULT_SHOP_ID,
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink),
    actor_id: str | None = Depends(get_actor_id),
):
    return restocking.add_item(
        db,
        order_id,
        product_id=payload.product_id,
        quantity=payload.quantity,
        unit_cost=payload.unit_cost,
        shop_id=shop_id,
        actor_id=actor_id,
        audit=audit,
    )


@router.put("/{order_id}/items/{product_id}", response_model=RestockingOrderRead)
def update_restocking_item(
    order_id: int,
    product_id: int,
    payload: RestockingItemEdit,
    shop_id: int = config.DEFAULT_SHOP_ID,
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink),
    actor_id: str | None = Depends(get_actor_id),
):
    return restocking.update_item(
        db,
        order_id,
        product_id=product_id,
        quantity=payload.quantity,
        unit_cost=payload.unit_cost,
        shop_id=shop_id,
        actor_id=actor_id,
        audit=audit,
    )


@router.delete("/{order_id}/items/{product_id}", response_model=RestockingOrderRead)
def remove_restocking_item(
    order_id: int,
    product_id: int,
    shop_id: int = config.DEFAULT_SHOP_ID,
    db: Session = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink),
    actor_id: str | None = Depends(get_actor_id),
):
    return restocking.remove_item(
        db,
        order_id,
        product_id=product_id,
        shop_id=shop_id,
        actor_id=actor_id,
        audit=audit,
    )
