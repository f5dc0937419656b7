from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from shopstock.app.api.deps import get_db
from shopstock.app.core import config
from shopstock.app.db.models.models_v1 import Shop, Supplier

router = APIRouter(prefix="/suppliers")


class SupplierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=64)


@router.get("")
def list_suppliers(shop_id: int = config.DEFAULT_SHOP_ID, db: Session = Depends(get_db)):
    rows = db.execute(
        select(Supplier).where(Supplier.shop_id == shop_id).order_by(Supplier.name)
    ).scalars().all()
    return [
        {
            "id": s.id,
            "shop_id": s.shop_id,
            "name": s.name,
            "email": s.email,
            "phone": s.phone,
        }
        for s in rows
    ]


@router.post("", status_code=201)
def create_supplier(payload: SupplierCreate, shop_id: int = config.DEFAULT_SHOP_ID, db: Session = Depends(get_db)):
    if not db.get(Shop, shop_id):
        raise HTTPException(status_code=400, detail="Invalid shop_id")

    exists = db.execute(
        select(Supplier).where(Supplier.shop_id == shop_id).where(Supplier.name == payload.name)
    ).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Supplier already exists")

    s = Supplier(
        shop_id=shop_id,
        name=payload.name,
        email=payload.email,
        phone=payload.phone,
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    return {"id": s.id, "name": s.name}
